from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import PurePosixPath


@dataclass(frozen=True)
class RemoteObject:
    """A remote object as described by the download gateway.

    ``size`` and ``version`` are optional; when present, ``size`` bounds
    multi-chunk reads and ``version`` (an ETag or similar) can be checked
    against the version the cached chunks were written for.
    """

    object_id: str
    size: int | None = None
    version: str | None = None

    def __post_init__(self) -> None:
        # Object ids become directory names under the cache root.
        rel = PurePosixPath(self.object_id)
        if (
            str(rel) in {"", "."}
            or "\\" in self.object_id
            or rel.is_absolute()
            or ".." in rel.parts
        ):
            msg = f"unsafe object id: {self.object_id!r}"
            raise ValueError(msg)


@dataclass(frozen=True)
class ChunkRequest:
    object: RemoteObject
    offset: int
    size: int
    preload: bool = False

    def __post_init__(self) -> None:
        if self.offset < 0:
            msg = f"offset must not be negative (got {self.offset})"
            raise ValueError(msg)
        if self.size <= 0:
            msg = f"size must be positive (got {self.size})"
            raise ValueError(msg)

    def align(self, chunk_size: int) -> ChunkWindow:
        """Align this request to the chunk window containing ``offset``."""
        offset_in_window = self.offset % chunk_size
        window_start = self.offset - offset_in_window
        return ChunkWindow(
            request=self,
            chunk_size=chunk_size,
            offset_in_window=offset_in_window,
            window_start=window_start,
            window_end=window_start + chunk_size,
        )


@dataclass(frozen=True)
class ChunkWindow:
    """A chunk request together with its chunk-aligned window."""

    request: ChunkRequest
    chunk_size: int
    offset_in_window: int
    window_start: int
    window_end: int

    @property
    def object(self) -> RemoteObject:
        return self.request.object

    @property
    def cache_key(self) -> tuple[str, int]:
        return self.request.object.object_id, self.window_start

    def slice(self, data: bytes) -> bytes:
        """Cut the requested range out of the full window bytes.

        Both bounds are clipped to ``len(data)`` so a short final chunk
        yields only the available trailing bytes.
        """
        start = min(self.offset_in_window, len(data))
        end = min(self.offset_in_window + self.request.size, len(data))
        return data[start:end]


@dataclass
class ChunkResponse:
    data: bytes = b""
    error: Exception | None = field(default=None)

    @property
    def ok(self) -> bool:
        return self.error is None
