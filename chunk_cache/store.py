from __future__ import annotations

import contextlib
import logging
import os
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING

from .errors import CacheMissError, CacheWriteError

if TYPE_CHECKING:
    from .models import ChunkWindow

LOG = logging.getLogger("chunk_cache.store")

VERSION_MARKER = ".version"


class DiskChunkStore:
    """Write-once chunk files laid out as ``<root>/<object id>/<window start>``.

    A chunk file holds the raw bytes of one window, with no header. Its
    modification time is refreshed on every successful read so an external
    sweeper can evict the least recently used chunks.
    """

    def __init__(
        self,
        root: str | os.PathLike[str],
        *,
        verify_version: bool = False,
        logger: logging.Logger | None = None,
    ):
        self.root = Path(root)
        self.verify_version = verify_version
        self._log = logger or LOG

    def object_dir(self, window: ChunkWindow) -> Path:
        return self.root / window.object.object_id

    def chunk_path(self, window: ChunkWindow) -> Path:
        return self.object_dir(window) / str(window.window_start)

    def read(self, window: ChunkWindow) -> bytes:
        """Return up to ``request.size`` bytes of the cached window.

        Raises:
            CacheMissError: the chunk is absent, unreadable, empty at the
                requested offset, or cached for another object version.
        """
        filename = self.chunk_path(window)
        self._check_version(window)

        try:
            with filename.open("rb") as handle:
                handle.seek(window.offset_in_window)
                data = handle.read(window.request.size)
        except OSError as error:
            msg = f"could not read chunk file {filename}"
            raise CacheMissError(msg) from error

        # A short read only means the window is the object's last one.
        if not data:
            msg = f"could not read chunk file {filename} at {window.offset_in_window}"
            raise CacheMissError(msg)

        self._log.debug(
            "found %s bytes %d - %d in cache",
            filename,
            window.window_start,
            window.window_end,
        )
        try:
            os.utime(filename)
        except OSError:
            self._log.warning(
                "could not update last modified time for %s", filename, exc_info=True
            )
        return data[: window.request.size]

    def write(self, window: ChunkWindow, data: bytes) -> bool:
        """Persist the full window bytes unless the chunk already exists.

        Returns:
            True if a new chunk file was created, False if one already existed.

        Raises:
            CacheWriteError: the directory or file could not be created.
        """
        chunk_dir = self.object_dir(window)
        filename = self.chunk_path(window)

        try:
            chunk_dir.mkdir(parents=True, exist_ok=True)
        except OSError as error:
            msg = f"could not create chunk directory {chunk_dir}"
            raise CacheWriteError(msg) from error

        if self.verify_version:
            self._claim_version(window)

        if filename.exists():
            return False

        # Publish through a hard link so the final name appears complete and
        # at most once, even with concurrent writers.
        try:
            fd, tmp_name = tempfile.mkstemp(dir=chunk_dir, prefix=".tmp-")
        except OSError as error:
            msg = f"could not create chunk file in {chunk_dir}"
            raise CacheWriteError(msg) from error
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            os.link(tmp_name, filename)
        except FileExistsError:
            return False
        except OSError as error:
            msg = f"could not write chunk file {filename}"
            raise CacheWriteError(msg) from error
        finally:
            with contextlib.suppress(OSError):
                os.unlink(tmp_name)
        return True

    def _check_version(self, window: ChunkWindow) -> None:
        version = window.object.version
        if not self.verify_version or version is None:
            return
        marker = self.object_dir(window) / VERSION_MARKER
        try:
            cached = marker.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as error:
            msg = f"no readable version marker in {marker.parent}"
            raise CacheMissError(msg) from error
        if cached != version:
            msg = (
                f"cached chunks of {window.object.object_id} are version "
                f"{cached!r}, wanted {version!r}"
            )
            raise CacheMissError(msg)

    def _claim_version(self, window: ChunkWindow) -> None:
        version = window.object.version
        if version is None:
            return
        marker = self.object_dir(window) / VERSION_MARKER
        try:
            with marker.open("x", encoding="utf-8") as handle:
                handle.write(version)
        except FileExistsError:
            pass
        except OSError as error:
            msg = f"could not write version marker {marker}"
            raise CacheWriteError(msg) from error
        else:
            return

        try:
            cached = marker.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as error:
            msg = f"could not read version marker {marker}"
            raise CacheWriteError(msg) from error
        if cached != version:
            msg = (
                f"refusing to cache version {version!r} of "
                f"{window.object.object_id} over version {cached!r}"
            )
            raise CacheWriteError(msg)
