from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any

import anyio
from anyio import to_thread
from anyio.abc import TaskGroup

from .errors import (
    CacheMissError,
    CacheWriteError,
    ConfigurationError,
    DownloadError,
)
from .models import ChunkRequest, ChunkResponse, ChunkWindow, RemoteObject
from .store import DiskChunkStore

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import TracebackType

    from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

    from .gateway import DownloadGateway
    from .settings import CacheSettings

LOG = logging.getLogger("chunk_cache.manager")

MIN_CHUNK_SIZE = 4096


async def _run_sync(func: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Any:
    return await to_thread.run_sync(func, *args, **kwargs)


class ChunkStream:
    """Consumer handle for one chunk request.

    Yields zero to two :class:`ChunkResponse` messages and then ends. When two
    error-free messages arrive, the first is the cached copy and the second
    the confirmed one. An error at any position means the request failed.
    The producer waits for each message to be received, so a consumer that
    stops early must call :meth:`cancel` (or leave the ``async with`` block).
    """

    def __init__(
        self,
        window: ChunkWindow,
        receive_stream: MemoryObjectReceiveStream[ChunkResponse],
        cancel_scope: anyio.CancelScope,
    ):
        self.window = window
        self._receive_stream = receive_stream
        self._cancel_scope = cancel_scope

    def __aiter__(self) -> ChunkStream:
        return self

    async def __anext__(self) -> ChunkResponse:
        try:
            return await self._receive_stream.receive()
        except (anyio.EndOfStream, anyio.ClosedResourceError):
            raise StopAsyncIteration from None

    async def __aenter__(self) -> ChunkStream:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    def cancel(self) -> None:
        """Abandon the request and release the producing task."""
        self._cancel_scope.cancel()
        self._receive_stream.close()

    async def aclose(self) -> None:
        self.cancel()

    async def collect(self) -> list[ChunkResponse]:
        return [response async for response in self]

    async def result(self) -> bytes:
        """Drain the stream and return the authoritative bytes.

        Raises:
            DownloadError: the stream carried an error.
        """
        data = b""
        async for response in self:
            if response.error is not None:
                self.cancel()
                raise response.error
            data = response.data
        return data


class ChunkManager:
    """Read-through chunk cache in front of a download gateway.

    Every request is answered from disk first, when possible, and then
    always confirmed by a download of the whole chunk window, which is
    persisted once per window.
    """

    def __init__(
        self,
        path: str | os.PathLike[str],
        chunk_size: int,
        gateway: DownloadGateway,
        *,
        preload_chunks: int = 0,
        verify_version: bool = False,
        logger: logging.Logger | None = None,
    ):
        if not os.fspath(path):
            msg = "path to chunk files must not be empty"
            raise ConfigurationError(msg)
        if chunk_size < MIN_CHUNK_SIZE:
            msg = f"chunk size must not be < {MIN_CHUNK_SIZE} (got {chunk_size})"
            raise ConfigurationError(msg)
        if chunk_size % 1024 != 0:
            msg = f"chunk size must be divisible by 1024 (got {chunk_size})"
            raise ConfigurationError(msg)
        if preload_chunks < 0:
            msg = f"preload chunk count must not be negative (got {preload_chunks})"
            raise ConfigurationError(msg)

        self.chunk_size = chunk_size
        self.preload_chunks = preload_chunks
        self._gateway = gateway
        self._log = logger or LOG
        self._store = DiskChunkStore(
            path, verify_version=verify_version, logger=self._log
        )
        self._task_group: TaskGroup | None = None

    @classmethod
    def from_settings(
        cls,
        settings: CacheSettings,
        gateway: DownloadGateway,
        *,
        logger: logging.Logger | None = None,
    ) -> ChunkManager:
        return cls(
            settings.path,
            settings.chunk_size,
            gateway,
            preload_chunks=settings.preload_chunks,
            verify_version=settings.verify_version,
            logger=logger,
        )

    @property
    def store(self) -> DiskChunkStore:
        return self._store

    async def __aenter__(self) -> ChunkManager:
        task_group = anyio.create_task_group()
        await task_group.__aenter__()
        self._task_group = task_group
        self._log.info(
            "chunk manager ready (path=%s, chunk_size=%d)",
            self._store.root,
            self.chunk_size,
        )
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> bool | None:
        task_group, self._task_group = self._task_group, None
        if task_group is None:
            return None
        task_group.cancel_scope.cancel()
        return await task_group.__aexit__(exc_type, exc, tb)

    def request_chunk(self, request: ChunkRequest) -> ChunkStream:
        """Start fetching the window containing ``request`` and return its stream."""
        if self._task_group is None:
            message = "chunk manager not started"
            raise RuntimeError(message)

        window = request.align(self.chunk_size)
        send_stream, receive_stream = anyio.create_memory_object_stream[
            ChunkResponse
        ](0)
        cancel_scope = anyio.CancelScope()
        self._task_group.start_soon(
            self._produce, window, send_stream, cancel_scope
        )
        return ChunkStream(window, receive_stream, cancel_scope)

    async def read(
        self, obj: RemoteObject, offset: int, size: int, *, preload: bool = False
    ) -> bytes:
        """Read ``size`` bytes at ``offset``, spanning as many windows as needed.

        Returns fewer bytes when the object ends inside the range.

        Raises:
            DownloadError: one of the windows could not be downloaded.
        """
        if obj.size is not None:
            size = min(size, obj.size - offset)
        if size <= 0:
            return b""

        parts: list[bytes] = []
        position = offset
        end = offset + size
        while position < end:
            in_window = self.chunk_size - position % self.chunk_size
            wanted = min(in_window, end - position)
            request = ChunkRequest(obj, position, wanted, preload=preload)
            async with self.request_chunk(request) as stream:
                data = await stream.result()
            parts.append(data)
            position += len(data)
            if len(data) < wanted:
                break

        if not preload:
            self._schedule_preload(obj, end)
        return b"".join(parts)

    def _schedule_preload(self, obj: RemoteObject, end: int) -> None:
        if self.preload_chunks <= 0 or self._task_group is None:
            return
        next_window = -(-end // self.chunk_size) * self.chunk_size
        for index in range(self.preload_chunks):
            start = next_window + index * self.chunk_size
            if obj.size is not None and start >= obj.size:
                break
            stream = self.request_chunk(
                ChunkRequest(obj, start, self.chunk_size, preload=True)
            )
            self._task_group.start_soon(self._drain_preload, stream)

    async def _drain_preload(self, stream: ChunkStream) -> None:
        async with stream:
            async for response in stream:
                if response.error is not None:
                    self._log.debug("preload failed: %s", response.error)

    async def _produce(
        self,
        window: ChunkWindow,
        send_stream: MemoryObjectSendStream[ChunkResponse],
        cancel_scope: anyio.CancelScope,
    ) -> None:
        with cancel_scope, send_stream:
            try:
                await self._serve(window, send_stream)
            except (anyio.BrokenResourceError, anyio.ClosedResourceError):
                self._log.debug(
                    "consumer abandoned chunk %s:%d", *window.cache_key
                )

    async def _serve(
        self,
        window: ChunkWindow,
        send_stream: MemoryObjectSendStream[ChunkResponse],
    ) -> None:
        try:
            cached = await _run_sync(self._store.read, window)
        except CacheMissError as error:
            self._log.debug("%s", error)
        else:
            await send_stream.send(ChunkResponse(data=cached))

        try:
            data = await self._gateway.fetch_chunk(window)
        except DownloadError as error:
            self._log.debug("%s", error)
            await send_stream.send(ChunkResponse(error=error))
            return
        except Exception as error:
            self._log.debug("gateway failed", exc_info=True)
            wrapped = DownloadError(
                f"could not download chunk {window.object.object_id}:"
                f"{window.window_start}: {error}"
            )
            wrapped.__cause__ = error
            await send_stream.send(ChunkResponse(error=wrapped))
            return

        await send_stream.send(ChunkResponse(data=window.slice(data)))
        if data:
            await self._persist(window, data)

    async def _persist(self, window: ChunkWindow, data: bytes) -> None:
        try:
            written = await _run_sync(self._store.write, window, data)
        except CacheWriteError as error:
            self._log.warning("%s (non-fatal)", error, exc_info=True)
            return
        if written:
            self._log.debug(
                "cached chunk %s:%d (%d bytes)", *window.cache_key, len(data)
            )
