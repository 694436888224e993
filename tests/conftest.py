from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest
from chunk_cache import DownloadError, RemoteObject

if TYPE_CHECKING:
    from collections.abc import Generator
    from pathlib import Path

    from chunk_cache import ChunkWindow


CHUNK_SIZE = 8192


class FakeDownloadGateway:
    """In-memory gateway serving objects from a dict of id -> content."""

    def __init__(self, objects: dict[str, bytes] | None = None):
        self.objects = dict(objects or {})
        self.calls: list[ChunkWindow] = []
        self.fail_with: Exception | None = None
        self.started = False

    async def startup(self) -> None:
        self.started = True

    async def shutdown(self) -> None:
        self.started = False

    async def fetch_chunk(self, window: ChunkWindow) -> bytes:
        self.calls.append(window)
        if self.fail_with is not None:
            raise self.fail_with
        content = self.objects.get(window.object.object_id)
        if content is None:
            msg = f"no such object {window.object.object_id}"
            raise DownloadError(msg)
        # Windows past the end come back empty, as the real gateways do.
        return content[window.window_start : window.window_end]

    async def describe(self, object_id: str) -> RemoteObject:
        content = self.objects.get(object_id)
        if content is None:
            msg = f"no such object {object_id}"
            raise DownloadError(msg)
        return RemoteObject(object_id=object_id, size=len(content), version="v1")


def make_content(size: int) -> bytes:
    return bytes(i % 251 for i in range(size))


@pytest.fixture
def content() -> bytes:
    """10000 bytes, so the second 8 KiB window is short."""
    return make_content(10000)


@pytest.fixture
def gateway(content: bytes) -> FakeDownloadGateway:
    return FakeDownloadGateway({"obj-1": content})


@pytest.fixture
def remote_object(content: bytes) -> RemoteObject:
    return RemoteObject(object_id="obj-1", size=len(content))


@pytest.fixture
def cache_path(tmp_path: Path) -> Path:
    return tmp_path / "chunks"


def _set_env(env_vars: dict[str, str]) -> Generator[dict[str, str]]:
    original_values = {}
    for key, value in env_vars.items():
        original_values[key] = os.environ.get(key)
        os.environ[key] = value

    yield env_vars

    for key, original_value in original_values.items():
        if original_value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = original_value


@pytest.fixture
def cache_env_vars(cache_path: Path) -> Generator[dict[str, str]]:
    """Set up environment variables for the chunk cache."""
    yield from _set_env(
        {
            "CHUNK_CACHE_PATH": str(cache_path),
            "CHUNK_CACHE_CHUNK_SIZE": str(CHUNK_SIZE),
            "CHUNK_CACHE_PRELOAD_CHUNKS": "2",
            "CHUNK_CACHE_VERIFY_VERSION": "true",
            "CHUNK_CACHE_GATEWAY": "http",
        }
    )


@pytest.fixture
def remote_env_vars() -> Generator[dict[str, str]]:
    """Set up environment variables for the remote object store."""
    yield from _set_env(
        {
            "CHUNK_CACHE_REMOTE_ENDPOINT": "http://remote.test",
            "CHUNK_CACHE_REMOTE_ACCESS_KEY_ID": "access",
            "CHUNK_CACHE_REMOTE_SECRET_ACCESS_KEY": "secret",
            "CHUNK_CACHE_REMOTE_REGION": "eu-central-1",
            "CHUNK_CACHE_REMOTE_BUCKET": "objects",
        }
    )
