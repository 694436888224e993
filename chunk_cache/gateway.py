from __future__ import annotations

import logging
from functools import partial
from typing import TYPE_CHECKING, Any, Protocol

import httpx
from anyio import to_thread
from boto3.session import Session
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .errors import ConfigurationError, DownloadError
from .models import RemoteObject

if TYPE_CHECKING:
    from collections.abc import Callable

    from .models import ChunkWindow
    from .settings import CacheSettings, RemoteSettings

LOG = logging.getLogger("chunk_cache.gateway")


async def _run_sync(func: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Any:
    return await to_thread.run_sync(func, *args, **kwargs)


def window_range(window: ChunkWindow) -> tuple[int, int]:
    """Inclusive byte range of a window, clipped to the object's known size."""
    end = window.window_end
    if window.object.size is not None:
        end = min(end, window.object.size)
    return window.window_start, end - 1


class DownloadGateway(Protocol):
    """Fetches chunk-aligned byte ranges of remote objects.

    A window that starts at or past the end of the object yields ``b""``.
    Implementations raise :class:`DownloadError` on failure. Retries, if any,
    belong to the implementation.
    """

    async def startup(self) -> None: ...

    async def shutdown(self) -> None: ...

    async def fetch_chunk(self, window: ChunkWindow) -> bytes: ...

    async def describe(self, object_id: str) -> RemoteObject: ...


class S3DownloadGateway:
    def __init__(self, settings: RemoteSettings, client: Any | None = None):
        if not settings.bucket and client is None:
            msg = "remote bucket must be configured for the S3 gateway"
            raise ConfigurationError(msg)
        self._settings = settings
        self._bucket = settings.bucket
        self._client = client if client is not None else self._build_client()

    def _build_client(self):
        session = Session(
            aws_access_key_id=self._settings.access_key,
            aws_secret_access_key=self._settings.secret_key,
            aws_session_token=self._settings.session_token,
            region_name=self._settings.region,
        )
        return session.client(
            "s3",
            endpoint_url=self._settings.endpoint,
            config=BotoConfig(
                signature_version="s3v4",
                retries={"max_attempts": 3},
                connect_timeout=self._settings.timeout,
                read_timeout=self._settings.timeout,
                s3={"addressing_style": self._settings.addressing_style},
            ),
        )

    async def startup(self) -> None:
        LOG.info(
            "S3 gateway ready (endpoint=%s, bucket=%s)",
            self._settings.endpoint or "aws",
            self._bucket,
        )

    async def shutdown(self) -> None:
        pass

    async def fetch_chunk(self, window: ChunkWindow) -> bytes:
        start, end = window_range(window)
        key = window.object.object_id
        try:
            result = await _run_sync(
                partial(
                    self._client.get_object,
                    Bucket=self._bucket,
                    Key=key,
                    Range=f"bytes={start}-{end}",
                )
            )
            body = result["Body"]
            try:
                return await _run_sync(body.read)
            finally:
                await _run_sync(body.close)
        except ClientError as error:
            code = error.response.get("Error", {}).get("Code")
            if code == "InvalidRange":
                return b""
            msg = (
                f"could not fetch s3://{self._bucket}/{key} "
                f"bytes {start}-{end} ({code})"
            )
            raise DownloadError(msg) from error
        except BotoCoreError as error:
            msg = f"could not fetch s3://{self._bucket}/{key} bytes {start}-{end}"
            raise DownloadError(msg) from error

    async def describe(self, object_id: str) -> RemoteObject:
        try:
            head = await _run_sync(
                partial(self._client.head_object, Bucket=self._bucket, Key=object_id)
            )
        except (ClientError, BotoCoreError) as error:
            msg = f"could not stat s3://{self._bucket}/{object_id}"
            raise DownloadError(msg) from error
        return RemoteObject(
            object_id=object_id,
            size=head.get("ContentLength"),
            version=head.get("ETag"),
        )


class HTTPDownloadGateway:
    """Fetches ranges of ``{endpoint}/{object id}`` over plain HTTP."""

    def __init__(
        self,
        settings: RemoteSettings,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not settings.endpoint:
            msg = "remote endpoint must be configured for the HTTP gateway"
            raise ConfigurationError(msg)
        self._settings = settings
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None

    async def startup(self) -> None:
        self._http_client = httpx.AsyncClient(
            base_url=self._settings.endpoint or "",
            timeout=httpx.Timeout(self._settings.timeout, read=300.0),
            transport=self._transport,
            trust_env=False,
        )
        LOG.info("HTTP gateway ready (endpoint=%s)", self._settings.endpoint)

    async def shutdown(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            message = "gateway not initialised"
            raise RuntimeError(message)
        return self._http_client

    async def fetch_chunk(self, window: ChunkWindow) -> bytes:
        start, end = window_range(window)
        url = f"/{window.object.object_id}"
        try:
            response = await self._client().get(
                url, headers={"Range": f"bytes={start}-{end}"}
            )
        except httpx.HTTPError as error:
            msg = f"could not fetch {url} bytes {start}-{end}"
            raise DownloadError(msg) from error

        if response.status_code == 206:
            return response.content
        if response.status_code == 200:
            # Server ignored the Range header and sent the whole object.
            return response.content[start : end + 1]
        if response.status_code == 416:
            return b""
        msg = f"could not fetch {url} bytes {start}-{end} (HTTP {response.status_code})"
        raise DownloadError(msg)

    async def describe(self, object_id: str) -> RemoteObject:
        url = f"/{object_id}"
        try:
            response = await self._client().head(url)
            response.raise_for_status()
        except httpx.HTTPError as error:
            msg = f"could not stat {url}"
            raise DownloadError(msg) from error
        length = response.headers.get("content-length")
        return RemoteObject(
            object_id=object_id,
            size=int(length) if length is not None else None,
            version=response.headers.get("etag"),
        )


def build_gateway(cache: CacheSettings, remote: RemoteSettings) -> DownloadGateway:
    """Create the download gateway selected by ``cache.gateway``."""
    if cache.gateway == "http":
        return HTTPDownloadGateway(remote)
    return S3DownloadGateway(remote)
