from __future__ import annotations

import logging
import re
import sys
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from litestar import Litestar, Request, get
from litestar.config.cors import CORSConfig
from litestar.enums import MediaType
from litestar.plugins.prometheus import PrometheusConfig, PrometheusController
from litestar.response import Response

from .errors import DownloadError
from .gateway import build_gateway
from .manager import ChunkManager
from .settings import load_cache_settings_from_env, load_remote_settings_from_env

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from .gateway import DownloadGateway

LOG = logging.getLogger("chunk_cache.app")

OCTET_STREAM = "application/octet-stream"

prometheus_config = PrometheusConfig(app_name="chunk_cache", prefix="chunk_cache")


_BYTE_RANGE = re.compile(r"^\s*bytes\s*=\s*(\d*)\s*-\s*(\d*)\s*(?:,|$)", re.IGNORECASE)


class RangeNotSatisfiableError(Exception):
    """The requested range selects no byte of the object."""


def parse_range(range_header: str | None, total_size: int) -> tuple[int, int] | None:
    """Resolve the first range of a ``bytes=`` header to inclusive bounds.

    Returns None when the header is absent or malformed, meaning the whole
    object should be served. Only the first range of a multi-range header
    is honoured.

    Raises:
        RangeNotSatisfiableError: the range starts at or past ``total_size``.
    """
    if not range_header:
        return None
    match = _BYTE_RANGE.match(range_header)
    if match is None:
        return None
    first, last = match.groups()

    if not first:
        if not last:
            return None
        suffix = int(last)
        if suffix == 0 or total_size == 0:
            raise RangeNotSatisfiableError(range_header)
        return max(total_size - suffix, 0), total_size - 1

    start = int(first)
    end = int(last) if last else total_size - 1
    if last and end < start:
        return None
    if start >= total_size:
        raise RangeNotSatisfiableError(range_header)
    return start, min(end, total_size - 1)


def create_app(
    manager: ChunkManager | None = None,
    gateway: DownloadGateway | None = None,
) -> Litestar:
    """Create the ASGI application serving byte ranges through the chunk cache.

    Without arguments, the gateway and manager are built from environment
    variables.
    """
    if gateway is None or manager is None:
        cache_settings = load_cache_settings_from_env()
        if gateway is None:
            gateway = build_gateway(cache_settings, load_remote_settings_from_env())
        if manager is None:
            manager = ChunkManager.from_settings(cache_settings, gateway)

    chunk_manager = manager
    download_gateway = gateway

    @get("/health", include_in_schema=False)
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @get("/objects/{object_id:str}")
    async def read_object(request: Request, object_id: str) -> Response:
        try:
            obj = await download_gateway.describe(object_id)
        except ValueError as error:
            return Response(
                content=str(error), status_code=400, media_type=MediaType.TEXT
            )
        except DownloadError as error:
            LOG.warning("could not describe %s: %s", object_id, error)
            return Response(
                content=str(error), status_code=502, media_type=MediaType.TEXT
            )

        range_header = request.headers.get("range")
        try:
            if obj.size is None:
                # Unknown size: read to the end, then cut the range from the body.
                body = await chunk_manager.read(obj, 0, sys.maxsize)
                total_size = len(body)
                bounds = parse_range(range_header, total_size)
                if bounds is not None:
                    body = body[bounds[0] : bounds[1] + 1]
            else:
                total_size = obj.size
                bounds = parse_range(range_header, total_size)
                start, end = bounds if bounds is not None else (0, total_size - 1)
                body = await chunk_manager.read(obj, start, end - start + 1)
        except RangeNotSatisfiableError:
            return Response(
                content="",
                status_code=416,
                headers={"Content-Range": f"bytes */{total_size}"},
                media_type=MediaType.TEXT,
            )
        except DownloadError as error:
            LOG.warning("could not read %s: %s", object_id, error)
            return Response(
                content=str(error), status_code=502, media_type=MediaType.TEXT
            )

        headers = {"Accept-Ranges": "bytes"}
        if obj.version is not None:
            headers["ETag"] = obj.version
        if bounds is None:
            return Response(
                content=body,
                status_code=200,
                headers=headers,
                media_type=OCTET_STREAM,
            )
        start = bounds[0]
        headers["Content-Range"] = f"bytes {start}-{start + len(body) - 1}/{total_size}"
        return Response(
            content=body, status_code=206, headers=headers, media_type=OCTET_STREAM
        )

    @asynccontextmanager
    async def lifespan(app: Litestar) -> AsyncIterator[None]:
        await download_gateway.startup()
        try:
            async with chunk_manager:
                yield
        finally:
            await download_gateway.shutdown()

    cors_config = CORSConfig(
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
        expose_headers=["ETag", "Content-Range", "Accept-Ranges"],
    )

    return Litestar(
        route_handlers=[health, read_object, PrometheusController],
        lifespan=[lifespan],
        cors_config=cors_config,
        middleware=[prometheus_config.middleware],
    )
