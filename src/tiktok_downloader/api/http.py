"""HTTP API routes for the TikTok Downloader service."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional

import httpx
from fastapi import APIRouter, Query, Request
from fastapi.responses import StreamingResponse

from tiktok_downloader.core.config import Settings, get_settings
from tiktok_downloader.domain.errors import InternalError, TikTokDownloaderError
from tiktok_downloader.domain.video import (
    ErrorResponse,
    Quality,
    VideoInfoRequest,
    VideoInfoResponse,
    VideoRecord,
)
from tiktok_downloader.services.relay import MEDIA_CONTENT_TYPE, MediaRelay, RelaySession
from tiktok_downloader.services.resolver import Resolver

logger = logging.getLogger(__name__)

router: APIRouter = APIRouter(prefix="/api/tiktok", tags=["tiktok"])

_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


def _new_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.client_factory()


@router.get("/test")
def get_test() -> dict[str, Any]:
    """Liveness probe scoped to the TikTok router."""

    return {
        "success": True,
        "message": "TikTok Downloader API is working!",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.post("/video-info", response_model=VideoInfoResponse, responses=_ERROR_RESPONSES)
async def post_video_info(payload: VideoInfoRequest, request: Request) -> VideoInfoResponse:
    """Resolve a TikTok link and return its normalized metadata.

    Parameters
    ----------
    payload: VideoInfoRequest
        Body holding ``tiktokUrl``.

    Returns
    -------
    VideoInfoResponse
        ``{success, message, data}`` where ``data`` is the ``VideoRecord``.

    Notes
    -----
    - Invalid or missing links fail with 400 before any upstream call.
    - When every resolver endpoint fails the 400 body carries the last
      endpoint's failure reason in ``error``.

    Raises
    ------
    TikTokDownloaderError
        Rendered as ``{success: false, message, error?}`` by the app's handler.
    """

    settings: Settings = get_settings()
    logger.info("Analyzing TikTok URL: %s", payload.tiktokUrl)
    try:
        async with _new_client(request) as client:
            record: VideoRecord = await Resolver(client, settings).resolve(payload.tiktokUrl)
    except TikTokDownloaderError:
        raise
    except Exception as ex:  # noqa: BLE001 - surface a simple message to clients
        logger.exception("Video analysis failed")
        raise InternalError(str(ex), message="Video analysis failed") from ex

    return VideoInfoResponse(data=record)


@router.get("/download", response_class=StreamingResponse, responses=_ERROR_RESPONSES)
async def get_download(
    request: Request,
    url: Optional[str] = Query(default=None, description="Shareable TikTok video URL"),
    quality: str = Query(default=Quality.STANDARD.value, description="standard, hd or watermark"),
) -> StreamingResponse:
    """Relay the selected media variant to the caller as an attachment.

    Notes
    -----
    - Resolution, variant selection, the upstream status check and the first
      chunk all happen before the response starts, so their failures are
      returned as JSON errors.
    - An unknown ``quality`` falls back to the first available variant.
    - Once streaming, upstream errors abort the connection; a client
      disconnect closes the upstream stream and the HTTP client.
    """

    settings: Settings = get_settings()
    logger.info("Download request: url=%s quality=%s", url, quality)
    client: httpx.AsyncClient = _new_client(request)
    try:
        session: RelaySession = await MediaRelay(client, settings).open(url, quality)
    except TikTokDownloaderError:
        await client.aclose()
        raise
    except Exception as ex:  # noqa: BLE001
        await client.aclose()
        logger.exception("Download failed")
        raise InternalError(str(ex), message="Download failed") from ex

    async def _stream() -> AsyncIterator[bytes]:
        try:
            async for chunk in session.body():
                yield chunk
        finally:
            await session.aclose()
            await client.aclose()

    return StreamingResponse(_stream(), headers=session.headers, media_type=MEDIA_CONTENT_TYPE)
