"""FastAPI application entrypoint for the TikTok Downloader service."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Final

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tiktok_downloader.api.http import router as api_router
from tiktok_downloader.core.config import Settings, get_settings
from tiktok_downloader.core.logging_cfg import setup_logging
from tiktok_downloader.domain.errors import InvalidReference, TikTokDownloaderError
from tiktok_downloader.infra.http import client_factory

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance.

    Notes
    -----
    - Logging is configured up front based on settings; settings are loaded once.
    - ``app.state.client_factory`` builds one outbound ``httpx.AsyncClient``
      per request; tests replace it with a mock-transport factory.
    - ``TikTokDownloaderError`` subclasses are rendered as
      ``{success: false, message, error?}`` with their own status code.
    - Request validation failures (wrong field types, malformed JSON) are
      answered as 400 ``Invalid TikTok URL format`` in the same envelope.

    Returns
    -------
    FastAPI
        The configured FastAPI application.
    """

    settings: Settings = get_settings()
    setup_logging(settings.debug)

    app: FastAPI = FastAPI(title=settings.app_name)
    app.state.client_factory = client_factory(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition"],
    )
    app.include_router(api_router)

    @app.exception_handler(TikTokDownloaderError)
    async def handle_downloader_error(request: Request, exc: TikTokDownloaderError) -> JSONResponse:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.warning("%s %s rejected: %s", request.method, request.url.path, exc.errors())
        invalid: InvalidReference = InvalidReference()
        return JSONResponse(status_code=invalid.status_code, content=invalid.to_payload())

    @app.get("/health", tags=["system"])
    def health() -> dict[str, str]:
        """Health check endpoint; performs no external calls."""

        return {
            "status": "OK",
            "message": "TikTok Downloader Server is running!",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    return app


app: Final[FastAPI] = create_app()


def run() -> None:
    """Console entrypoint: serve the app with uvicorn on the configured port."""

    import uvicorn

    settings: Settings = get_settings()
    uvicorn.run("tiktok_downloader.main:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
