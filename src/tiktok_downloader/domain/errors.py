"""Exception hierarchy for resolution and relay failures.

Each error carries the HTTP status the API layer should answer with. Errors
raised after relay headers are committed (``UpstreamStreamError``) cannot be
turned into a response and are only logged.
"""
from __future__ import annotations

from typing import Optional


class TikTokDownloaderError(Exception):
    """Base class for failures the API reports as a structured body."""

    status_code: int = 500
    message: str = "Request failed"

    def __init__(self, detail: Optional[str] = None, *, message: Optional[str] = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(detail or self.message)
        self.detail: Optional[str] = detail

    def to_payload(self) -> dict[str, object]:
        """Return the ``{success, message, error?}`` body for this failure."""

        payload: dict[str, object] = {"success": False, "message": self.message}
        if self.detail:
            payload["error"] = self.detail
        return payload


class InvalidReference(TikTokDownloaderError):
    """The caller's URL is not an accepted TikTok link."""

    status_code = 400
    message = "Invalid TikTok URL format"

    def to_payload(self) -> dict[str, object]:
        # The detail is user-facing here ("TikTok URL is required").
        return {"success": False, "message": self.detail or self.message}


class ResolutionError(TikTokDownloaderError):
    status_code = 400
    message = "Failed to fetch video data from TikTok APIs"


class AllSourcesFailed(ResolutionError):
    """Every configured resolver endpoint failed.

    ``detail`` holds the reason recorded for the last endpoint tried.
    """


class RelayError(TikTokDownloaderError):
    message = "Download failed"


class NoVariantAvailable(RelayError):
    status_code = 400
    message = "No video quality available"


class MediaFetchError(RelayError):
    """The media origin could not be reached before any byte was sent."""

    status_code = 500


class UpstreamStreamError(Exception):
    """The media stream broke after response headers were committed.

    Not a ``TikTokDownloaderError``: the JSON error handler never sees it and
    the ASGI server drops the connection.
    """


class InternalError(TikTokDownloaderError):
    """Unexpected fault; only the exception message reaches the client."""
