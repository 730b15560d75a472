"""Pass-through relay of a resolved video's media stream.

The relay resolves a reference, picks a quality variant, and opens the media
URL as a stream. Nothing is committed to the caller until the upstream has
answered with a 2xx status and delivered its first chunk, so every failure
up to that point can still become a JSON error response. After that the
session is ``STREAMING`` and failures can only be logged.
"""
from __future__ import annotations

import logging
import re
from enum import Enum
from typing import AsyncIterator, Optional

import httpx

from tiktok_downloader.core.config import Settings
from tiktok_downloader.domain.errors import (
    MediaFetchError,
    NoVariantAvailable,
    UpstreamStreamError,
)
from tiktok_downloader.domain.video import Quality, QualityOption, VideoRecord
from tiktok_downloader.services.resolver import Resolver

logger = logging.getLogger(__name__)

PLATFORM: str = "tiktok"
MEDIA_EXTENSION: str = "mp4"
MEDIA_CONTENT_TYPE: str = "video/mp4"
_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class RelayState(str, Enum):
    """Lifecycle of a relay session.

    Notes
    -----
    - ``HEADERS_PENDING``: upstream is open, nothing sent to the caller yet.
    - ``STREAMING``: headers are committed; errors can no longer be reported.
    - ``CLOSED``: the upstream response has been released.
    """

    HEADERS_PENDING = "headers_pending"
    STREAMING = "streaming"
    CLOSED = "closed"


def select_variant(record: VideoRecord, quality: str = Quality.STANDARD.value) -> QualityOption:
    """Pick the requested variant, falling back to the first available one.

    Raises
    ------
    NoVariantAvailable
        If the record carries no playable variant at all.
    """

    option: Optional[QualityOption] = record.select_quality(quality)
    if option is None:
        raise NoVariantAvailable()
    return option


def build_filename(record: VideoRecord) -> str:
    """Return ``tiktok_<uniqueId>_<id>.mp4`` restricted to ``[A-Za-z0-9._-]``."""

    filename: str = f"{PLATFORM}_{record.author.uniqueId}_{record.id}.{MEDIA_EXTENSION}"
    return _UNSAFE_FILENAME_CHARS.sub("_", filename)


class RelaySession:
    """An open upstream media stream waiting to be forwarded.

    Instances are produced by ``MediaRelay.open``. ``body()`` may be consumed
    once; it moves the session to ``STREAMING`` and always releases the
    upstream response when it finishes, fails, or is abandoned.
    """

    def __init__(
        self,
        record: VideoRecord,
        variant: QualityOption,
        response: httpx.Response,
        chunks: AsyncIterator[bytes],
        first_chunk: bytes,
    ) -> None:
        self.record = record
        self.variant = variant
        self.filename: str = build_filename(record)
        self._response = response
        self._chunks = chunks
        self._first_chunk = first_chunk
        self._state: RelayState = RelayState.HEADERS_PENDING

    @property
    def state(self) -> RelayState:
        return self._state

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Content-Disposition": f'attachment; filename="{self.filename}"',
            "Content-Type": MEDIA_CONTENT_TYPE,
            "Cache-Control": "no-cache",
        }

    async def body(self) -> AsyncIterator[bytes]:
        """Yield media bytes as they arrive from the upstream.

        Raises
        ------
        UpstreamStreamError
            If the upstream breaks mid-transfer. Headers are already sent at
            that point, so the error is logged and the connection torn down.
        RuntimeError
            If the body is consumed twice or after ``aclose``.
        """

        if self._state is not RelayState.HEADERS_PENDING:
            raise RuntimeError(f"Relay body cannot be consumed in state {self._state.value}")
        self._state = RelayState.STREAMING
        sent: int = 0
        logger.info("Starting relay of %s (%s)", self.filename, self.variant.quality.value)
        try:
            if self._first_chunk:
                sent += len(self._first_chunk)
                yield self._first_chunk
            async for chunk in self._chunks:
                sent += len(chunk)
                yield chunk
        except httpx.HTTPError as ex:
            logger.error("Stream error for %s after %d bytes: %s", self.filename, sent, ex)
            raise UpstreamStreamError(str(ex) or type(ex).__name__) from ex
        else:
            logger.info("Relay of %s completed (%d bytes)", self.filename, sent)
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        """Release the upstream response. Safe to call more than once."""

        if self._state is RelayState.CLOSED:
            return
        if self._state is RelayState.STREAMING:
            logger.debug("Closing upstream for %s", self.filename)
        self._state = RelayState.CLOSED
        await self._response.aclose()


class MediaRelay:
    """Resolve a reference and open its media stream.

    Parameters
    ----------
    client: httpx.AsyncClient
        Client for both resolution and the media fetch; owned by the caller.
    settings: Settings
        Media timeout, chunk size, User-Agent and Referer.
    resolver: Optional[Resolver]
        Defaults to a ``Resolver`` sharing ``client`` and ``settings``.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        settings: Settings,
        resolver: Optional[Resolver] = None,
    ) -> None:
        self._client = client
        self._settings = settings
        self._resolver: Resolver = resolver or Resolver(client, settings)

    async def open(self, reference: Optional[str], quality: str = Quality.STANDARD.value) -> RelaySession:
        """Resolve ``reference`` and connect to the chosen variant.

        Returns
        -------
        RelaySession
            Session in ``HEADERS_PENDING`` holding the first chunk.

        Raises
        ------
        InvalidReference, AllSourcesFailed
            Propagated from resolution.
        NoVariantAvailable
            If the record has no playable variant.
        MediaFetchError
            If the media origin fails before the first byte.
        """

        record: VideoRecord = await self._resolver.resolve(reference)
        variant: QualityOption = select_variant(record, quality)
        logger.info("Fetching %s quality (requested %s) from %s", variant.quality.value, quality, variant.url)

        request: httpx.Request = self._client.build_request(
            "GET",
            variant.url,
            headers={
                "User-Agent": self._settings.user_agent,
                "Referer": self._settings.media_referer,
            },
            timeout=self._settings.media_timeout,
        )
        try:
            response: httpx.Response = await self._client.send(request, stream=True)
        except httpx.HTTPError as ex:
            raise MediaFetchError(str(ex) or type(ex).__name__) from ex

        chunks: AsyncIterator[bytes] = response.aiter_bytes(self._settings.chunk_size)
        try:
            response.raise_for_status()
            first_chunk: bytes = await chunks.__anext__()
        except StopAsyncIteration:
            await response.aclose()
            raise MediaFetchError("Empty media response") from None
        except httpx.HTTPStatusError as ex:
            await response.aclose()
            raise MediaFetchError(f"Request failed with status code {ex.response.status_code}") from ex
        except httpx.HTTPError as ex:
            await response.aclose()
            raise MediaFetchError(str(ex) or type(ex).__name__) from ex

        return RelaySession(record, variant, response, chunks, first_chunk)
