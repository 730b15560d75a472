"""Ordered multi-source resolution of TikTok links.

A reference is validated locally, then each configured endpoint is tried in
turn until one yields a usable payload. Endpoints are never raced and a
failed endpoint is not retried within the same call.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence
from urllib.parse import quote, urlparse

import httpx
from yt_dlp import YoutubeDL
from yt_dlp.utils import YoutubeDLError

from tiktok_downloader.core.config import Settings
from tiktok_downloader.domain.errors import AllSourcesFailed, InvalidReference
from tiktok_downloader.domain.video import VideoRecord
from tiktok_downloader.services.normalize import normalize

logger = logging.getLogger(__name__)

ACCEPTED_HOSTS: frozenset[str] = frozenset({"tiktok.com"})
NO_DATA: str = "No data from API"


@dataclass(frozen=True)
class ResolverEndpoint:
    """One lookup service in the fallback chain.

    Notes
    -----
    - ``name`` selects the normalizer and becomes ``VideoRecord.sourceTag``.
    - ``kind`` is ``"http"`` for JSON lookup APIs (``url_template`` holds a
      ``{url}`` placeholder) or ``"ytdlp"`` for local extraction.
    """

    name: str
    kind: str = "http"
    url_template: Optional[str] = None

    def build_url(self, reference: str) -> str:
        if self.url_template is None:
            raise ValueError(f"Endpoint {self.name} has no URL template")
        return self.url_template.format(url=quote(reference, safe=""))


ENDPOINTS: dict[str, ResolverEndpoint] = {
    "tikwm": ResolverEndpoint("tikwm", url_template="https://www.tikwm.com/api/?url={url}"),
    "tiklydown": ResolverEndpoint(
        "tiklydown", url_template="https://api.tiklydown.com/api/download?url={url}"
    ),
    "ytdlp": ResolverEndpoint("ytdlp", kind="ytdlp"),
}


def validate_reference(reference: Optional[str]) -> str:
    """Validate a caller-supplied link and return it in canonical form.

    Parameters
    ----------
    reference: Optional[str]
        The shareable link as typed or pasted by the user.

    Returns
    -------
    str
        The stripped link, with ``https://`` prepended when no scheme was given.

    Notes
    -----
    - Accepts ``tiktok.com`` and any of its subdomains (``www``, ``m``, ``vm``,
      ``vt``); lookalike hosts such as ``nottiktok.com`` are rejected.
    - Pure function: never touches the network.

    Raises
    ------
    InvalidReference
        If the link is empty, not http(s), or not on an accepted host.
    """

    candidate: str = (reference or "").strip()
    if not candidate:
        raise InvalidReference("TikTok URL is required")
    if "://" not in candidate:
        candidate = f"https://{candidate}"

    parsed = urlparse(candidate)
    host: str = (parsed.hostname or "").lower()
    if parsed.scheme not in {"http", "https"} or not host:
        raise InvalidReference()
    if not any(host == h or host.endswith(f".{h}") for h in ACCEPTED_HOSTS):
        raise InvalidReference()
    return candidate


def endpoints_from_settings(settings: Settings) -> list[ResolverEndpoint]:
    return [ENDPOINTS[name] for name in settings.sources]


class Resolver:
    """Resolve references against an ordered list of endpoints.

    Parameters
    ----------
    client: httpx.AsyncClient
        Client used for HTTP endpoints; owned by the caller.
    settings: Settings
        Provides timeouts and the outbound User-Agent.
    endpoints: Optional[Sequence[ResolverEndpoint]]
        Override for the chain; defaults to ``settings.sources``.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        settings: Settings,
        endpoints: Optional[Sequence[ResolverEndpoint]] = None,
    ) -> None:
        self._client = client
        self._settings = settings
        self._endpoints: tuple[ResolverEndpoint, ...] = tuple(
            endpoints if endpoints is not None else endpoints_from_settings(settings)
        )

    @property
    def endpoints(self) -> tuple[ResolverEndpoint, ...]:
        return self._endpoints

    async def resolve(self, reference: Optional[str]) -> VideoRecord:
        """Return the record from the first endpoint that yields usable data.

        Raises
        ------
        InvalidReference
            Before any network call, if the reference is not a TikTok link.
        AllSourcesFailed
            If every endpoint failed; ``detail`` is the last failure reason.
        """

        url: str = validate_reference(reference)
        last_error: str = "All APIs failed"

        for endpoint in self._endpoints:
            logger.info("Trying resolver endpoint %s", endpoint.name)
            try:
                payload: Optional[dict[str, Any]] = await self._fetch(endpoint, url)
                if not payload:
                    last_error = NO_DATA
                    logger.warning("Endpoint %s returned no data", endpoint.name)
                    continue
                record: VideoRecord = normalize(payload, endpoint.name)
            except httpx.HTTPStatusError as ex:
                last_error = f"Request failed with status code {ex.response.status_code}"
                logger.warning("Endpoint %s failed: %s", endpoint.name, last_error)
                continue
            except (httpx.HTTPError, YoutubeDLError, ValueError) as ex:
                last_error = str(ex) or type(ex).__name__
                logger.warning("Endpoint %s failed: %s", endpoint.name, last_error)
                continue

            logger.info(
                "Resolved %s via %s with qualities %s",
                url,
                endpoint.name,
                [q.quality.value for q in record.qualities],
            )
            return record

        logger.error("All resolver endpoints failed for %s: %s", url, last_error)
        raise AllSourcesFailed(last_error)

    async def _fetch(self, endpoint: ResolverEndpoint, url: str) -> Optional[dict[str, Any]]:
        if endpoint.kind == "ytdlp":
            return await self._fetch_ytdlp(url)
        return await self._fetch_http(endpoint, url)

    async def _fetch_http(self, endpoint: ResolverEndpoint, url: str) -> Optional[dict[str, Any]]:
        """GET the lookup API and return its ``data`` object, if any.

        Notes
        -----
        - Non-2xx responses raise ``httpx.HTTPStatusError``.
        - Bodies that are not JSON raise ``ValueError`` (``JSONDecodeError``).
        - A ``data`` value that is missing, empty, or not an object is ``None``.
        """

        response: httpx.Response = await self._client.get(
            endpoint.build_url(url),
            timeout=self._settings.resolver_timeout,
            headers={"User-Agent": self._settings.user_agent},
        )
        logger.debug("Endpoint %s answered HTTP %s", endpoint.name, response.status_code)
        response.raise_for_status()
        body: Any = response.json()
        data: Any = body.get("data") if isinstance(body, dict) else None
        return data if isinstance(data, dict) and data else None

    async def _fetch_ytdlp(self, url: str) -> Optional[dict[str, Any]]:
        """Extract metadata locally with yt-dlp in a worker thread."""

        ydl_opts: dict[str, Any] = {
            "quiet": True,
            "no_warnings": True,
            "noplaylist": True,
            "skip_download": True,
            "socket_timeout": self._settings.resolver_timeout,
            "http_headers": {"User-Agent": self._settings.user_agent},
        }

        def _blocking() -> Optional[dict[str, Any]]:
            with YoutubeDL(ydl_opts) as ydl:
                return ydl.extract_info(url, download=False)

        info: Optional[dict[str, Any]] = await asyncio.to_thread(_blocking)
        return info or None
