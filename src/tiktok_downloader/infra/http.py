"""Outbound HTTP client construction."""
from __future__ import annotations

from typing import Callable, Optional

import httpx

from tiktok_downloader.core.config import Settings

ClientFactory = Callable[[], httpx.AsyncClient]


def build_client(settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    """Create a per-request ``httpx.AsyncClient``.

    Parameters
    ----------
    settings: Settings
        Supplies the default timeout and User-Agent.
    transport: Optional[httpx.AsyncBaseTransport]
        Custom transport, e.g. ``httpx.MockTransport`` in tests.

    Notes
    -----
    - Redirects are followed: share links and CDN URLs commonly redirect.
    - Per-call timeouts in the resolver and relay override the default here.
    - Callers must close the client; nothing is pooled across requests.
    """

    return httpx.AsyncClient(
        timeout=settings.resolver_timeout,
        follow_redirects=True,
        headers={"User-Agent": settings.user_agent},
        transport=transport,
    )


def client_factory(settings: Settings) -> ClientFactory:
    def _factory() -> httpx.AsyncClient:
        return build_client(settings)

    return _factory
