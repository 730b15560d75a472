"""Async tests for reference validation and ordered endpoint fallback."""
from __future__ import annotations

import unittest
from typing import Any, Callable
from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs, urlparse

import httpx
from yt_dlp.utils import DownloadError

from tiktok_downloader.core.config import Settings
from tiktok_downloader.domain.errors import AllSourcesFailed, InvalidReference
from tiktok_downloader.domain.video import VideoRecord
from tiktok_downloader.infra.http import build_client
from tiktok_downloader.services.resolver import (
    ENDPOINTS,
    Resolver,
    ResolverEndpoint,
    validate_reference,
)

VIDEO_URL: str = "https://www.tiktok.com/@u/video/1"

Handler = Callable[[httpx.Request], httpx.Response]


class _CountingTransport(httpx.MockTransport):
    """MockTransport that records every request it receives."""

    def __init__(self, handler: Handler) -> None:
        self.requests: list[httpx.Request] = []

        def _record(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(_record)

    @property
    def hosts(self) -> list[str]:
        return [r.url.host for r in self.requests]


def _ok(data: Any) -> httpx.Response:
    return httpx.Response(200, json={"code": 0, "data": data})


class TestValidateReference(unittest.TestCase):
    def test_accepts_tiktok_hosts(self) -> None:
        for url in (
            VIDEO_URL,
            "https://vm.tiktok.com/ZMabc/",
            "http://vt.tiktok.com/xyz",
            "https://m.tiktok.com/v/1.html",
            "https://tiktok.com/@u/video/1",
        ):
            self.assertEqual(validate_reference(url), url)

    def test_adds_scheme_and_strips(self) -> None:
        self.assertEqual(validate_reference("  vm.tiktok.com/ZMabc  "), "https://vm.tiktok.com/ZMabc")

    def test_rejects_other_hosts(self) -> None:
        for url in (
            "https://www.youtube.com/watch?v=1",
            "https://nottiktok.com/@u/video/1",
            "https://tiktok.com.evil.example/x",
            "ftp://www.tiktok.com/@u/video/1",
            "notaurl",
        ):
            with self.assertRaises(InvalidReference, msg=url):
                validate_reference(url)

    def test_missing_reference_message(self) -> None:
        with self.assertRaises(InvalidReference) as ctx:
            validate_reference(None)
        self.assertEqual(ctx.exception.to_payload()["message"], "TikTok URL is required")

    def test_endpoint_url_encodes_reference(self) -> None:
        built: str = ENDPOINTS["tikwm"].build_url(VIDEO_URL)
        self.assertEqual(parse_qs(urlparse(built).query)["url"], [VIDEO_URL])
        self.assertIn("https%3A%2F%2Fwww.tiktok.com%2F%40u%2Fvideo%2F1", built)


class TestResolver(unittest.IsolatedAsyncioTestCase):
    """Fallback order, failure bookkeeping and normalization tagging."""

    def setUp(self) -> None:
        self.settings: Settings = Settings(sources=["tikwm", "tiklydown"])

    def _resolver(self, transport: httpx.MockTransport, **kwargs: Any) -> tuple[Resolver, httpx.AsyncClient]:
        client: httpx.AsyncClient = build_client(self.settings, transport=transport)
        self.addAsyncCleanup(client.aclose)
        return Resolver(client, self.settings, **kwargs), client

    async def test_invalid_reference_makes_no_calls(self) -> None:
        transport = _CountingTransport(lambda r: _ok({"play": "http://x/v.mp4"}))
        resolver, _ = self._resolver(transport)
        with self.assertRaises(InvalidReference):
            await resolver.resolve("https://example.com/video/1")
        self.assertEqual(transport.requests, [])

    async def test_first_success_wins(self) -> None:
        transport = _CountingTransport(lambda r: _ok({"id": "1", "play": "http://x/v.mp4"}))
        resolver, _ = self._resolver(transport)
        record: VideoRecord = await resolver.resolve(VIDEO_URL)
        self.assertEqual(record.sourceTag, "tikwm")
        self.assertEqual(transport.hosts, ["www.tikwm.com"])

    async def test_falls_back_after_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "www.tikwm.com":
                raise httpx.ConnectTimeout("timed out", request=request)
            return _ok({"id": "1", "title": "B", "play": "http://x/b.mp4"})

        transport = _CountingTransport(handler)
        resolver, _ = self._resolver(transport)
        record: VideoRecord = await resolver.resolve(VIDEO_URL)
        self.assertEqual(record.sourceTag, "tiklydown")
        self.assertEqual(record.title, "B")
        self.assertEqual(transport.hosts, ["www.tikwm.com", "api.tiklydown.com"])

    async def test_no_endpoint_after_success_is_tried(self) -> None:
        third = ResolverEndpoint("tikwm", url_template="https://third.example/?url={url}")
        chain = [ENDPOINTS["tikwm"], ENDPOINTS["tiklydown"], third]

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "www.tikwm.com":
                return httpx.Response(503, text="busy")
            return _ok({"play": "http://x/b.mp4"})

        transport = _CountingTransport(handler)
        resolver, _ = self._resolver(transport, endpoints=chain)
        record: VideoRecord = await resolver.resolve(VIDEO_URL)
        self.assertEqual(record.sourceTag, "tiklydown")
        self.assertNotIn("third.example", transport.hosts)

    async def test_all_fail_reports_last_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "www.tikwm.com":
                return _ok(None)
            raise httpx.ConnectError("connection refused", request=request)

        resolver, _ = self._resolver(_CountingTransport(handler))
        with self.assertRaises(AllSourcesFailed) as ctx:
            await resolver.resolve(VIDEO_URL)
        self.assertEqual(ctx.exception.detail, "connection refused")
        self.assertEqual(ctx.exception.status_code, 400)

    async def test_all_fail_reports_no_data(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "www.tikwm.com":
                return httpx.Response(500)
            return httpx.Response(200, json={"msg": "nothing"})

        resolver, _ = self._resolver(_CountingTransport(handler))
        with self.assertRaises(AllSourcesFailed) as ctx:
            await resolver.resolve(VIDEO_URL)
        self.assertEqual(ctx.exception.detail, "No data from API")

    async def test_status_error_reason(self) -> None:
        resolver, _ = self._resolver(_CountingTransport(lambda r: httpx.Response(429)))
        with self.assertRaises(AllSourcesFailed) as ctx:
            await resolver.resolve(VIDEO_URL)
        self.assertEqual(ctx.exception.detail, "Request failed with status code 429")

    async def test_payload_without_media_counts_as_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "www.tikwm.com":
                return _ok({"id": "1", "title": "no media"})
            return _ok({"id": "1", "play": "http://x/b.mp4"})

        transport = _CountingTransport(handler)
        resolver, _ = self._resolver(transport)
        record: VideoRecord = await resolver.resolve(VIDEO_URL)
        self.assertEqual(record.sourceTag, "tiklydown")

    async def test_non_json_body_counts_as_failure(self) -> None:
        resolver, _ = self._resolver(_CountingTransport(lambda r: httpx.Response(200, text="<html>")))
        with self.assertRaises(AllSourcesFailed):
            await resolver.resolve(VIDEO_URL)

    async def test_requests_carry_browser_user_agent(self) -> None:
        transport = _CountingTransport(lambda r: _ok({"play": "http://x/v.mp4"}))
        resolver, _ = self._resolver(transport)
        await resolver.resolve(VIDEO_URL)
        self.assertIn("Mozilla/5.0", transport.requests[0].headers["User-Agent"])
        self.assertEqual(transport.requests[0].extensions["timeout"]["read"], 15.0)


class TestYtdlpEndpoint(unittest.IsolatedAsyncioTestCase):
    """The optional yt-dlp endpoint runs after the HTTP providers."""

    def setUp(self) -> None:
        self.settings: Settings = Settings(sources=["tikwm", "ytdlp"])

    @patch("tiktok_downloader.services.resolver.YoutubeDL")
    async def test_ytdlp_used_when_http_fails(self, ydl_mock: MagicMock) -> None:
        inst: MagicMock = ydl_mock.return_value.__enter__.return_value
        inst.extract_info.return_value = {"id": "1", "title": "Y", "url": "https://cdn/y.mp4"}
        transport = _CountingTransport(lambda r: httpx.Response(502))
        async with build_client(self.settings, transport=transport) as client:
            record: VideoRecord = await Resolver(client, self.settings).resolve(VIDEO_URL)
        self.assertEqual(record.sourceTag, "ytdlp")
        self.assertEqual(record.qualities[0].url, "https://cdn/y.mp4")
        inst.extract_info.assert_called_once_with(VIDEO_URL, download=False)
        self.assertEqual(ydl_mock.call_args.args[0]["socket_timeout"], 15.0)

    @patch("tiktok_downloader.services.resolver.YoutubeDL")
    async def test_ytdlp_error_is_last_reason(self, ydl_mock: MagicMock) -> None:
        inst: MagicMock = ydl_mock.return_value.__enter__.return_value
        inst.extract_info.side_effect = DownloadError("ERROR: Unable to extract")
        transport = _CountingTransport(lambda r: httpx.Response(502))
        async with build_client(self.settings, transport=transport) as client:
            with self.assertRaises(AllSourcesFailed) as ctx:
                await Resolver(client, self.settings).resolve(VIDEO_URL)
        self.assertIn("Unable to extract", ctx.exception.detail or "")
