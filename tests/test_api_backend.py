"""
Tests for the optional paid extraction API client.
"""
from unittest.mock import patch

import httpx
import pytest

from savegram.config import Settings
from savegram.errors import FetchTimeout, UpstreamError
from savegram.instagram.api_backend import ApiBackend, get_api_backend, parse_envelope
from savegram.instagram.normalize import normalize
from savegram.instagram.strategies import ExtractionMethod

REF = normalize("https://www.instagram.com/reel/Cx1AbC/")
API_URL = "https://api.example.com/instagram/download"


class TestParseEnvelope:
    def test_direct_url(self):
        assert parse_envelope({"video_url": "https://cdn/a.mp4"}) == "https://cdn/a.mp4"

    def test_download_url_decoded(self):
        assert parse_envelope({"download_url": "https://cdn/a.mp4?x=1\\u0026y=2"}) == "https://cdn/a.mp4?x=1&y=2"

    def test_widest_video_variant(self):
        payload = {"medias": [
            {"type": "image", "url": "https://cdn/thumb.jpg", "width": 4000},
            {"type": "video", "url": "https://cdn/480.mp4", "width": 480},
            {"type": "video", "url": "https://cdn/1080.mp4", "width": 1080},
        ]}
        assert parse_envelope(payload) == "https://cdn/1080.mp4"

    def test_quality_label(self):
        payload = {"media": [
            {"url": "https://cdn/hd.mp4", "quality": "720p"},
            {"url": "https://cdn/sd.mp4", "quality": "360p"},
        ]}
        assert parse_envelope(payload) == "https://cdn/hd.mp4"

    def test_tie_goes_to_first(self):
        payload = {"medias": [
            {"type": "video", "url": "https://cdn/first.mp4"},
            {"type": "video", "url": "https://cdn/second.mp4"},
        ]}
        assert parse_envelope(payload) == "https://cdn/first.mp4"

    def test_nested_result(self):
        payload = {"status": "ok", "result": {"data": [{"video_url": "https://cdn/nested.mp4"}]}}
        assert parse_envelope(payload) == "https://cdn/nested.mp4"

    def test_nothing_usable(self):
        assert parse_envelope({"status": "error", "message": "private"}) is None
        assert parse_envelope(["not", "a", "dict"]) is None
        assert parse_envelope({"url": "not-a-url"}) is None

    def test_http_urls_skipped(self):
        assert parse_envelope({"video_url": "http://cdn/a.mp4"}) is None
        payload = {"video_url": "http://cdn/a.mp4", "download_url": "https://cdn/b.mp4"}
        assert parse_envelope(payload) == "https://cdn/b.mp4"

    def test_http_variant_skipped(self):
        payload = {"medias": [
            {"type": "video", "url": "http://cdn/1080.mp4", "width": 1080},
            {"type": "video", "url": "https://cdn/480.mp4", "width": 480},
        ]}
        assert parse_envelope(payload) == "https://cdn/480.mp4"


class TestApiBackend:
    def _backend(self, handler, **kwargs):
        return ApiBackend(
            base_url=API_URL,
            api_key="secret",
            transport=httpx.MockTransport(handler),
            **kwargs,
        )

    @pytest.mark.asyncio
    async def test_success(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"video_url": "https://cdn/api.mp4"})

        result = await self._backend(handler).extract(REF)

        assert result.media_url == "https://cdn/api.mp4"
        assert result.method == ExtractionMethod.external_api
        assert seen[0].headers["x-api-key"] == "secret"
        assert seen[0].url.params["url"] == REF.canonical_url

    @pytest.mark.asyncio
    async def test_custom_key_header(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={})

        await self._backend(handler, key_header="X-RapidAPI-Key").extract(REF)
        assert seen[0].headers["X-RapidAPI-Key"] == "secret"

    @pytest.mark.asyncio
    async def test_no_match(self):
        result = await self._backend(lambda r: httpx.Response(200, json={"status": "fail"})).extract(REF)
        assert result is None

    @pytest.mark.asyncio
    async def test_non_json(self):
        result = await self._backend(lambda r: httpx.Response(200, text="<html>")).extract(REF)
        assert result is None

    @pytest.mark.asyncio
    async def test_http_error(self):
        with pytest.raises(UpstreamError) as exc_info:
            await self._backend(lambda r: httpx.Response(503)).extract(REF)
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(FetchTimeout):
            await self._backend(handler).extract(REF)


class TestGetApiBackend:
    def test_disabled_by_default(self):
        with patch("savegram.instagram.api_backend.get_settings", return_value=Settings(api_backend_url=None)):
            assert get_api_backend() is None

    def test_configured(self):
        settings = Settings(api_backend_url=API_URL, api_backend_key="k", api_backend_timeout=5.0)
        with patch("savegram.instagram.api_backend.get_settings", return_value=settings):
            backend = get_api_backend()
        assert backend.base_url == API_URL
        assert backend.timeout == 5.0
