"""
Tests for the HTTP wiring: status codes, response shapes and streaming headers.
"""
import asyncio
from unittest.mock import AsyncMock, patch
from urllib.parse import urlencode

import httpx
import pytest
from fastapi.testclient import TestClient

from savegram.errors import (
    ExtractionFailed,
    FetchTimeout,
    StrategyFailure,
    UpstreamError,
    UpstreamUnavailable,
)
from savegram.instagram.strategies import ExtractionMethod, ExtractionResult
from savegram.main import app
from savegram.streaming.streamer import open_stream

MEDIA_URL = "https://scontent.cdninstagram.com/v/t50/video.mp4?oh=abc"


@pytest.fixture
def client():
    return TestClient(app)


class FiniteStream(httpx.AsyncByteStream):
    def __init__(self, chunks, fail_after=None):
        self.chunks = chunks
        self.fail_after = fail_after

    async def __aiter__(self):
        for i, chunk in enumerate(self.chunks):
            if self.fail_after is not None and i == self.fail_after:
                raise httpx.ReadError("reset")
            yield chunk


def _fake_open_stream(status=200, headers=None, chunks=(b"abcd", b"efgh"), fail_after=None):
    def handler(request):
        return httpx.Response(status, headers=headers or {}, stream=FiniteStream(list(chunks), fail_after))

    async def fake(request):
        return await open_stream(request, chunk_size=4, transport=httpx.MockTransport(handler))

    return fake


class TestHealth:
    def test_health(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "ok"
        assert isinstance(body["timestamp"], int)


class TestDownloadRoute:
    def test_success(self, client):
        result = ExtractionResult("https://cdn/v.mp4", ExtractionMethod.open_graph_tag)
        with patch("savegram.instagram.routes.extract", AsyncMock(return_value=result)) as mock_extract:
            resp = client.post("/api/download", json={"url": "https://instagram.com/reel/Cx1AbC/?igsh=1"})

        assert resp.status_code == 200
        assert resp.json() == {
            "videoUrl": "https://cdn/v.mp4",
            "method": "open-graph-tag",
            "shortcode": "Cx1AbC",
            "type": "reel",
        }
        ref = mock_extract.call_args.args[0]
        assert ref.canonical_url == "https://www.instagram.com/reel/Cx1AbC/"

    @pytest.mark.parametrize("body", [{}, {"url": ""}, {"url": "   "}])
    def test_missing_url(self, client, body):
        resp = client.post("/api/download", json=body)
        assert resp.status_code == 400
        assert resp.json()["error"] == "URL is required."

    def test_wrong_type(self, client):
        resp = client.post("/api/download", json={"url": 123})
        assert resp.status_code == 400

    def test_invalid_url(self, client):
        with patch("savegram.instagram.routes.extract", AsyncMock()) as mock_extract:
            resp = client.post("/api/download", json={"url": "https://instagram.com/someuser/"})
        assert resp.status_code == 400
        assert "Invalid Instagram URL" in resp.json()["error"]
        mock_extract.assert_not_awaited()

    def test_extraction_failed(self, client):
        reasons = [
            StrategyFailure("embedded_json", "no_match"),
            StrategyFailure("opengraph", "no_match"),
            StrategyFailure("pattern_scan", "no_match"),
        ]
        with patch("savegram.instagram.routes.extract", AsyncMock(side_effect=ExtractionFailed(reasons))):
            resp = client.post("/api/download", json={"url": "https://instagram.com/p/ABC/"})

        assert resp.status_code == 422
        body = resp.json()
        assert "private" in body["error"]
        assert body["reasons"] == [
            "embedded_json: no_match",
            "opengraph: no_match",
            "pattern_scan: no_match",
        ]
        assert "videoUrl" not in body

    def test_upstream_error(self, client):
        err = UpstreamError("Instagram returned 429", status_code=429)
        with patch("savegram.instagram.routes.extract", AsyncMock(side_effect=err)):
            resp = client.post("/api/download", json={"url": "https://instagram.com/p/ABC/"})
        assert resp.status_code == 502
        assert resp.json()["error"] == "Instagram returned 429"

    def test_timeout(self, client):
        with patch("savegram.instagram.routes.extract", AsyncMock(side_effect=FetchTimeout("slow"))):
            resp = client.post("/api/download", json={"url": "https://instagram.com/p/ABC/"})
        assert resp.status_code == 504


class TestStreamRoute:
    def test_streams_with_headers(self, client):
        fake = _fake_open_stream(headers={"content-type": "video/mp4", "content-length": "8"})
        with patch("savegram.streaming.routes.open_stream", fake):
            resp = client.get("/api/stream", params={"url": MEDIA_URL, "shortcode": "Cx1AbC"})

        assert resp.status_code == 200
        assert resp.content == b"abcdefgh"
        assert resp.headers["content-type"] == "video/mp4"
        assert resp.headers["content-length"] == "8"
        assert resp.headers["content-disposition"] == 'attachment; filename="savegram-Cx1AbC.mp4"'

    def test_generic_filename(self, client):
        with patch("savegram.streaming.routes.open_stream", _fake_open_stream()):
            resp = client.get("/api/stream", params={"url": MEDIA_URL})
        assert resp.headers["content-disposition"] == 'attachment; filename="savegram-video.mp4"'
        assert resp.headers["content-type"] == "video/mp4"

    @pytest.mark.parametrize("params", [{}, {"url": "http://cdn/v.mp4"}, {"url": "javascript:alert(1)"}])
    def test_rejects_non_https(self, client, params):
        with patch("savegram.streaming.routes.open_stream", AsyncMock()) as mock_open:
            resp = client.get("/api/stream", params=params)
        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid video URL."
        mock_open.assert_not_awaited()

    def test_upstream_unavailable(self, client):
        with patch("savegram.streaming.routes.open_stream", _fake_open_stream(status=403)):
            resp = client.get("/api/stream", params={"url": MEDIA_URL})
        assert resp.status_code == 502
        assert resp.json()["error"] == "Video source unavailable."

    def test_upstream_unavailable_direct(self, client):
        err = UpstreamUnavailable("Video source unavailable.", status_code=404)
        with patch("savegram.streaming.routes.open_stream", AsyncMock(side_effect=err)):
            resp = client.get("/api/stream", params={"url": MEDIA_URL})
        assert resp.status_code == 502

    def test_mid_body_failure_truncates(self, client):
        fake = _fake_open_stream(chunks=(b"abcd", b"efgh", b"ijkl"), fail_after=1)
        with patch("savegram.streaming.routes.open_stream", fake):
            resp = client.get("/api/stream", params={"url": MEDIA_URL})
        assert resp.status_code == 200
        assert resp.content == b"abcd"


class EndlessStream(httpx.AsyncByteStream):
    """Upstream body that never ends on its own."""

    def __init__(self):
        self.chunks_produced = 0
        self.closed = False

    async def __aiter__(self):
        while not self.closed:
            await asyncio.sleep(0)
            self.chunks_produced += 1
            yield b"xxxx"

    async def aclose(self):
        self.closed = True


class TestStreamRouteDisconnect:
    @pytest.mark.asyncio
    async def test_client_disconnect_closes_upstream(self):
        upstream = EndlessStream()
        transport = httpx.MockTransport(lambda request: httpx.Response(200, stream=upstream))

        async def fake_open_stream(request):
            return await open_stream(request, chunk_size=4, transport=transport)

        first_chunk_sent = asyncio.Event()
        messages = []

        async def receive():
            await first_chunk_sent.wait()
            return {"type": "http.disconnect"}

        async def send(message):
            messages.append(message)
            if message["type"] == "http.response.body" and message.get("body"):
                first_chunk_sent.set()

        scope = {
            "type": "http",
            "asgi": {"version": "3.0", "spec_version": "2.3"},
            "http_version": "1.1",
            "method": "GET",
            "scheme": "http",
            "path": "/api/stream",
            "raw_path": b"/api/stream",
            "root_path": "",
            "query_string": urlencode({"url": MEDIA_URL}).encode(),
            "headers": [(b"host", b"testserver")],
            "client": ("testclient", 50000),
            "server": ("testserver", 80),
        }

        with patch("savegram.streaming.routes.open_stream", fake_open_stream):
            await asyncio.wait_for(app(scope, receive, send), timeout=5)

        assert messages[0]["type"] == "http.response.start"
        assert messages[0]["status"] == 200
        assert upstream.closed
        # The body was cut off, never completed.
        assert all(m.get("more_body", False) for m in messages if m["type"] == "http.response.body")
