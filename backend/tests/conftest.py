"""Test configuration and fixtures."""
import json
from typing import Any, Callable, Generator
from urllib.parse import urlencode

import httpx
import pytest
from fastapi.testclient import TestClient

from vidstream.main import create_app
from vidstream.services import http
from vidstream.services.info import basic_info_cache, full_info_cache

VIDEO_ID = "dQw4w9WgXcQ"
MEDIA_URL = "https://media.example/videoplayback/"
PLAYLIST_URL = "https://manifest.googlevideo.com/api/manifest/hls_playlist/id/x/itag/95/index.m3u8"
SEGMENT_BASE = "https://manifest.googlevideo.com/api/manifest/hls_playlist/id/x/itag/95/"

VOD_PLAYLIST = """#EXTM3U
#EXT-X-VERSION:3
#EXT-X-TARGETDURATION:4
#EXT-X-MEDIA-SEQUENCE:5
#EXTINF:4.0,
seg5.ts
#EXTINF:4.0,
seg6.ts
#EXTINF:4.0,
seg7.ts
#EXT-X-ENDLIST
"""

Handler = Callable[[httpx.Request], httpx.Response]


def media_format(itag: int, **fields: Any) -> dict[str, Any]:
    """A raw inline format record pointing at the fake media host."""
    return {"itag": itag, "url": f"{MEDIA_URL}{itag}", **fields}


class FakePlatform:
    """Serves canned watch pages, info payloads, manifests and media.

    Routes are keyed by host and path; every request is recorded.
    """

    def __init__(self) -> None:
        self.routes: dict[str, Handler] = {}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get(f"{request.url.host}{request.url.path}")
        if handler is None:
            return httpx.Response(404, text="not found")
        return handler(request)

    def route(self, url: str, handler: Handler) -> None:
        parsed = httpx.URL(url)
        self.routes[f"{parsed.host}{parsed.path}"] = handler

    def serve_text(self, url: str, body: str, status: int = 200) -> None:
        self.route(url, lambda request: httpx.Response(status, text=body))

    def requests_to(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    # -- Watch page / info endpoint ---------------------------------------

    def serve_watch_page(self, config: dict[str, Any] | None, html: str = "") -> None:
        script = ""
        if config is not None:
            script = (
                "<script>var ytplayer = ytplayer || {};"
                f"ytplayer.config = {json.dumps(config)};"
                "ytplayer.load = function() {};</script>"
            )
        page = (
            "<html><head>"
            '<meta name="description" content="A video used in tests">'
            '<link itemprop="name" content="Test Channel">'
            '<meta itemprop="datePublished" content="2020-01-31">'
            f"</head><body>{html}{script}</body></html>"
        )
        self.serve_text(f"https://www.youtube.com/watch?v={VIDEO_ID}", page)

    def serve_info(self, **fields: Any) -> None:
        payload = {"status": "ok", **fields}
        if isinstance(payload.get("player_response"), dict):
            payload["player_response"] = json.dumps(payload["player_response"])
        self.serve_text("https://www.youtube.com/get_video_info", urlencode(payload))

    def serve_video(
        self,
        formats: list[dict[str, Any]] | None = None,
        adaptive: list[dict[str, Any]] | None = None,
        title: str = "Test Video",
        html: str = "",
        **streaming: Any,
    ) -> dict[str, Any]:
        """Serve a playable video; returns its player response."""
        player_response = {
            "playabilityStatus": {"status": "OK"},
            "videoDetails": {"videoId": VIDEO_ID, "title": title, "lengthSeconds": "212"},
            "streamingData": {
                "formats": formats if formats is not None else [media_format(18)],
                "adaptiveFormats": adaptive or [],
                **streaming,
            },
        }
        self.serve_watch_page(
            {"sts": 18000, "assets": {"js": "/s/player/base.js"}, "args": {}}, html=html
        )
        self.serve_info(player_response=player_response)
        return player_response

    # -- Media ------------------------------------------------------------

    def serve_media(self, itag: int, body: bytes) -> None:
        """Serve ``body`` for the itag's media URL, honouring Range headers."""

        def handler(request: httpx.Request) -> httpx.Response:
            byte_range = request.headers.get("range")
            if not byte_range:
                return httpx.Response(200, content=body)
            start, _, end = byte_range.removeprefix("bytes=").partition("-")
            part = body[int(start): int(end) + 1 if end else None]
            return httpx.Response(206, content=part)

        self.route(f"{MEDIA_URL}{itag}", handler)

    def serve_hls_vod(self) -> None:
        """Serve the itag 95 on-demand playlist and its three segments."""
        self.serve_text(PLAYLIST_URL, VOD_PLAYLIST)
        for seq in (5, 6, 7):
            self.route(
                f"{SEGMENT_BASE}seg{seq}.ts",
                lambda request, seq=seq: httpx.Response(200, content=f"seg{seq}".encode()),
            )


@pytest.fixture(autouse=True)
def clear_info_caches() -> Generator[None, None, None]:
    """Start every test with empty info caches."""
    basic_info_cache.view.clear()
    full_info_cache.view.clear()
    yield
    basic_info_cache.view.clear()
    full_info_cache.view.clear()


@pytest.fixture
def platform() -> Generator[FakePlatform, None, None]:
    """Route the shared HTTP client to a fake platform.

    Yields:
        FakePlatform instance
    """
    fake = FakePlatform()
    http.set_client(httpx.AsyncClient(transport=httpx.MockTransport(fake), follow_redirects=True))
    yield fake
    http.set_client(None)


@pytest.fixture
def client() -> Generator[TestClient, None, None]:
    """Create a test client for the FastAPI app.

    Yields:
        TestClient instance
    """
    app = create_app()
    with TestClient(app) as test_client:
        yield test_client
