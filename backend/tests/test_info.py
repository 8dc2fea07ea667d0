"""Tests for the metadata pipeline."""
import asyncio
import json
from urllib.parse import urlencode

import httpx
import pytest
from conftest import MEDIA_URL, VIDEO_ID, FakePlatform, media_format

from vidstream import cache
from vidstream.models.video import DownloadOptions, RequestOptions, VideoFormat
from vidstream.services.collaborators import PageExtras
from vidstream.services.errors import (
    ConfigNotFoundError,
    NotPlayableError,
    PlayerResponseParseError,
    UpstreamError,
    VideoUnavailableError,
)
from vidstream.services.info import (
    get_basic_info,
    get_full_info,
    merge_formats,
    parse_dash_manifest,
    parse_hls_manifest,
)

WATCH_PATH = "/watch"
DASH_URL = "https://manifest.googlevideo.com/api/manifest/dash/expire/1/id/x"
HLS_URL = "https://manifest.googlevideo.com/api/manifest/hls_variant/id/x/file/index.m3u8"

DASH_MANIFEST = """<?xml version="1.0" encoding="UTF-8"?>
<MPD xmlns="urn:mpeg:dash:schema:mpd:2011" type="static">
  <Period>
    <AdaptationSet mimeType="audio/mp4">
      <Representation id="140" bandwidth="128000"/>
    </AdaptationSet>
    <AdaptationSet mimeType="video/mp4">
      <Representation id="137" bandwidth="2500000"/>
    </AdaptationSet>
  </Period>
</MPD>
"""

HLS_MASTER = """#EXTM3U
#EXT-X-STREAM-INF:BANDWIDTH=1500000
https://manifest.googlevideo.com/api/manifest/hls_playlist/id/x/itag/95/index.m3u8
#EXT-X-STREAM-INF:BANDWIDTH=100000
https://manifest.googlevideo.com/api/manifest/hls_playlist/id/x/variant/low/index.m3u8
"""

UNAVAILABLE_PAGE = (
    '<div id="player-unavailable" class="player-width player-height">'
    '<h1 id="unavailable-message" class="message">\n    Video unavailable\n</h1></div>'
)


class TestBasicInfo:
    """Tests for watch page, player config and info endpoint handling."""

    def test_basic_info(self, platform: FakePlatform) -> None:
        platform.serve_video(formats=[media_format(18)], adaptive=[media_format(140)])

        info = asyncio.run(get_basic_info(f"https://www.youtube.com/watch?v={VIDEO_ID}"))

        assert info.video_id == VIDEO_ID
        assert info.video_url == f"https://www.youtube.com/watch?v={VIDEO_ID}"
        assert info.title == "Test Video"
        assert info.length_seconds == "212"
        assert info.html5player == "/s/player/base.js"
        assert info.description == "A video used in tests"
        assert info.author is not None and info.author["name"] == "Test Channel"
        assert info.published == 20200131
        assert not info.full
        assert not info.age_restricted
        # Raw formats: inline then adaptive, nothing enriched yet
        assert [f.itag for f in info.formats] == ["18", "140"]
        assert info.formats[0].container is None

    def test_watch_page_request(self, platform: FakePlatform) -> None:
        platform.serve_video()

        asyncio.run(get_basic_info(VIDEO_ID, DownloadOptions(lang="fr")))

        request = platform.requests_to(WATCH_PATH)[0]
        assert request.url.params["v"] == VIDEO_ID
        assert request.url.params["hl"] == "fr"
        assert request.url.params["bpctr"].isdigit()
        assert request.headers["user-agent"] == ""

        info_request = platform.requests_to("/get_video_info")[0]
        assert info_request.url.params["video_id"] == VIDEO_ID
        assert info_request.url.params["sts"] == "18000"
        assert info_request.url.params["eurl"] == f"https://youtube.googleapis.com/v/{VIDEO_ID}"

    def test_request_option_headers_are_sent(self, platform: FakePlatform) -> None:
        platform.serve_video()
        options = DownloadOptions(request_options=RequestOptions(headers={"X-Test": "1"}))

        asyncio.run(get_basic_info(VIDEO_ID, options))

        assert all(r.headers["x-test"] == "1" for r in platform.requests)

    def test_player_response_falls_back_to_config(self, platform: FakePlatform) -> None:
        player_response = {
            "playabilityStatus": {"status": "OK"},
            "videoDetails": {"title": "From config"},
            "streamingData": {"formats": [media_format(22)]},
        }
        platform.serve_watch_page({"sts": 1, "args": {"player_response": json.dumps(player_response)}})
        platform.serve_info()

        info = asyncio.run(get_basic_info(VIDEO_ID))

        assert info.title == "From config"
        assert [f.itag for f in info.formats] == ["22"]

    def test_age_restricted_uses_embed_page(self, platform: FakePlatform) -> None:
        platform.serve_watch_page(None, html='<div id="watch7-player-age-gate-content"></div>')
        config = json.dumps({"sts": 7, "assets": {"js": "/s/p.js"}})
        embed = f"<script>yt.player.t.setConfig({{'PLAYER_CONFIG': {config}}});</script>"
        platform.serve_text(f"https://www.youtube.com/embed/{VIDEO_ID}", embed)
        platform.serve_info(player_response={
            "playabilityStatus": {"status": "OK"},
            "streamingData": {"formats": [media_format(18)]},
        })

        info = asyncio.run(get_basic_info(VIDEO_ID))

        assert info.age_restricted
        assert info.html5player == "/s/p.js"
        assert platform.requests_to("/get_video_info")[0].url.params["sts"] == "7"

    def test_unavailable(self, platform: FakePlatform) -> None:
        platform.serve_watch_page(None, html=UNAVAILABLE_PAGE)

        with pytest.raises(VideoUnavailableError, match="Video unavailable"):
            asyncio.run(get_basic_info(VIDEO_ID))

    def test_hidden_unavailable_marker_is_ignored(self, platform: FakePlatform) -> None:
        platform.serve_video(html='<div id="player-unavailable" class="hid player-width">')

        assert asyncio.run(get_basic_info(VIDEO_ID)).title == "Test Video"

    def test_config_not_found(self, platform: FakePlatform) -> None:
        platform.serve_watch_page(None)
        platform.serve_text(f"https://www.youtube.com/embed/{VIDEO_ID}", "<html></html>")

        with pytest.raises(ConfigNotFoundError):
            asyncio.run(get_basic_info(VIDEO_ID))

    def test_upstream_failure(self, platform: FakePlatform) -> None:
        platform.serve_watch_page({"sts": 1})
        platform.serve_text(
            "https://www.youtube.com/get_video_info",
            urlencode({"status": "fail", "errorcode": "150", "reason": "Not <b>here</b>"}),
        )

        with pytest.raises(UpstreamError) as exc_info:
            asyncio.run(get_basic_info(VIDEO_ID))
        assert exc_info.value.upstream_code == "150"
        assert str(exc_info.value) == "Code 150: Not here"

    def test_unplayable(self, platform: FakePlatform) -> None:
        platform.serve_watch_page({"sts": 1})
        platform.serve_info(player_response={
            "playabilityStatus": {"status": "UNPLAYABLE", "reason": "Blocked <br>here"},
        })

        with pytest.raises(NotPlayableError) as exc_info:
            asyncio.run(get_basic_info(VIDEO_ID))
        assert exc_info.value.reason == "Blocked\nhere"

    def test_bad_player_response(self, platform: FakePlatform) -> None:
        platform.serve_watch_page({"sts": 1})
        platform.serve_info(player_response="{not json")

        with pytest.raises(PlayerResponseParseError):
            asyncio.run(get_basic_info(VIDEO_ID))

    def test_network_errors_propagate(self, platform: FakePlatform) -> None:
        platform.serve_text(f"https://www.youtube.com/watch?v={VIDEO_ID}", "oops", status=500)

        with pytest.raises(httpx.HTTPStatusError):
            asyncio.run(get_basic_info(VIDEO_ID))


class TestInfoCaching:
    """Tests for memoization of the two entry points."""

    def test_link_and_id_share_an_entry(self, platform: FakePlatform) -> None:
        platform.serve_video()

        async def run() -> None:
            await get_basic_info(f"https://youtu.be/{VIDEO_ID}")
            await get_basic_info(VIDEO_ID)

        asyncio.run(run())
        assert len(platform.requests_to(WATCH_PATH)) == 1
        assert f"getBasicInfo-{VIDEO_ID}-en" in cache["basic"]

    def test_failures_are_retried(self, platform: FakePlatform) -> None:
        platform.serve_text(f"https://www.youtube.com/watch?v={VIDEO_ID}", "oops", status=503)
        with pytest.raises(httpx.HTTPStatusError):
            asyncio.run(get_basic_info(VIDEO_ID))

        platform.serve_video()
        assert asyncio.run(get_basic_info(VIDEO_ID)).title == "Test Video"
        assert len(platform.requests_to(WATCH_PATH)) == 2

    def test_full_info_reuses_basic_info(self, platform: FakePlatform) -> None:
        platform.serve_video()

        async def run() -> None:
            await get_basic_info(VIDEO_ID)
            await get_full_info(VIDEO_ID)
            await get_full_info(VIDEO_ID)

        asyncio.run(run())
        assert len(platform.requests_to(WATCH_PATH)) == 1
        assert f"getFullInfo-{VIDEO_ID}-en" in cache["full"]

    def test_cache_is_read_only(self) -> None:
        with pytest.raises(TypeError):
            cache["basic"] = None  # type: ignore[index]


class TestFullInfo:
    """Tests for deciphering, manifest merging and sorting."""

    def test_formats_are_enriched_and_sorted(self, platform: FakePlatform) -> None:
        platform.serve_video(formats=[media_format(18), media_format(22)], adaptive=[media_format(140)])

        info = asyncio.run(get_full_info(VIDEO_ID))

        assert info.full
        assert [f.itag for f in info.formats] == ["22", "18", "140"]
        assert info.formats[0].container == "mp4"
        assert info.formats[0].quality_label == "720p"

    def test_cached_basic_info_is_not_modified(self, platform: FakePlatform) -> None:
        platform.serve_video(formats=[media_format(18)])

        async def run() -> None:
            await get_full_info(VIDEO_ID)

        asyncio.run(run())
        basic = asyncio.run(get_basic_info(VIDEO_ID))
        assert not basic.full
        assert basic.formats[0].container is None

    def test_cipher_blobs_are_unpacked(self, platform: FakePlatform) -> None:
        cipher = urlencode({"url": f"{MEDIA_URL}22", "s": "SCRAMBLED", "sp": "sig"})
        platform.serve_video(formats=[{"itag": 22, "signatureCipher": cipher}])

        info = asyncio.run(get_full_info(VIDEO_ID))

        assert info.formats[0].url == f"{MEDIA_URL}22?sig=SCRAMBLED"

    def test_dash_formats_are_merged(self, platform: FakePlatform) -> None:
        platform.serve_video(formats=[media_format(18)], dashManifestUrl=DASH_URL)
        platform.serve_text(DASH_URL, DASH_MANIFEST)

        info = asyncio.run(get_full_info(VIDEO_ID))

        by_itag = {f.itag: f for f in info.formats}
        assert set(by_itag) == {"18", "137", "140"}
        assert by_itag["140"].is_dash_mpd
        assert by_itag["140"].url == DASH_URL
        assert by_itag["140"].audio_bitrate == 128
        assert not by_itag["18"].is_dash_mpd

    def test_inline_formats_win_over_manifest(self, platform: FakePlatform) -> None:
        platform.serve_video(adaptive=[media_format(140)], dashManifestUrl=DASH_URL)
        platform.serve_text(DASH_URL, DASH_MANIFEST)

        info = asyncio.run(get_full_info(VIDEO_ID))

        by_itag = {f.itag: f for f in info.formats}
        assert by_itag["140"].url == f"{MEDIA_URL}140"
        assert by_itag["137"].url == DASH_URL

    def test_hls_only_video(self, platform: FakePlatform) -> None:
        platform.serve_video(formats=[], hlsManifestUrl=HLS_URL)
        platform.serve_text(HLS_URL, HLS_MASTER)

        info = asyncio.run(get_full_info(VIDEO_ID))

        assert [f.itag for f in info.formats] == ["95"]
        assert info.formats[0].is_hls
        assert info.formats[0].quality_label == "720p"

    def test_no_formats_and_no_manifests(self, platform: FakePlatform) -> None:
        platform.serve_video(formats=[])

        with pytest.raises(VideoUnavailableError):
            asyncio.run(get_full_info(VIDEO_ID))


class TestManifestParsing:
    """Tests for the manifest helpers used by full info."""

    def test_dash_ids(self) -> None:
        formats = parse_dash_manifest(DASH_MANIFEST, DASH_URL)
        assert list(formats) == ["140", "137"]
        assert all(f.url == DASH_URL for f in formats.values())

    def test_hls_lines_without_itag_are_skipped(self) -> None:
        formats = parse_hls_manifest(HLS_MASTER)
        assert list(formats) == ["95"]

    def test_merge_keeps_existing_and_appends_new(self) -> None:
        existing = [VideoFormat(itag="18", url="a"), VideoFormat(itag="140", url="b")]
        manifest = {"140": VideoFormat(itag="140", url="m"), "137": VideoFormat(itag="137", url="m")}

        merged = merge_formats(existing, manifest)

        assert [(f.itag, f.url) for f in merged] == [("18", "a"), ("140", "b"), ("137", "m")]


class TestPageExtras:
    """Tests for the default ancillary extractor."""

    PAGE = (
        "<html><head>"
        '<meta name="description" content="Tom &amp; Jerry">'
        '<link itemprop="name" content="Cartoons">'
        '<meta itemprop="datePublished" content="1999-12-01">'
        "</head><body>"
        '<button class="yt-uix-button like-button-renderer-like-button like-button-renderer-like-button-unclicked">'
        '<span class="yt-uix-button-content">1,234</span></button>'
        '<button class="yt-uix-button like-button-renderer-dislike-button">'
        '<span class="yt-uix-button-content">56</span></button>'
        "<script>var cfg = {\"channelId\":\"UCabc\"};"
        "'RELATED_PLAYER_ARGS': {\"rvs\":\"id=aaaaaaaaaaa&title=One,title=none,id=bbbbbbbbbbb\"},"
        "</script></body></html>"
    )

    def test_extract(self) -> None:
        extras = PageExtras().extract(self.PAGE)

        assert extras["description"] == "Tom & Jerry"
        assert extras["author"] == {
            "id": "UCabc",
            "name": "Cartoons",
            "channel_url": "https://www.youtube.com/channel/UCabc",
        }
        assert extras["published"] == 19991201
        assert extras["likes"] == 1234
        assert extras["dislikes"] == 56
        assert [v["id"] for v in extras["related_videos"]] == ["aaaaaaaaaaa", "bbbbbbbbbbb"]

    def test_missing_fields(self) -> None:
        extras = PageExtras().extract("<html><body>nothing here</body></html>")

        assert extras["author"] is None
        assert extras["published"] is None
        assert extras["description"] is None
        assert extras["likes"] is None
        assert extras["related_videos"] == []

    def test_related_list_that_is_not_a_string(self) -> None:
        assert PageExtras.get_related_videos("'RELATED_PLAYER_ARGS': {\"rvs\": 5},") == []
