"""Metadata pipeline: watch page -> player config -> info endpoint -> manifests."""
import asyncio
import json
import math
import re
import time
import xml.etree.ElementTree as ElementTree
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qsl, urljoin

from vidstream.core.config import settings
from vidstream.core.logging import get_logger
from vidstream.models.video import DownloadOptions, VideoFormat, VideoInfo
from vidstream.services import http
from vidstream.services.cache import Args, MemoizingCache
from vidstream.services.collaborators import (
    AncillaryExtractor,
    CipherParamsDecipherer,
    Decipherer,
    FormatRegistry,
    PageExtras,
    StaticFormatRegistry,
)
from vidstream.services.errors import (
    ConfigNotFoundError,
    ConfigParseError,
    ManifestParseError,
    NotPlayableError,
    PlayerResponseParseError,
    UpstreamError,
    VideoUnavailableError,
)
from vidstream.services.formats import normalize, sort_formats
from vidstream.services.identifier import resolve_identifier
from vidstream.services.text import between, strip_html

logger = get_logger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

VIDEO_URL = "https://www.youtube.com/watch?v="
EMBED_URL = "https://www.youtube.com/embed/"
VIDEO_EURL = "https://youtube.googleapis.com/v/"
INFO_URL = "https://www.youtube.com/get_video_info"

_EMBED_CONFIG_START = "t.setConfig({'PLAYER_CONFIG': "
_EMBED_CONFIG_END = re.compile(r"\}(,'|\}\);)")
_HLS_ITAG_RE = re.compile(r"/itag/(\d+)/")
_ABSOLUTE_URL_RE = re.compile(r"https?://")


@dataclass
class Collaborators:
    """External engines the pipeline delegates to."""

    decipherer: Decipherer = field(default_factory=CipherParamsDecipherer)
    extras: AncillaryExtractor = field(default_factory=PageExtras)
    registry: FormatRegistry = field(default_factory=StaticFormatRegistry)


collaborators = Collaborators()


def _lang(options: DownloadOptions) -> str:
    return options.lang or settings.DEFAULT_LANG


# ---------------------------------------------------------------------------
# Basic info
# ---------------------------------------------------------------------------


def _check_unavailable(body: str) -> None:
    unavailable = between(body, '<div id="player-unavailable"', ">")
    if not unavailable or re.search(r"\bhid\b", between(unavailable, 'class="', '"')):
        return
    # Age-gated pages also carry the marker; the embed page handles those
    if '<div id="watch7-player-age-gate-content"' in body:
        return
    reason = between(body, '<h1 id="unavailable-message" class="message">', "</h1>").strip()
    raise VideoUnavailableError(reason)


def parse_formats(player_response: dict[str, Any]) -> list[VideoFormat]:
    """Inline formats followed by adaptive formats from ``streamingData``."""
    streaming_data = player_response.get("streamingData") or {}
    raw = (streaming_data.get("formats") or []) + (streaming_data.get("adaptiveFormats") or [])
    return [VideoFormat.model_validate(f) for f in raw]


async def fetch_basic_info(video_id: str, options: DownloadOptions) -> VideoInfo:
    """Fetch metadata and raw formats for ``video_id``.

    Raises:
        VideoUnavailableError: If the watch page reports the video unavailable
        ConfigNotFoundError: If no player config can be found
        ConfigParseError: If the player config is not valid JSON
        UpstreamError: If the info endpoint reports a failure
        PlayerResponseParseError: If ``player_response`` cannot be decoded
        NotPlayableError: If the video is marked UNPLAYABLE
        httpx.HTTPError: On network failure
    """
    lang = _lang(options)
    logger.info(f"Fetching basic info for {video_id}")

    # A blank User-Agent gets the legacy watch page that still embeds ytplayer.config
    body = await http.get_text(
        VIDEO_URL + video_id,
        params={"hl": lang, "bpctr": str(math.ceil(time.time()))},
        headers={"User-Agent": ""},
        options=options.request_options,
    )
    _check_unavailable(body)

    additional = collaborators.extras.extract(body)

    json_str = between(body, "ytplayer.config = ", "</script>")
    if json_str:
        end = json_str.rfind(";ytplayer.load")
        config = json_str[:end] if end != -1 else json_str
        return await _got_config(video_id, options, additional, config, from_embed=False)

    # Mature content needs a signed-in watch page; the embed page still has a config
    logger.info(f"No inline player config for {video_id}, trying embed page")
    embed_body = await http.get_text(
        EMBED_URL + video_id,
        params={"hl": lang},
        options=options.request_options,
    )
    config = between(embed_body, _EMBED_CONFIG_START, _EMBED_CONFIG_END)
    return await _got_config(video_id, options, additional, config, from_embed=True)


async def _got_config(
    video_id: str,
    options: DownloadOptions,
    additional: dict[str, Any],
    config_str: str,
    from_embed: bool,
) -> VideoInfo:
    if not config_str:
        raise ConfigNotFoundError()

    try:
        # The embed regex stops before the config's closing brace
        config = json.loads(config_str + ("}" if from_embed else ""))
    except json.JSONDecodeError as e:
        raise ConfigParseError(f"Error parsing config: {e}") from e

    params = {
        "video_id": video_id,
        "eurl": VIDEO_EURL + video_id,
        "ps": "default",
        "gl": "US",
        "hl": _lang(options),
        "sts": str(config.get("sts", "")),
    }
    body = await http.get_text(INFO_URL, params=params, options=options.request_options)
    info: dict[str, Any] = dict(parse_qsl(body, keep_blank_values=True))

    if info.get("status") == "fail":
        logger.warning(f"Info endpoint failed for {video_id}: code {info.get('errorcode')}")
        raise UpstreamError(info.get("errorcode"), strip_html(info.get("reason", "")))

    player_response_raw = info.get("player_response") or (config.get("args") or {}).get(
        "player_response"
    )
    try:
        player_response = (
            player_response_raw
            if isinstance(player_response_raw, dict)
            else json.loads(player_response_raw)
        )
    except (TypeError, json.JSONDecodeError) as e:
        raise PlayerResponseParseError(f"Error parsing `player_response`: {e}") from e
    if not isinstance(player_response, dict):
        raise PlayerResponseParseError("Error parsing `player_response`: not an object")

    playability = player_response.get("playabilityStatus") or {}
    if playability.get("status") == "UNPLAYABLE":
        raise NotPlayableError(strip_html(playability.get("reason", "")))

    details = player_response.get("videoDetails") or {}
    record = {
        **info,
        **additional,
        "player_response": player_response,
        "formats": parse_formats(player_response),
        "video_id": video_id,
        "video_url": VIDEO_URL + video_id,
        "title": details.get("title"),
        "length_seconds": details.get("lengthSeconds"),
        "age_restricted": from_embed,
        "html5player": (config.get("assets") or {}).get("js"),
        "full": False,
    }
    video_info = VideoInfo.model_validate(record)
    logger.info(f"Basic info for {video_id}: {len(video_info.formats)} formats")
    return video_info


# ---------------------------------------------------------------------------
# Full info
# ---------------------------------------------------------------------------


def merge_formats(
    formats: list[VideoFormat], formats_map: dict[str, VideoFormat]
) -> list[VideoFormat]:
    """Add manifest formats whose itag is not already present.

    Formats already in ``formats`` win; manifest-only itags follow in
    manifest order.
    """
    merged: dict[str, VideoFormat] = {}
    for fmt in formats:
        merged.setdefault(fmt.itag, fmt)
    for itag, fmt in formats_map.items():
        merged.setdefault(itag, fmt)
    return list(merged.values())


def parse_dash_manifest(text: str, url: str) -> dict[str, VideoFormat]:
    """Map each ``Representation`` id in a DASH MPD to a format pointing at ``url``."""
    try:
        root = ElementTree.fromstring(text)
    except ElementTree.ParseError as e:
        raise ManifestParseError(f"Error parsing DASH manifest: {e}") from e

    formats: dict[str, VideoFormat] = {}
    for element in root.iter():
        tag = element.tag.rsplit("}", 1)[-1]
        if tag.lower() != "representation":
            continue
        itag = element.get("id") or element.get("ID")
        if not itag:
            continue
        formats[itag] = VideoFormat(itag=itag, url=url)
    return formats


def parse_hls_manifest(text: str) -> dict[str, VideoFormat]:
    """Map the itag found in each absolute-URL line to that line.

    Lines without an ``/itag/<digits>/`` segment are skipped.
    """
    formats: dict[str, VideoFormat] = {}
    for line in text.split("\n"):
        line = line.strip()
        if not _ABSOLUTE_URL_RE.search(line):
            continue
        match = _HLS_ITAG_RE.search(line)
        if not match:
            logger.debug(f"Skipping HLS line without itag: {line[:80]}")
            continue
        itag = match.group(1)
        formats[itag] = VideoFormat(itag=itag, url=line)
    return formats


async def get_dash_manifest(url: str, options: DownloadOptions) -> dict[str, VideoFormat]:
    url = urljoin(VIDEO_URL, url)
    body = await http.get_text(url, options=options.request_options)
    return parse_dash_manifest(body, url)


async def get_hls_manifest(url: str, options: DownloadOptions) -> dict[str, VideoFormat]:
    url = urljoin(VIDEO_URL, url)
    body = await http.get_text(url, options=options.request_options)
    return parse_hls_manifest(body)


async def _no_manifest() -> dict[str, VideoFormat]:
    return {}


async def fetch_full_info(video_id: str, options: DownloadOptions) -> VideoInfo:
    """Fetch basic info, decipher formats, merge manifest formats and sort.

    Raises:
        VideoUnavailableError: If there are no formats and no manifests
        ManifestParseError: If a manifest cannot be parsed
        Any error raised by :func:`fetch_basic_info` or the decipherer
    """
    basic = await get_basic_info(video_id, options)
    # The cached basic record must stay untouched
    info = basic.model_copy(deep=True)

    dash_url = info.dash_manifest_url
    hls_url = info.hls_manifest_url
    if not info.formats and not dash_url and not hls_url:
        raise VideoUnavailableError("This video is unavailable")

    player_url = urljoin(VIDEO_URL, info.html5player or "")
    tokens = await collaborators.decipherer.get_tokens(player_url, options)
    collaborators.decipherer.decipher_formats(info.formats, tokens, options.debug)

    dash_formats, hls_formats = await asyncio.gather(
        get_dash_manifest(dash_url, options) if dash_url else _no_manifest(),
        get_hls_manifest(hls_url, options) if hls_url else _no_manifest(),
    )

    formats = info.formats
    for manifest_formats in (dash_formats, hls_formats):
        if manifest_formats:
            formats = merge_formats(formats, manifest_formats)

    info.formats = sort_formats(normalize(f, collaborators.registry) for f in formats)
    info.full = True
    logger.info(
        f"Full info for {video_id}: {len(info.formats)} formats "
        f"(dash={len(dash_formats)}, hls={len(hls_formats)})"
    )
    return info


# ---------------------------------------------------------------------------
# Cached entry points
# ---------------------------------------------------------------------------


def _key_fn(name: str):
    def key(args: Args) -> str:
        video_id, options = args
        return f"{name}-{video_id}-{_lang(options)}"

    return key


def _remap_args(args: Args) -> Args:
    link = args[0]
    options = args[1] if len(args) > 1 and args[1] is not None else DownloadOptions()
    return resolve_identifier(link), options


basic_info_cache: MemoizingCache[VideoInfo] = MemoizingCache(
    fetch_basic_info,
    _key_fn("getBasicInfo"),
    _remap_args,
    maxsize=settings.INFO_CACHE_MAXSIZE,
    ttl=settings.INFO_CACHE_TTL_SECONDS,
)
full_info_cache: MemoizingCache[VideoInfo] = MemoizingCache(
    fetch_full_info,
    _key_fn("getFullInfo"),
    _remap_args,
    maxsize=settings.INFO_CACHE_MAXSIZE,
    ttl=settings.INFO_CACHE_TTL_SECONDS,
)


async def get_basic_info(id_or_url: str, options: DownloadOptions | None = None) -> VideoInfo:
    """Basic info (raw formats, ``full=False``) for a link or id, cached."""
    return await basic_info_cache.call(id_or_url, options)


async def get_full_info(id_or_url: str, options: DownloadOptions | None = None) -> VideoInfo:
    """Full info (deciphered, merged, sorted, ``full=True``) for a link or id, cached."""
    return await full_info_cache.call(id_or_url, options)
