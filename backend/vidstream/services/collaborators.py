"""Interfaces for the collaborators the pipeline consumes, with default implementations.

The platform changes its signature scrambling, page markup and format table often, so
these are kept behind small protocols. The defaults here are deliberately plain: a
static itag table, a decipherer that only unpacks cipher blobs, and a BeautifulSoup
pass over the page markup.
"""
import json
import re
from typing import Any, Mapping, Protocol, Sequence
from urllib.parse import parse_qs

from bs4 import BeautifulSoup

from vidstream.core.logging import get_logger
from vidstream.models.video import DownloadOptions, VideoFormat
from vidstream.services.text import between

logger = get_logger(__name__)


class FormatRegistry(Protocol):
    """Static per-itag metadata (container, label, bitrates)."""

    def lookup(self, itag: str) -> dict[str, Any]:
        """Return known fields for ``itag``, or an empty dict."""
        ...


class Decipherer(Protocol):
    """Reverses the per-session obfuscation applied to format URLs."""

    async def get_tokens(self, player_url: str, options: DownloadOptions) -> Sequence[str]:
        ...

    def decipher_formats(
        self, formats: list[VideoFormat], tokens: Sequence[str], debug: bool = False
    ) -> None:
        """Rewrite each format's ``url`` in place."""
        ...


class AncillaryExtractor(Protocol):
    """Pulls descriptive fields out of raw watch-page markup."""

    def extract(self, body: str) -> dict[str, Any]:
        """Return author, published, description, media, related_videos, likes, dislikes."""
        ...


# ---------------------------------------------------------------------------
# Format registry
# ---------------------------------------------------------------------------


def _fmt(mime: str, label: str | None, bitrate: int | None, audio: int | None) -> dict[str, Any]:
    return {"mimeType": mime, "qualityLabel": label, "bitrate": bitrate, "audioBitrate": audio}


_MP4_AV = 'video/mp4; codecs="avc1.42001E, mp4a.40.2"'
_MP4_V = 'video/mp4; codecs="avc1.4d401f"'
_WEBM_V = 'video/webm; codecs="vp9"'
_TS_AV = 'video/ts; codecs="H.264, aac"'

FORMATS: dict[str, dict[str, Any]] = {
    # Progressive
    "5": _fmt('video/flv; codecs="Sorenson H.283, mp3"', "240p", 250000, 64),
    "17": _fmt('video/3gp; codecs="MPEG-4 Visual, aac"', "144p", 50000, 24),
    "18": _fmt(_MP4_AV, "360p", 500000, 96),
    "22": _fmt('video/mp4; codecs="avc1.64001F, mp4a.40.2"', "720p", 2000000, 192),
    "43": _fmt('video/webm; codecs="VP8, vorbis"', "360p", 500000, 128),
    # HLS
    "91": _fmt(_TS_AV, "144p", 100000, 48),
    "92": _fmt(_TS_AV, "240p", 150000, 48),
    "93": _fmt(_TS_AV, "360p", 500000, 128),
    "94": _fmt(_TS_AV, "480p", 800000, 128),
    "95": _fmt(_TS_AV, "720p", 1500000, 256),
    "96": _fmt(_TS_AV, "1080p", 2500000, 256),
    "300": _fmt(_TS_AV, "720p", 1318000, 128),
    "301": _fmt(_TS_AV, "1080p", 3000000, 128),
    # Adaptive video, mp4
    "133": _fmt(_MP4_V, "240p", 200000, None),
    "134": _fmt(_MP4_V, "360p", 300000, None),
    "135": _fmt(_MP4_V, "480p", 500000, None),
    "136": _fmt(_MP4_V, "720p", 1000000, None),
    "137": _fmt(_MP4_V, "1080p", 2500000, None),
    "160": _fmt(_MP4_V, "144p", 100000, None),
    "264": _fmt(_MP4_V, "1440p", 4000000, None),
    "266": _fmt(_MP4_V, "2160p", 12500000, None),
    "298": _fmt(_MP4_V, "720p", 3000000, None),
    "299": _fmt(_MP4_V, "1080p", 5500000, None),
    # Adaptive video, webm
    "242": _fmt(_WEBM_V, "240p", 100000, None),
    "243": _fmt(_WEBM_V, "360p", 250000, None),
    "244": _fmt(_WEBM_V, "480p", 500000, None),
    "247": _fmt(_WEBM_V, "720p", 700000, None),
    "248": _fmt(_WEBM_V, "1080p", 1500000, None),
    "271": _fmt(_WEBM_V, "1440p", 9000000, None),
    "278": _fmt(_WEBM_V, "144p 30fps", 80000, None),
    "313": _fmt(_WEBM_V, "2160p", 13000000, None),
    # Adaptive audio
    "139": _fmt('audio/mp4; codecs="mp4a.40.5"', None, None, 48),
    "140": _fmt('audio/mp4; codecs="mp4a.40.2"', None, None, 128),
    "141": _fmt('audio/mp4; codecs="mp4a.40.2"', None, None, 256),
    "171": _fmt('audio/webm; codecs="vorbis"', None, None, 128),
    "249": _fmt('audio/webm; codecs="opus"', None, None, 48),
    "250": _fmt('audio/webm; codecs="opus"', None, None, 64),
    "251": _fmt('audio/webm; codecs="opus"', None, None, 160),
}


class StaticFormatRegistry:
    """Registry backed by a fixed itag table."""

    def __init__(self, table: Mapping[str, Mapping[str, Any]] | None = None) -> None:
        self._table = FORMATS if table is None else table

    def lookup(self, itag: str) -> dict[str, Any]:
        entry = self._table.get(str(itag))
        if not entry:
            return {}
        return {k: v for k, v in entry.items() if v is not None}


# ---------------------------------------------------------------------------
# Decipherer
# ---------------------------------------------------------------------------


class CipherParamsDecipherer:
    """Resolves no tokens; only unpacks ``signatureCipher``/``cipher`` blobs.

    Formats that already carry a URL are left alone. For ciphered formats the
    ``url`` parameter is used and the scrambled signature is attached under its
    ``sp`` name unchanged, so a real decipherer can be swapped in without
    touching the pipeline.
    """

    async def get_tokens(self, player_url: str, options: DownloadOptions) -> Sequence[str]:
        if options.debug:
            logger.debug(f"No decipher tokens resolved for {player_url}")
        return []

    def decipher_formats(
        self, formats: list[VideoFormat], tokens: Sequence[str], debug: bool = False
    ) -> None:
        for fmt in formats:
            extra = fmt.model_extra or {}
            cipher = extra.get("signatureCipher") or extra.get("cipher")
            if fmt.url or not cipher:
                continue
            params = {k: v[0] for k, v in parse_qs(cipher).items()}
            url = params.get("url")
            if not url:
                continue
            signature = params.get("s")
            if signature:
                sep = "&" if "?" in url else "?"
                url = f"{url}{sep}{params.get('sp', 'signature')}={signature}"
            fmt.url = url
            if debug:
                logger.debug(f"Unpacked cipher for itag {fmt.itag}")


# ---------------------------------------------------------------------------
# Ancillary extractor
# ---------------------------------------------------------------------------

_COUNT_RE = re.compile(r"[\d,.]+")


def _to_int(text: str) -> int | None:
    match = _COUNT_RE.search(text or "")
    if not match:
        return None
    digits = re.sub(r"\D", "", match.group(0))
    return int(digits) if digits else None


def _attr(soup: BeautifulSoup, tag: str, attr: str = "content", **attrs: str) -> str:
    element = soup.find(tag, attrs=attrs)
    value = element.get(attr) if element is not None else None
    return value if isinstance(value, str) else ""


def _button_count(soup: BeautifulSoup, class_name: str) -> int | None:
    button = soup.find(class_=class_name)
    return _to_int(button.get_text()) if button is not None else None


class PageExtras:
    """Descriptive fields from the watch page markup and its inline player args."""

    def extract(self, body: str) -> dict[str, Any]:
        soup = BeautifulSoup(body, "html.parser")
        return {
            "author": self.get_author(soup, body),
            "published": self.get_published(soup),
            "description": self.get_description(soup),
            "media": {},
            "related_videos": self.get_related_videos(body),
            "likes": _button_count(soup, "like-button-renderer-like-button"),
            "dislikes": _button_count(soup, "like-button-renderer-dislike-button"),
        }

    @staticmethod
    def get_author(soup: BeautifulSoup, body: str) -> dict[str, Any] | None:
        name = _attr(soup, "link", itemprop="name")
        channel_id = between(body, '"channelId":"', '"')
        if not name and not channel_id:
            return None
        return {
            "id": channel_id or None,
            "name": name or None,
            "channel_url": f"https://www.youtube.com/channel/{channel_id}" if channel_id else None,
        }

    @staticmethod
    def get_published(soup: BeautifulSoup) -> int | None:
        # Published date is exposed as an ISO date; keep it as a yyyymmdd int
        date = _attr(soup, "meta", itemprop="datePublished")
        return _to_int(date.replace("-", "")) if date else None

    @staticmethod
    def get_description(soup: BeautifulSoup) -> str | None:
        return _attr(soup, "meta", name="description") or None

    @staticmethod
    def get_related_videos(body: str) -> list[dict[str, Any]]:
        raw = between(body, "'RELATED_PLAYER_ARGS': ", "},")
        if not raw:
            return []
        try:
            args = json.loads(raw + "}")
        except json.JSONDecodeError:
            return []
        rvs = args.get("rvs") if isinstance(args, dict) else None
        if not isinstance(rvs, str):
            return []
        related = []
        for entry in rvs.split(","):
            params = {k: v[0] for k, v in parse_qs(entry).items()}
            if params.get("id"):
                related.append(params)
        return related
