"""Format normalisation, quality ordering, filtering and selection."""
import re
from functools import cmp_to_key
from typing import Any, Callable, Iterable, Mapping

from vidstream.core.logging import get_logger
from vidstream.models.video import DownloadOptions, FormatFilter, VideoFormat
from vidstream.services.collaborators import FormatRegistry, StaticFormatRegistry
from vidstream.services.errors import (
    NoFormatsAfterFilterError,
    NoSuchFormatError,
    UnsupportedFilterError,
)
from vidstream.services.text import between

logger = get_logger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Higher index ranks higher
AUDIO_ENCODING_RANKS = ("mp4a", "mp3", "vorbis", "aac", "opus", "flac")
VIDEO_ENCODING_RANKS = (
    "mp4v",
    "avc1",
    "Sorenson H.283",
    "MPEG-4 Visual",
    "VP8",
    "VP9",
    "H.264",
)

_LIVE_RE = re.compile(r"/source/yt_live_broadcast/")
_HLS_RE = re.compile(r"/manifest/hls_(variant|playlist)/")
_DASH_RE = re.compile(r"/manifest/dash/")
_RESOLUTION_RE = re.compile(r"^\d+")

DEFAULT_REGISTRY = StaticFormatRegistry()

# ---------------------------------------------------------------------------
# Normalisation
# ---------------------------------------------------------------------------


def _as_dict(fmt: Mapping[str, Any] | VideoFormat) -> dict[str, Any]:
    if isinstance(fmt, VideoFormat):
        return fmt.model_dump(by_alias=True, exclude_none=True)
    return dict(fmt)


def normalize(
    fmt: Mapping[str, Any] | VideoFormat,
    registry: FormatRegistry = DEFAULT_REGISTRY,
) -> VideoFormat:
    """Enrich a raw format with registry metadata and derived flags.

    Registry fields sit underneath the raw fields (raw wins). ``container`` and
    ``codecs`` come from the MIME type, ``live``/``isHLS``/``isDashMPD`` from the
    URL path. Applying this twice gives the same result as applying it once.
    """
    raw = {k: v for k, v in _as_dict(fmt).items() if v is not None}
    data = {**registry.lookup(str(raw.get("itag"))), **raw}

    mime_type = data.get("mimeType", data.get("mime_type"))
    url = data.get("url") or ""
    data["container"] = mime_type.split(";")[0].split("/")[-1] if mime_type else None
    data["codecs"] = between(mime_type, 'codecs="', '"') if mime_type else None
    data["live"] = bool(_LIVE_RE.search(url))
    data["isHLS"] = bool(_HLS_RE.search(url))
    data["isDashMPD"] = bool(_DASH_RE.search(url))
    for name in ("is_hls", "is_dash_mpd", "mime_type"):
        data.pop(name, None)
    if mime_type:
        data["mimeType"] = mime_type

    return VideoFormat.model_validate(data)


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


def get_bitrate(fmt: VideoFormat) -> int:
    return fmt.bitrate or 0


def _resolution(fmt: VideoFormat) -> int:
    if not fmt.quality_label:
        return 0
    match = _RESOLUTION_RE.match(fmt.quality_label)
    return int(match.group(0)) if match else 0


def _encoding_rank(fmt: VideoFormat, ranks: Iterable[str]) -> int:
    if not fmt.codecs:
        return -1
    return next((i for i, enc in enumerate(ranks) if enc in fmt.codecs), -1)


def audio_score(fmt: VideoFormat) -> float:
    """Audio bitrate plus a tenth of the audio codec's rank."""
    return (fmt.audio_bitrate or 0) + _encoding_rank(fmt, AUDIO_ENCODING_RANKS) / 10


def compare_quality(a: VideoFormat, b: VideoFormat) -> int:
    """Order formats from highest to lowest quality.

    Negative when ``a`` ranks higher. Compared in turn: resolution/audio presence,
    resolution, video bitrate, audio score, video codec rank.
    """
    ares, bres = _resolution(a), _resolution(b)
    afeats = int(bool(ares)) * 2 + int(bool(a.audio_bitrate))
    bfeats = int(bool(bres)) * 2 + int(bool(b.audio_bitrate))
    if afeats != bfeats:
        return bfeats - afeats
    if ares != bres:
        return bres - ares
    abr, bbr = get_bitrate(a), get_bitrate(b)
    if abr != bbr:
        return bbr - abr
    ascore, bscore = audio_score(a), audio_score(b)
    if ascore != bscore:
        return 1 if bscore > ascore else -1
    return _encoding_rank(b, VIDEO_ENCODING_RANKS) - _encoding_rank(a, VIDEO_ENCODING_RANKS)


def sort_formats(formats: Iterable[VideoFormat]) -> list[VideoFormat]:
    """Return formats sorted best first; equal-ranked formats keep their order."""
    return sorted(formats, key=cmp_to_key(compare_quality))


# ---------------------------------------------------------------------------
# Filtering and selection
# ---------------------------------------------------------------------------

_NAMED_FILTERS: dict[str, Callable[[VideoFormat], bool]] = {
    "audioandvideo": lambda f: f.has_video and f.has_audio,
    "video": lambda f: f.has_video,
    "videoonly": lambda f: f.has_video and not f.has_audio,
    "audio": lambda f: f.has_audio,
    "audioonly": lambda f: not f.has_video and f.has_audio,
}


def filter_formats(formats: Iterable[VideoFormat], predicate: FormatFilter) -> list[VideoFormat]:
    """Keep formats matching a named class or a caller-supplied predicate.

    Raises:
        UnsupportedFilterError: If ``predicate`` is an unknown name
    """
    if isinstance(predicate, str):
        fn = _NAMED_FILTERS.get(predicate)
        if fn is None:
            raise UnsupportedFilterError(predicate)
    elif callable(predicate):
        fn = predicate
    else:
        raise UnsupportedFilterError(predicate)
    return [f for f in formats if fn(f)]


def choose_format(formats: list[VideoFormat], options: DownloadOptions | None = None) -> VideoFormat:
    """Pick one format according to ``options.format``, ``filter`` and ``quality``.

    Raises:
        NoFormatsAfterFilterError: If the filter leaves nothing to choose from
        NoSuchFormatError: If no format matches the requested quality
        UnsupportedFilterError: If the filter name is unknown
    """
    options = options or DownloadOptions()
    if options.format is not None:
        return options.format

    if options.filter is not None:
        formats = filter_formats(formats, options.filter)
        if not formats:
            raise NoFormatsAfterFilterError()

    quality = options.quality or "highest"
    chosen: VideoFormat | None = None

    if quality == "highest":
        ordered = sort_formats(formats)
        chosen = ordered[0] if ordered else None
    elif quality == "lowest":
        ordered = sort_formats(formats)
        chosen = ordered[-1] if ordered else None
    elif quality in ("highestaudio", "lowestaudio"):
        candidates = filter_formats(formats, "audio")
        if candidates:
            pick = max if quality == "highestaudio" else min
            chosen = pick(candidates, key=audio_score)
    elif quality in ("highestvideo", "lowestvideo"):
        candidates = filter_formats(formats, "video")
        if candidates:
            pick = max if quality == "highestvideo" else min
            chosen = pick(candidates, key=get_bitrate)
    else:
        wanted = quality if isinstance(quality, list) else [quality]
        for itag in wanted:
            chosen = next((f for f in formats if f.itag == str(itag)), None)
            if chosen is not None:
                break

    if chosen is None:
        raise NoSuchFormatError(quality)
    logger.debug(f"Chose itag {chosen.itag} for quality {quality!r}")
    return chosen
