"""Byte transports behind a download stream.

``RangedTransport`` pulls a progressive file over one HTTP connection.
``SegmentedTransport`` walks an HLS or DASH playlist, fetching segments with a
readahead window and refreshing live playlists until they end. Both expose the
same surface: ``start(sink)``, ``abort()``, ``unpipe()`` and events.
"""
import asyncio
import re
import xml.etree.ElementTree as ElementTree
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Protocol, Union
from urllib.parse import urljoin

import httpx
import isodate
import m3u8
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_exponential

from vidstream.core.config import settings
from vidstream.core.logging import get_logger
from vidstream.models.video import RequestOptions
from vidstream.services import http
from vidstream.services.errors import ManifestParseError
from vidstream.services.events import EventEmitter

logger = get_logger(__name__)

# Events a transport emits that download streams pass through unchanged
RELAYED_EVENTS = ("abort", "request", "response", "error", "retry", "reconnect")

_CLOCK_RE = re.compile(r"^(?:(\d+):)?(\d+):(\d+(?:\.\d+)?)$")
_UNITS_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_UNIT_MS = {"h": 3600000, "m": 60000, "s": 1000, "ms": 1}


def parse_time(value: int | float | str) -> int:
    """Convert a time value to milliseconds.

    Accepts plain milliseconds (``90000``), clock notation (``"01:30"``,
    ``"1:02:03.500"``) and unit notation (``"1m30s"``, ``"2h"``, ``"500ms"``).
    """
    if isinstance(value, (int, float)):
        return int(value)
    text = value.strip()
    if text.isdigit():
        return int(text)
    clock = _CLOCK_RE.match(text)
    if clock:
        hours, minutes, seconds = clock.groups()
        return int((int(hours or 0) * 3600 + int(minutes) * 60 + float(seconds)) * 1000)
    parts = _UNITS_RE.findall(text)
    if parts and "".join(num + unit for num, unit in parts) == text:
        return int(sum(float(num) * _UNIT_MS[unit] for num, unit in parts))
    raise ValueError(f"Invalid time value: {value!r}")


def _iso_duration_seconds(value: str | None) -> float | None:
    if not value:
        return None
    try:
        duration = isodate.parse_duration(value)
    except isodate.ISO8601Error:
        return None
    if isinstance(duration, isodate.Duration):
        duration = duration.totimedelta(start=datetime.now())
    return duration.total_seconds()


class Sink(Protocol):
    async def write(self, chunk: bytes) -> None:
        ...


class _BaseTransport(EventEmitter):
    kind: str = ""

    def __init__(self, url: str, request_options: RequestOptions | None = None) -> None:
        super().__init__()
        self.url = url
        self.request_options = request_options or RequestOptions()
        self._sink: Sink | None = None
        self._task: asyncio.Task | None = None
        self._aborted = False

    @property
    def aborted(self) -> bool:
        return self._aborted

    def start(self, sink: Sink) -> asyncio.Task:
        """Begin pumping bytes into ``sink``; the task finishes when the source ends."""
        self._sink = sink
        self._task = asyncio.get_running_loop().create_task(self._run())
        return self._task

    def abort(self) -> None:
        """Cancel the in-flight request. Safe to call more than once."""
        if self._aborted:
            return
        self._aborted = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self.emit("abort")

    def unpipe(self) -> None:
        """Stop forwarding bytes to the sink."""
        self._sink = None

    async def _write(self, chunk: bytes) -> None:
        if self._sink is not None:
            await self._sink.write(chunk)

    async def _run(self) -> None:
        try:
            await self._pump()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.emit("error", e)
            raise
        self.emit("end")

    async def _pump(self) -> None:
        raise NotImplementedError

    def _timeout(self) -> Any:
        return self.request_options.timeout or httpx.USE_CLIENT_DEFAULT


# ---------------------------------------------------------------------------
# Progressive
# ---------------------------------------------------------------------------


class RangedTransport(_BaseTransport):
    """Single GET of a progressive format, optionally ranged."""

    kind = "ranged"

    def __init__(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        request_options: RequestOptions | None = None,
        chunk_size: int | None = None,
    ) -> None:
        super().__init__(url, request_options)
        self.headers = headers or {}
        self.chunk_size = chunk_size or settings.STREAM_CHUNK_SIZE
        self.response: httpx.Response | None = None

    async def _pump(self) -> None:
        client = http.get_client()
        request = client.build_request("GET", self.url, headers=self.headers, timeout=self._timeout())
        self.emit("request", request)
        response = await client.send(request, stream=True)
        self.response = response
        try:
            self.emit("response", response)
            response.raise_for_status()
            async for chunk in response.aiter_bytes(self.chunk_size):
                self.emit("data", chunk)
                await self._write(chunk)
        finally:
            await response.aclose()


# ---------------------------------------------------------------------------
# Segmented
# ---------------------------------------------------------------------------


@dataclass
class Segment:
    seq: int
    url: str
    duration: float = 0.0
    start_ms: float | None = None


@dataclass
class SegmentProgress:
    """Progress payload: 1-based count of delivered segments and the segment's size."""

    num: int
    size: int
    url: str


@dataclass
class SegmentPlaylist:
    segments: list[Segment] = field(default_factory=list)
    init_url: str | None = None
    ended: bool = True
    refresh_seconds: float = 5.0
    redirect: str | None = None


def parse_hls_playlist(text: str, url: str, itag: str | None = None) -> SegmentPlaylist:
    """Parse an HLS media playlist; a master playlist yields a redirect to the itag's variant."""
    try:
        playlist = m3u8.loads(text, uri=url)
    except Exception as e:
        raise ManifestParseError(f"Error parsing HLS playlist: {e}") from e

    if playlist.is_variant:
        variants = [p.absolute_uri for p in playlist.playlists]
        if not variants:
            raise ManifestParseError("HLS master playlist has no variants")
        wanted = f"/itag/{itag}/" if itag else None
        redirect = next((v for v in variants if wanted and wanted in v), variants[0])
        return SegmentPlaylist(redirect=redirect)

    base_seq = playlist.media_sequence or 0
    segments = []
    for offset, seg in enumerate(playlist.segments):
        pdt = seg.current_program_date_time
        segments.append(Segment(
            seq=base_seq + offset,
            url=seg.absolute_uri,
            duration=float(seg.duration or 0),
            start_ms=pdt.timestamp() * 1000 if pdt else None,
        ))

    init_url = None
    if playlist.segments and playlist.segments[0].init_section is not None:
        init_url = playlist.segments[0].init_section.absolute_uri

    return SegmentPlaylist(
        segments=segments,
        init_url=init_url,
        ended=bool(playlist.is_endlist),
        refresh_seconds=float(playlist.target_duration or 5),
    )


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _child(element: ElementTree.Element, name: str) -> ElementTree.Element | None:
    return next((c for c in element if _local(c.tag) == name), None)


def _children(element: ElementTree.Element, name: str) -> list[ElementTree.Element]:
    return [c for c in element if _local(c.tag) == name]


def parse_dash_playlist(text: str, url: str, itag: str) -> SegmentPlaylist:
    """Parse the ``SegmentList`` of one representation out of a DASH MPD."""
    try:
        root = ElementTree.fromstring(text)
    except ElementTree.ParseError as e:
        raise ManifestParseError(f"Error parsing DASH manifest: {e}") from e

    base = url
    if (mpd_base := _child(root, "BaseURL")) is not None and mpd_base.text:
        base = urljoin(base, mpd_base.text.strip())

    for period in _children(root, "Period"):
        period_base = base
        if (el := _child(period, "BaseURL")) is not None and el.text:
            period_base = urljoin(period_base, el.text.strip())
        for adaptation in _children(period, "AdaptationSet"):
            adaptation_base = period_base
            if (el := _child(adaptation, "BaseURL")) is not None and el.text:
                adaptation_base = urljoin(adaptation_base, el.text.strip())
            for rep in _children(adaptation, "Representation"):
                if rep.get("id") != str(itag):
                    continue
                rep_base = adaptation_base
                if (el := _child(rep, "BaseURL")) is not None and el.text:
                    rep_base = urljoin(rep_base, el.text.strip())
                segment_list = next(
                    (
                        sl
                        for scope in (rep, adaptation, period)
                        if (sl := _child(scope, "SegmentList")) is not None
                    ),
                    None,
                )
                if segment_list is None:
                    raise ManifestParseError(f"Representation {itag} has no SegmentList")
                return _segment_list_playlist(root, segment_list, rep_base)

    raise ManifestParseError(f"No representation for itag {itag} in DASH manifest")


def _segment_list_playlist(
    root: ElementTree.Element, segment_list: ElementTree.Element, base: str
) -> SegmentPlaylist:
    timescale = float(segment_list.get("timescale") or 1)
    duration = float(segment_list.get("duration") or 0) / timescale
    start_number = int(segment_list.get("startNumber") or 1)

    init = _child(segment_list, "Initialization")
    init_url = urljoin(base, init.get("sourceURL")) if init is not None and init.get("sourceURL") else None

    segments = [
        Segment(seq=start_number + i, url=urljoin(base, el.get("media") or ""), duration=duration)
        for i, el in enumerate(_children(segment_list, "SegmentURL"))
    ]
    dynamic = root.get("type") == "dynamic"
    refresh = _iso_duration_seconds(root.get("minimumUpdatePeriod")) or duration or 5.0
    return SegmentPlaylist(
        segments=segments,
        init_url=init_url,
        ended=not dynamic,
        refresh_seconds=refresh,
    )


class SegmentedTransport(_BaseTransport):
    """Downloads an HLS or DASH rendition segment by segment.

    Args:
        url: Playlist or MPD URL
        parser: ``"m3u8"`` or ``"dash-mpd"``
        itag: Format id, used to pick the representation/variant
        chunk_readahead: Segments fetched concurrently ahead of the writer
        begin: Offset in ms for on-demand playlists, epoch ms for live ones
        live_buffer: How far (ms) behind the live edge to start
    """

    kind = "segmented"

    def __init__(
        self,
        url: str,
        *,
        parser: Literal["m3u8", "dash-mpd"],
        itag: str,
        chunk_readahead: int | None = None,
        begin: int | None = None,
        live_buffer: int | None = None,
        request_options: RequestOptions | None = None,
        max_retries: int | None = None,
        max_reconnects: int | None = None,
        backoff: float | None = None,
    ) -> None:
        super().__init__(url, request_options)
        self.parser = parser
        self.itag = str(itag)
        self.chunk_readahead = max(1, chunk_readahead or settings.LIVE_CHUNK_READAHEAD)
        self.begin = begin
        self.live_buffer = settings.LIVE_BUFFER_MS if live_buffer is None else live_buffer
        self.max_retries = settings.SEGMENT_MAX_RETRIES if max_retries is None else max_retries
        self.max_reconnects = (
            settings.PLAYLIST_MAX_RECONNECTS if max_reconnects is None else max_reconnects
        )
        self.backoff = settings.SEGMENT_RETRY_BACKOFF_SECONDS if backoff is None else backoff
        self._next_seq = 0
        self._delivered = 0
        self._total = 0

    # -- HTTP -------------------------------------------------------------

    async def _get(self, url: str) -> httpx.Response:
        client = http.get_client()
        request = client.build_request(
            "GET",
            url,
            headers=http.merge_headers(self.request_options),
            timeout=self._timeout(),
        )
        self.emit("request", request)
        response = await client.send(request)
        self.emit("response", response)
        response.raise_for_status()
        return response

    @staticmethod
    def _retryable(error: Exception) -> bool:
        if isinstance(error, httpx.HTTPStatusError):
            return error.response.status_code >= 500
        return isinstance(error, httpx.TransportError)

    def _retrying(self, event: Literal["retry", "reconnect"], limit: int) -> AsyncRetrying:
        """Retry policy for transient failures; each wait is announced as ``event``."""
        log = logger.warning if event == "reconnect" else logger.debug

        def announce(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            attempt = retry_state.attempt_number
            what = "Playlist" if event == "reconnect" else "Segment"
            log(f"{what} fetch failed ({error}), {event} {attempt}/{limit}")
            self.emit(event, attempt, error)

        return AsyncRetrying(
            retry=retry_if_exception(self._retryable),
            stop=stop_after_attempt(limit + 1),
            wait=wait_exponential(multiplier=self.backoff, max=30),
            before_sleep=announce,
            reraise=True,
        )

    async def _fetch_playlist(self, url: str) -> str:
        response = await self._retrying("reconnect", self.max_reconnects)(self._get, url)
        return response.text

    async def _fetch_segment(self, url: str) -> bytes:
        response = await self._retrying("retry", self.max_retries)(self._get, url)
        return response.content

    # -- Playlist handling ------------------------------------------------

    def _parse(self, text: str, url: str) -> SegmentPlaylist:
        if self.parser == "dash-mpd":
            return parse_dash_playlist(text, url, self.itag)
        return parse_hls_playlist(text, url, self.itag)

    def _start_index(self, segments: list[Segment], live: bool) -> int:
        if not segments:
            return 0
        if live:
            if self.begin is not None and all(s.start_ms is not None for s in segments):
                start_at = self.begin - self.live_buffer
                return next(
                    (i for i, s in enumerate(segments) if s.start_ms + s.duration * 1000 > start_at),
                    len(segments),
                )
            buffered = 0.0
            index = len(segments) - 1
            while index > 0 and buffered + segments[index].duration * 1000 < self.live_buffer:
                buffered += segments[index].duration * 1000
                index -= 1
            return index
        if self.begin:
            elapsed = 0.0
            for i, seg in enumerate(segments):
                if elapsed + seg.duration * 1000 > self.begin:
                    return i
                elapsed += seg.duration * 1000
            return len(segments)
        return 0

    async def _pump(self) -> None:
        url = self.url
        first = True
        redirects = 0
        while True:
            playlist = self._parse(await self._fetch_playlist(url), url)
            if playlist.redirect:
                redirects += 1
                if redirects > 1:
                    raise ManifestParseError("HLS variant playlist points at another master playlist")
                url = playlist.redirect
                continue

            if first:
                first = False
                if playlist.init_url:
                    await self._write(await self._fetch_segment(playlist.init_url))
                start = self._start_index(playlist.segments, live=not playlist.ended)
                if start < len(playlist.segments):
                    self._next_seq = playlist.segments[start].seq
                elif playlist.segments:
                    self._next_seq = playlist.segments[-1].seq + 1

            fresh = [s for s in playlist.segments if s.seq >= self._next_seq]
            self._total += len(fresh)
            await self._download(fresh)

            if playlist.ended:
                break
            await asyncio.sleep(playlist.refresh_seconds)

    async def _download(self, segments: list[Segment]) -> None:
        upcoming = iter(segments)
        pending: deque[tuple[Segment, asyncio.Task]] = deque()

        def fill() -> None:
            while len(pending) < self.chunk_readahead:
                seg = next(upcoming, None)
                if seg is None:
                    return
                pending.append((seg, asyncio.ensure_future(self._fetch_segment(seg.url))))

        try:
            fill()
            while pending:
                seg, task = pending.popleft()
                data = await task
                self._delivered += 1
                self._next_seq = seg.seq + 1
                self.emit("progress", SegmentProgress(self._delivered, len(data), seg.url), self._total)
                await self._write(data)
                fill()
        finally:
            for _, task in pending:
                task.cancel()
            await asyncio.gather(*(task for _, task in pending), return_exceptions=True)


Transport = Union[RangedTransport, SegmentedTransport]
