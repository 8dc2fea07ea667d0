"""Streaming download engine.

``download()`` returns a :class:`DownloadStream` straight away and resolves info,
selects a format and drives a transport in a background task. Every failure, from
metadata retrieval to a dropped connection, arrives as an ``error`` event.
"""
import asyncio
import time
from enum import Enum
from typing import AsyncIterator, Callable

import httpx

from vidstream.core.config import settings
from vidstream.core.logging import get_logger
from vidstream.models.video import DownloadOptions, ProgressEvent, VideoFormat, VideoInfo
from vidstream.services.errors import IncompleteInfoError, NotPlayableError
from vidstream.services.events import EventEmitter
from vidstream.services.formats import choose_format
from vidstream.services.info import get_full_info
from vidstream.services.transports import (
    RELAYED_EVENTS,
    RangedTransport,
    SegmentedTransport,
    SegmentProgress,
    Transport,
    parse_time,
)

logger = get_logger(__name__)


class DownloadState(str, Enum):
    INIT = "init"
    RESOLVING_INFO = "resolving_info"
    SELECTING_FORMAT = "selecting_format"
    STREAMING = "streaming"
    COMPLETE = "complete"
    ABORTED = "aborted"
    ERRORED = "errored"


class DownloadStream(EventEmitter):
    """Output side of a download: events plus an async iterator of byte chunks.

    Events: ``info`` (info, format), ``progress`` (:class:`ProgressEvent`),
    ``response``, ``request``, ``retry``, ``reconnect``, ``error`` (exception),
    ``abort``, ``end``.

    Iterating yields chunks until the source ends. If the download fails, the
    buffered chunks are yielded and then the error is raised; a destroyed stream
    simply stops.
    """

    def __init__(self, high_water_mark: int | None = None) -> None:
        super().__init__()
        self.state = DownloadState.INIT
        self.info: VideoInfo | None = None
        self.format: VideoFormat | None = None
        self.error: BaseException | None = None
        self.downloaded = 0
        self.total = 0
        # Producers wait once this many chunks are buffered
        self._queue: asyncio.Queue[bytes] = asyncio.Queue(maxsize=high_water_mark or 0)
        self._changed = asyncio.Event()
        self._destroyed = False
        self._finished = False
        self._transport: Transport | None = None
        self._detach: list[Callable[[], None]] = []
        self._task: asyncio.Task | None = None

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    # -- Producer side ----------------------------------------------------

    async def write(self, chunk: bytes) -> None:
        if self._destroyed or self._finished:
            return
        await self._queue.put(chunk)
        self._changed.set()

    def end(self) -> None:
        if self._finished or self._destroyed:
            return
        self._finished = True
        self.state = DownloadState.COMPLETE
        self._changed.set()
        self.emit("end")

    def fail(self, error: BaseException) -> None:
        """Report ``error`` once; later failures and failures after destroy() are ignored."""
        if self._finished or self._destroyed:
            return
        self.error = error
        self._finished = True
        self.state = DownloadState.ERRORED
        logger.warning(f"Download failed: {error}")
        self._changed.set()
        self.emit("error", error)

    # -- Transport wiring -------------------------------------------------

    def attach(self, transport: Transport) -> None:
        """Relay ``transport`` events onto this stream and track progress."""
        self._transport = transport
        for event in RELAYED_EVENTS:
            if event == "abort":
                # destroy() emits the stream's own abort
                continue
            handler = self.fail if event == "error" else self._relay(event)
            self._detach.append(transport.on(event, handler))

        if isinstance(transport, SegmentedTransport):
            self._detach.append(transport.on("progress", self._on_segment))
        else:
            self._detach.append(transport.on("response", self._on_response))
            self._detach.append(transport.on("data", self._on_data))

    def _relay(self, event: str) -> Callable[..., None]:
        return lambda *args: self.emit(event, *args)

    def _on_response(self, response: httpx.Response) -> None:
        self.total = int(response.headers.get("content-length") or 0)

    def _on_data(self, chunk: bytes) -> None:
        self.downloaded += len(chunk)
        self.emit("progress", ProgressEvent(
            chunk_length=len(chunk), downloaded=self.downloaded, total=self.total,
        ))

    def _on_segment(self, segment: SegmentProgress, total: int) -> None:
        self.downloaded = segment.num
        self.total = total
        self.emit("progress", ProgressEvent(
            chunk_length=segment.size, downloaded=segment.num, total=total,
        ))

    # -- Consumer side ----------------------------------------------------

    def destroy(self) -> None:
        """Abort the download. Idempotent and safe before any transport exists."""
        if self._destroyed:
            return
        self._destroyed = True
        if not self._finished:
            self.state = DownloadState.ABORTED
        transport = self._transport
        if transport is not None:
            for detach in self._detach:
                detach()
            self._detach.clear()
            transport.unpipe()
            transport.abort()
        self._changed.set()
        self.emit("abort")

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self

    async def __anext__(self) -> bytes:
        while True:
            if self._destroyed:
                raise StopAsyncIteration
            if not self._queue.empty():
                return self._queue.get_nowait()
            if self._finished:
                if self.error is not None:
                    raise self.error
                raise StopAsyncIteration
            self._changed.clear()
            await self._changed.wait()

    async def read_all(self) -> bytes:
        return b"".join([chunk async for chunk in self])

    async def wait_closed(self) -> None:
        """Wait for the background task to finish (never raises the stream's error)."""
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _build_transport(info: VideoInfo, fmt: VideoFormat, options: DownloadOptions) -> Transport:
    if not fmt.url:
        raise NotPlayableError(f"Format {fmt.itag} has no playable URL")
    if fmt.is_hls or fmt.is_dash_mpd:
        begin = parse_time(options.begin) if options.begin is not None else None
        if begin is None and fmt.live:
            begin = int(time.time() * 1000)
        readahead = (info.model_extra or {}).get("live_chunk_readahead")
        return SegmentedTransport(
            fmt.url,
            parser="dash-mpd" if fmt.is_dash_mpd else "m3u8",
            itag=fmt.itag,
            chunk_readahead=int(readahead) if str(readahead or "").isdigit() else None,
            begin=begin,
            live_buffer=options.live_buffer,
            request_options=options.request_options,
        )

    url = httpx.URL(fmt.url)
    if options.begin:
        url = url.copy_add_param("begin", str(parse_time(options.begin)))
    headers = {
        "User-Agent": settings.STREAM_USER_AGENT,
        "Referer": f"https://www.youtube.com/watch/{info.video_id}",
        **options.request_options.headers,
    }
    if options.range and (options.range.start or options.range.end):
        start = options.range.start or 0
        end = options.range.end if options.range.end is not None else ""
        headers["Range"] = f"bytes={start}-{end}"
    return RangedTransport(str(url), headers=headers, request_options=options.request_options)


async def _stream_from_info(stream: DownloadStream, info: VideoInfo, options: DownloadOptions) -> None:
    if stream.destroyed:
        return
    stream.state = DownloadState.SELECTING_FORMAT
    try:
        fmt = choose_format(info.formats, options)
    except Exception as e:
        # Never re-enter the caller synchronously
        asyncio.get_running_loop().call_soon(stream.fail, e)
        return

    stream.state = DownloadState.STREAMING
    stream.info, stream.format = info, fmt
    stream.emit("info", info, fmt)
    if stream.destroyed:
        return

    try:
        transport = _build_transport(info, fmt, options)
        logger.info(f"Streaming {info.video_id} itag {fmt.itag} via {transport.kind} transport")
        stream.attach(transport)
        await transport.start(stream)
    except asyncio.CancelledError:
        if stream.destroyed:
            return
        raise
    except Exception as e:
        stream.fail(e)
        return
    if not stream.destroyed:
        stream.end()


async def _stream_from_link(stream: DownloadStream, link: str, options: DownloadOptions) -> None:
    stream.state = DownloadState.RESOLVING_INFO
    try:
        info = await get_full_info(link, options)
    except Exception as e:
        stream.fail(e)
        return
    if stream.destroyed:
        return
    await _stream_from_info(stream, info, options)


def download(id_or_url: str, options: DownloadOptions | None = None) -> DownloadStream:
    """Start downloading a video; must be called from a running event loop."""
    options = options or DownloadOptions()
    loop = asyncio.get_running_loop()
    stream = DownloadStream(options.high_water_mark)
    stream._task = loop.create_task(_stream_from_link(stream, id_or_url, options))
    return stream


def download_from_info(info: VideoInfo, options: DownloadOptions | None = None) -> DownloadStream:
    """Start downloading from already-resolved full info.

    Raises:
        IncompleteInfoError: If ``info`` came from get_basic_info()
    """
    if not info.full:
        raise IncompleteInfoError()
    options = options or DownloadOptions()
    loop = asyncio.get_running_loop()
    stream = DownloadStream(options.high_water_mark)
    stream._task = loop.create_task(_stream_from_info(stream, info, options))
    return stream
