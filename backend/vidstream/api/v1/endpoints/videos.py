"""Video-related API endpoints."""
import asyncio
import re
from typing import AsyncIterator, Literal
from urllib.parse import quote

from fastapi import APIRouter, Query, status
from fastapi.responses import StreamingResponse

from vidstream.core.logging import get_logger
from vidstream.models.video import (
    DownloadOptions,
    DownloadRequest,
    InfoRequest,
    VideoFormat,
    VideoInfo,
    VideoInfoResponse,
)
from vidstream.services.download import DownloadStream, download
from vidstream.services.info import get_basic_info, get_full_info

logger = get_logger(__name__)

router = APIRouter()

_ERROR_RESPONSES = {
    400: {"description": "Invalid link or video id"},
    404: {"description": "Video unavailable or no matching format"},
    502: {"description": "The video platform returned an error"},
}


def _options(request: InfoRequest) -> DownloadOptions:
    if isinstance(request, DownloadRequest):
        return DownloadOptions(quality=request.quality, filter=request.filter, lang=request.lang)
    return DownloadOptions(lang=request.lang)


@router.post(
    "/info",
    response_model=VideoInfoResponse,
    status_code=status.HTTP_200_OK,
    summary="Fetch basic video info",
    description="Metadata and raw (undeciphered, unmerged) formats for a link or video id",
    responses=_ERROR_RESPONSES,
)
async def fetch_info(request: InfoRequest) -> VideoInfoResponse:
    info = await get_basic_info(request.url, _options(request))
    return VideoInfoResponse.from_info(info)


@router.post(
    "/formats",
    response_model=VideoInfoResponse,
    status_code=status.HTTP_200_OK,
    summary="Fetch video formats",
    description="Full info with deciphered, manifest-merged formats sorted best first",
    responses=_ERROR_RESPONSES,
)
async def fetch_formats(request: InfoRequest) -> VideoInfoResponse:
    """Fetch every available format for a video.

    Args:
        request: Request containing the link or video id

    Returns:
        Video metadata and the sorted format list

    Raises:
        Various VidstreamError exceptions (handled by global handler)
    """
    info = await get_full_info(request.url, _options(request))
    return VideoInfoResponse.from_info(info)


def _sanitize_filename(filename: str) -> str:
    """Sanitize a filename for safe use in Content-Disposition header.

    Args:
        filename: Raw filename

    Returns:
        Sanitized filename safe for headers (ASCII only)
    """
    filename = re.sub(r"[^a-zA-Z0-9\s\-\.]", "", filename, flags=re.ASCII)
    filename = re.sub(r"\s+", "_", filename)
    if len(filename) > 200:
        filename = filename[:200]
    return filename or "download"


def _build_content_disposition(filename: str) -> str:
    """Build a Content-Disposition value with an ASCII fallback and an RFC 5987 name.

    Args:
        filename: Original filename (may contain Unicode characters)

    Returns:
        Header value
    """
    ascii_filename = _sanitize_filename(filename)
    encoded_filename = quote(filename, safe="")
    return f"attachment; filename=\"{ascii_filename}\"; filename*=UTF-8''{encoded_filename}"


def _media_type(fmt: VideoFormat) -> str:
    if fmt.is_hls:
        return "video/mp2t"
    if fmt.mime_type:
        return fmt.mime_type.split(";")[0].strip()
    return "application/octet-stream"


async def _wait_for_format(stream: DownloadStream) -> tuple[VideoInfo, VideoFormat]:
    """Resolve once the stream has chosen a format, or raise its first error."""
    ready: asyncio.Future = asyncio.get_running_loop().create_future()

    def on_info(info: VideoInfo, fmt: VideoFormat) -> None:
        if not ready.done():
            ready.set_result((info, fmt))

    def on_error(error: BaseException) -> None:
        if not ready.done():
            ready.set_exception(error)

    detach_info = stream.on("info", on_info)
    detach_error = stream.on("error", on_error)
    try:
        return await ready
    finally:
        detach_info()
        detach_error()


async def _iter_stream(stream: DownloadStream, label: str) -> AsyncIterator[bytes]:
    """Yield the stream's chunks; a client disconnect aborts the download."""
    try:
        async for chunk in stream:
            yield chunk
        logger.info(f"Finished streaming {label} ({stream.downloaded} bytes/segments)")
    except Exception as e:
        # Headers are already sent; all we can do is cut the body short
        logger.error(f"Stream for {label} failed mid-body: {e}")
    finally:
        stream.destroy()


@router.post(
    "/download",
    summary="Download video (POST)",
    description="Stream the rendition chosen by quality and filter",
    responses={200: {"description": "Video file stream"}, **_ERROR_RESPONSES},
)
async def download_video_post(request: DownloadRequest) -> StreamingResponse:
    """Stream a video rendition to the client.

    Metadata and format selection finish before any header is sent, so their
    failures still map to regular error responses.

    Args:
        request: Download request with link, quality and filter

    Returns:
        Streaming response with the rendition's bytes
    """
    stream = download(request.url, _options(request))
    try:
        info, fmt = await _wait_for_format(stream)
    except BaseException:
        stream.destroy()
        raise

    ext = fmt.container or "bin"
    filename = f"{info.title or info.video_id}.{ext}"
    logger.info(f"Streaming download: {filename} (itag {fmt.itag})")

    return StreamingResponse(
        _iter_stream(stream, f"{info.video_id}/{fmt.itag}"),
        media_type=_media_type(fmt),
        headers={
            "Content-Disposition": _build_content_disposition(filename),
            "X-Format-Itag": fmt.itag,
        },
    )


@router.get(
    "/download",
    summary="Download video (GET)",
    description="Stream the chosen rendition (GET method for browser navigation)",
    responses={200: {"description": "Video file stream"}, **_ERROR_RESPONSES},
)
async def download_video_get(
    url: str = Query(..., description="Link or video id", min_length=11, max_length=2048),
    quality: str = Query("highest", description="Quality keyword or itag", max_length=64),
    filter: Literal["audioandvideo", "video", "videoonly", "audio", "audioonly"] | None = Query(
        None, description="Named format class"
    ),
    lang: str | None = Query(None, max_length=16),
) -> StreamingResponse:
    # Reuse the POST endpoint logic
    request = DownloadRequest(url=url, quality=quality, filter=filter, lang=lang)
    return await download_video_post(request)
