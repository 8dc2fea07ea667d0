"""Pydantic models for video metadata, download options and API contracts."""
from typing import Any, Callable, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ---------------------------------------------------------------------------
# Domain records
# ---------------------------------------------------------------------------


class VideoFormat(BaseModel):
    """One rendition of a video.

    Raw platform records and registry-enriched formats share this model. Fields the
    model does not name (width, height, contentLength, signatureCipher, ...) are kept
    as extras so nothing the platform sends is lost.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    itag: str = Field(..., description="Platform format id")
    url: str | None = Field(default=None, description="Media or manifest URL")
    mime_type: str | None = Field(default=None, alias="mimeType")
    quality_label: str | None = Field(default=None, alias="qualityLabel")
    bitrate: int | None = Field(default=None, description="Video bitrate")
    audio_bitrate: int | None = Field(default=None, alias="audioBitrate")

    # Derived by services.formats.normalize()
    container: str | None = None
    codecs: str | None = None
    live: bool = False
    is_hls: bool = Field(default=False, alias="isHLS")
    is_dash_mpd: bool = Field(default=False, alias="isDashMPD")

    @field_validator("itag", mode="before")
    @classmethod
    def coerce_itag(cls, v: Any) -> str:
        """Itags arrive as ints inline and as strings from manifests."""
        if v is None:
            raise ValueError("itag is required")
        return str(v)

    @field_validator("bitrate", "audio_bitrate", mode="before")
    @classmethod
    def coerce_bitrate(cls, v: Any) -> int | None:
        """Accept numeric strings; anything unparseable counts as missing."""
        if v is None or v == "":
            return None
        try:
            return int(v)
        except (TypeError, ValueError):
            return None

    @property
    def has_video(self) -> bool:
        return bool(self.quality_label)

    @property
    def has_audio(self) -> bool:
        return bool(self.audio_bitrate)


class VideoInfo(BaseModel):
    """Aggregate metadata for one video.

    ``full`` is False for basic info (raw formats, nothing deciphered or merged) and
    True once formats have been deciphered, merged with manifest formats and sorted.
    Keys of the query-encoded info payload are kept as extras.
    """

    model_config = ConfigDict(extra="allow")

    video_id: str
    video_url: str
    player_response: dict[str, Any] = Field(default_factory=dict)
    title: str | None = None
    length_seconds: str | None = None

    author: dict[str, Any] | None = None
    published: int | None = None
    description: str | None = None
    media: dict[str, Any] = Field(default_factory=dict)
    related_videos: list[dict[str, Any]] = Field(default_factory=list)
    likes: int | None = None
    dislikes: int | None = None

    formats: list[VideoFormat] = Field(default_factory=list)
    html5player: str | None = None
    age_restricted: bool = False
    full: bool = False

    @property
    def streaming_data(self) -> dict[str, Any]:
        return self.player_response.get("streamingData") or {}

    @property
    def dash_manifest_url(self) -> str | None:
        return self.streaming_data.get("dashManifestUrl")

    @property
    def hls_manifest_url(self) -> str | None:
        return self.streaming_data.get("hlsManifestUrl")


class ByteRange(BaseModel):
    """Byte range for progressive downloads; either bound may be omitted."""

    model_config = ConfigDict(frozen=True)

    start: int | None = Field(default=None, ge=0)
    end: int | None = Field(default=None, ge=0)


class RequestOptions(BaseModel):
    """Per-request overrides passed to the HTTP transport."""

    model_config = ConfigDict(frozen=True)

    headers: dict[str, str] = Field(default_factory=dict)
    timeout: float | None = Field(default=None, gt=0)


# A named class (audioandvideo, video, videoonly, audio, audioonly) or a predicate
FormatFilter = Union[str, Callable[[VideoFormat], bool]]


class DownloadOptions(BaseModel):
    """Selection, transport and metadata options. Never mutated by the engine."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    quality: str | int | list[str | int] = "highest"
    filter: FormatFilter | None = None
    format: VideoFormat | None = None
    range: ByteRange | None = None
    begin: int | str | None = Field(
        default=None,
        description="Start offset in ms (or '1m30s' / '01:30.000'); epoch ms for live",
    )
    live_buffer: int | None = Field(default=None, ge=0)
    high_water_mark: int | None = Field(
        default=None,
        ge=0,
        description="Chunks buffered by the output stream before producers wait",
    )
    request_options: RequestOptions = Field(default_factory=RequestOptions)
    lang: str | None = None
    debug: bool = False


class ProgressEvent(BaseModel):
    """Payload of a stream ``progress`` event."""

    model_config = ConfigDict(frozen=True)

    chunk_length: int
    downloaded: int
    total: int


# ---------------------------------------------------------------------------
# API contracts
# ---------------------------------------------------------------------------


class InfoRequest(BaseModel):
    """Request model for fetching video metadata."""

    url: str = Field(
        ...,
        description="Watch/embed/short link or bare video id",
        min_length=11,
        max_length=2048,
        examples=["https://www.youtube.com/watch?v=dQw4w9WgXcQ", "dQw4w9WgXcQ"],
    )
    lang: str | None = Field(default=None, max_length=16)

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("URL cannot be empty")
        return v


class DownloadRequest(InfoRequest):
    """Request model for streaming a rendition."""

    quality: str = Field(
        default="highest",
        description="highest, lowest, highestaudio, lowestaudio, highestvideo, lowestvideo or an itag",
        max_length=64,
    )
    filter: Literal["audioandvideo", "video", "videoonly", "audio", "audioonly"] | None = None


class FormatSummary(BaseModel):
    """Public view of a single format."""

    itag: str
    mime_type: str | None = None
    quality_label: str | None = None
    bitrate: int | None = None
    audio_bitrate: int | None = None
    container: str | None = None
    codecs: str | None = None
    live: bool = False
    is_hls: bool = False
    is_dash_mpd: bool = False

    @classmethod
    def from_format(cls, fmt: VideoFormat) -> "FormatSummary":
        return cls(
            itag=fmt.itag,
            mime_type=fmt.mime_type,
            quality_label=fmt.quality_label,
            bitrate=fmt.bitrate,
            audio_bitrate=fmt.audio_bitrate,
            container=fmt.container,
            codecs=fmt.codecs,
            live=fmt.live,
            is_hls=fmt.is_hls,
            is_dash_mpd=fmt.is_dash_mpd,
        )


class VideoInfoResponse(BaseModel):
    """Public view of basic or full video info."""

    video_id: str
    video_url: str
    title: str | None = None
    length_seconds: str | None = None
    author: dict[str, Any] | None = None
    description: str | None = None
    age_restricted: bool = False
    full: bool = False
    formats: list[FormatSummary] = Field(default_factory=list)

    @classmethod
    def from_info(cls, info: VideoInfo) -> "VideoInfoResponse":
        return cls(
            video_id=info.video_id,
            video_url=info.video_url,
            title=info.title,
            length_seconds=info.length_seconds,
            author=info.author,
            description=info.description,
            age_restricted=info.age_restricted,
            full=info.full,
            formats=[FormatSummary.from_format(f) for f in info.formats],
        )


class ErrorResponse(BaseModel):
    """Standard error response model."""

    code: str = Field(
        ...,
        description="Stable error code for programmatic handling",
        examples=["NO_SUCH_FORMAT", "VIDEO_UNAVAILABLE"],
    )
    message: str = Field(
        ...,
        description="Human-readable error message",
        min_length=1,
    )


class HealthResponse(BaseModel):
    """Health check response model."""

    status: Literal["healthy", "unhealthy"] = Field(
        default="healthy",
        description="Health status of the service",
    )
    version: str = Field(
        default="0.1.0",
        description="API version",
    )
