"""Domain-specific exceptions for the services layer."""


class VidstreamError(Exception):
    """Base exception for metadata, selection and streaming errors."""

    def __init__(self, message: str, code: str) -> None:
        """Initialize the error.

        Args:
            message: Human-readable error message
            code: Stable error code for callers and API responses
        """
        self.message = message
        self.code = code
        super().__init__(message)


# ---------------------------------------------------------------------------
# Identifier resolution
# ---------------------------------------------------------------------------


class NotAPlatformDomainError(VidstreamError):
    """Raised when a link points at a host outside the supported set."""

    def __init__(self, message: str = "Not a YouTube domain") -> None:
        super().__init__(message, "NOT_A_PLATFORM_DOMAIN")


class NoIdentifierFoundError(VidstreamError):
    """Raised when a link carries no video id."""

    def __init__(self, message: str = "No video id found") -> None:
        super().__init__(message, "NO_IDENTIFIER_FOUND")


class MalformedIdentifierError(VidstreamError):
    """Raised when a video id is present but does not match the id format."""

    def __init__(self, message: str = "Video id does not match expected format") -> None:
        super().__init__(message, "MALFORMED_IDENTIFIER")


# ---------------------------------------------------------------------------
# Metadata pipeline
# ---------------------------------------------------------------------------


class VideoUnavailableError(VidstreamError):
    """Raised when the watch page reports the video as unavailable."""

    def __init__(self, message: str = "This video is unavailable") -> None:
        super().__init__(message or "This video is unavailable", "VIDEO_UNAVAILABLE")


class ConfigNotFoundError(VidstreamError):
    """Raised when neither the watch page nor the embed page carries a player config."""

    def __init__(self, message: str = "Could not find player config") -> None:
        super().__init__(message, "CONFIG_NOT_FOUND")


class ConfigParseError(VidstreamError):
    """Raised when the embedded player config is not valid JSON."""

    def __init__(self, message: str = "Error parsing config") -> None:
        super().__init__(message, "CONFIG_PARSE_ERROR")


class UpstreamError(VidstreamError):
    """Raised when the info endpoint answers with ``status=fail``."""

    def __init__(self, upstream_code: str | None, reason: str) -> None:
        self.upstream_code = upstream_code
        self.reason = reason
        super().__init__(f"Code {upstream_code}: {reason}", "UPSTREAM_ERROR")


class PlayerResponseParseError(VidstreamError):
    """Raised when ``player_response`` cannot be decoded."""

    def __init__(self, message: str = "Error parsing `player_response`") -> None:
        super().__init__(message, "PLAYER_RESPONSE_PARSE_ERROR")


class NotPlayableError(VidstreamError):
    """Raised when the player response marks the video UNPLAYABLE."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason or "Video is not playable", "NOT_PLAYABLE")


class ManifestParseError(VidstreamError):
    """Raised when a DASH or HLS manifest cannot be parsed."""

    def __init__(self, message: str = "Error parsing manifest") -> None:
        super().__init__(message, "MANIFEST_PARSE_ERROR")


# ---------------------------------------------------------------------------
# Format selection
# ---------------------------------------------------------------------------


class UnsupportedFilterError(VidstreamError):
    """Raised for a named filter class that does not exist."""

    def __init__(self, filter_name: object) -> None:
        super().__init__(f"Given filter ({filter_name}) is not supported", "UNSUPPORTED_FILTER")


class NoFormatsAfterFilterError(VidstreamError):
    """Raised when a filter leaves no candidate formats."""

    def __init__(self, message: str = "No formats found with custom filter") -> None:
        super().__init__(message, "NO_FORMATS_AFTER_FILTER")


class NoSuchFormatError(VidstreamError):
    """Raised when the requested quality matches no format."""

    def __init__(self, quality: object) -> None:
        self.quality = quality
        super().__init__(f"No such format found: {quality}", "NO_SUCH_FORMAT")


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------


class IncompleteInfoError(VidstreamError):
    """Raised when streaming is requested from basic (not full) info."""

    def __init__(
        self,
        message: str = (
            "Cannot use download_from_info() when called with info from get_basic_info()"
        ),
    ) -> None:
        super().__init__(message, "INCOMPLETE_INFO")
