"""Video id extraction and validation.

Supported link shapes:

- https://www.youtube.com/watch?v=VIDEO_ID
- https://m.youtube.com/watch?v=VIDEO_ID
- https://music.youtube.com/watch?v=VIDEO_ID
- https://gaming.youtube.com/watch?v=VIDEO_ID
- https://youtu.be/VIDEO_ID
- https://www.youtube.com/v/VIDEO_ID
- https://www.youtube.com/embed/VIDEO_ID
"""
import re
from urllib.parse import parse_qs, urlparse

from vidstream.services.errors import (
    MalformedIdentifierError,
    NoIdentifierFoundError,
    NotAPlatformDomainError,
)

ID_LENGTH = 11
ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{11}$")

VALID_QUERY_DOMAINS = frozenset({
    "youtube.com",
    "www.youtube.com",
    "m.youtube.com",
    "music.youtube.com",
    "gaming.youtube.com",
})
VALID_PATH_DOMAINS = re.compile(r"^https?://(youtu\.be/|(www\.)?youtube\.com/(embed|v)/)")


def is_valid_identifier(video_id: str) -> bool:
    """Return True if ``video_id`` has the platform's id shape."""
    return isinstance(video_id, str) and ID_PATTERN.match(video_id) is not None


def get_url_video_id(link: str) -> str:
    """Extract the video id from a link.

    Raises:
        NotAPlatformDomainError: If the host is not a supported domain
        NoIdentifierFoundError: If the link carries no id
        MalformedIdentifierError: If the id does not match the id format
    """
    link = link.strip()
    parsed = urlparse(link)
    video_id = (parse_qs(parsed.query).get("v") or [""])[0]

    if VALID_PATH_DOMAINS.match(link) and not video_id:
        video_id = parsed.path.split("/")[-1]
    elif parsed.hostname and parsed.hostname not in VALID_QUERY_DOMAINS:
        raise NotAPlatformDomainError()

    if not video_id:
        raise NoIdentifierFoundError(f"No video id found: {link}")

    video_id = video_id[:ID_LENGTH]
    if not is_valid_identifier(video_id):
        raise MalformedIdentifierError(
            f"Video id ({video_id}) does not match expected format ({ID_PATTERN.pattern})"
        )
    return video_id


def resolve_identifier(value: str) -> str:
    """Return ``value`` if it is already an id, otherwise extract the id from it."""
    if is_valid_identifier(value):
        return value
    return get_url_video_id(value)


def is_valid_url(link: str) -> bool:
    """Return True if a video id can be extracted from ``link``."""
    try:
        get_url_video_id(link)
    except (NotAPlatformDomainError, NoIdentifierFoundError, MalformedIdentifierError):
        return False
    return True
