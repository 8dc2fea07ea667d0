"""Tests for video id extraction and validation."""
import pytest

from vidstream.services.errors import (
    MalformedIdentifierError,
    NoIdentifierFoundError,
    NotAPlatformDomainError,
)
from vidstream.services.identifier import (
    get_url_video_id,
    is_valid_identifier,
    is_valid_url,
    resolve_identifier,
)

VIDEO_ID = "dQw4w9WgXcQ"


class TestIsValidIdentifier:
    """Tests for the id shape check."""

    def test_accepts_eleven_id_characters(self) -> None:
        assert is_valid_identifier(VIDEO_ID)
        assert is_valid_identifier("a-b_c-d_e-f")

    @pytest.mark.parametrize("value", ["", "dQw4w9WgXc", "dQw4w9WgXcQQ", "dQw4w9WgX!Q"])
    def test_rejects_other_shapes(self, value: str) -> None:
        assert not is_valid_identifier(value)


class TestGetUrlVideoId:
    """Tests for extracting ids from links."""

    @pytest.mark.parametrize(
        "link",
        [
            f"https://www.youtube.com/watch?v={VIDEO_ID}",
            f"https://www.youtube.com/watch?feature=share&v={VIDEO_ID}",
            f"https://m.youtube.com/watch?v={VIDEO_ID}",
            f"https://music.youtube.com/watch?v={VIDEO_ID}",
            f"https://gaming.youtube.com/watch?v={VIDEO_ID}",
            f"https://youtu.be/{VIDEO_ID}",
            f"https://www.youtube.com/embed/{VIDEO_ID}",
            f"https://www.youtube.com/v/{VIDEO_ID}",
            f"  https://youtu.be/{VIDEO_ID}  ",
        ],
    )
    def test_supported_link_shapes(self, link: str) -> None:
        assert get_url_video_id(link) == VIDEO_ID

    def test_long_id_is_truncated(self) -> None:
        """Trailing characters after the first 11 are ignored."""
        assert get_url_video_id(f"https://youtu.be/{VIDEO_ID}xyz") == VIDEO_ID

    def test_foreign_domain(self) -> None:
        with pytest.raises(NotAPlatformDomainError) as exc_info:
            get_url_video_id(f"https://example.com/watch?v={VIDEO_ID}")
        assert exc_info.value.code == "NOT_A_PLATFORM_DOMAIN"

    @pytest.mark.parametrize(
        "link",
        ["https://www.youtube.com/watch", "https://www.youtube.com/embed/", "https://youtu.be/"],
    )
    def test_missing_id(self, link: str) -> None:
        with pytest.raises(NoIdentifierFoundError):
            get_url_video_id(link)

    def test_malformed_id(self) -> None:
        with pytest.raises(MalformedIdentifierError, match="does not match expected format"):
            get_url_video_id("https://youtu.be/abc")


class TestResolveIdentifier:
    """Tests for accepting either a link or a bare id."""

    def test_bare_id_passes_through(self) -> None:
        assert resolve_identifier(VIDEO_ID) == VIDEO_ID

    def test_link_is_resolved(self) -> None:
        assert resolve_identifier(f"https://youtu.be/{VIDEO_ID}") == VIDEO_ID

    def test_is_valid_url(self) -> None:
        assert is_valid_url(f"https://www.youtube.com/watch?v={VIDEO_ID}")
        assert not is_valid_url("https://example.com/video")
        assert not is_valid_url("https://youtu.be/short")
