"""Unit tests for video id extraction."""
import pytest

from chatwatch.ingest.video_id import extract_video_id, is_valid_video_id
from chatwatch.utils.errors import InvalidVideoError, ValidationError


@pytest.mark.unit
class TestExtractVideoId:
    @pytest.mark.parametrize(
        "value",
        [
            "dQw4w9WgXcQ",
            "  dQw4w9WgXcQ  ",
            "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
            "https://youtube.com/watch?feature=share&v=dQw4w9WgXcQ&t=42",
            "https://m.youtube.com/watch?v=dQw4w9WgXcQ",
            "https://music.youtube.com/watch?v=dQw4w9WgXcQ",
            "https://youtu.be/dQw4w9WgXcQ",
            "https://youtu.be/dQw4w9WgXcQ?si=abc",
            "youtu.be/dQw4w9WgXcQ",
            "https://www.youtube.com/embed/dQw4w9WgXcQ",
            "https://www.youtube.com/live/dQw4w9WgXcQ?feature=share",
            "https://www.youtube.com/shorts/dQw4w9WgXcQ",
        ],
    )
    def test_accepted_forms(self, value):
        assert extract_video_id(value) == "dQw4w9WgXcQ"

    @pytest.mark.parametrize(
        "value",
        [
            "",
            "   ",
            "https://vimeo.com/watch?v=dQw4w9WgXcQ",
            "https://www.youtube.com/watch?v=short",
            "https://www.youtube.com/channel/UC1234567890",
            "not a video",
            "https://www.youtube.com/watch?v=dQw4w9WgXcQ%0A",
            "https://youtu.be/dQw4w9WgXcQ%0A",
        ],
    )
    def test_rejected_forms(self, value):
        with pytest.raises(InvalidVideoError):
            extract_video_id(value)

    def test_invalid_video_is_a_validation_error(self):
        with pytest.raises(ValidationError):
            extract_video_id("https://example.com/")

    def test_is_valid_video_id(self):
        assert is_valid_video_id("a-b_c1234567"[:11])
        assert not is_valid_video_id("abc")
        assert not is_valid_video_id("dQw4w9WgXcQ!")
        assert not is_valid_video_id("dQw4w9WgXcQ\n")
