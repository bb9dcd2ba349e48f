"""
Video ID extraction

Accepts either a bare YouTube video id or any of the common watch/share URL
shapes and returns the 11-character id.
"""

import re
from urllib.parse import parse_qs, urlparse

from chatwatch.utils.errors import InvalidVideoError

VIDEO_ID_PATTERN = re.compile(r"[A-Za-z0-9_-]{11}")

YOUTUBE_HOSTS = {
    "youtube.com",
    "www.youtube.com",
    "m.youtube.com",
    "music.youtube.com",
    "youtu.be",
}

# Path prefixes that carry the id as the next segment
_PATH_PREFIXES = ("/embed/", "/live/", "/shorts/")


def is_valid_video_id(value: str) -> bool:
    return bool(VIDEO_ID_PATTERN.fullmatch(value))


def extract_video_id(value: str) -> str:
    """
    Extract a video id from an id or URL.

    Raises:
        InvalidVideoError: empty input, non-YouTube host, or no id found
    """
    if value is None or not value.strip():
        raise InvalidVideoError("Video id or URL is required")

    candidate = value.strip()
    if is_valid_video_id(candidate):
        return candidate

    # Allow scheme-less URLs like "youtu.be/abc"
    if "://" not in candidate:
        candidate = "https://" + candidate

    parsed = urlparse(candidate)
    host = (parsed.hostname or "").lower()
    if host not in YOUTUBE_HOSTS:
        raise InvalidVideoError(f"Not a YouTube URL: {value}")

    query_id = parse_qs(parsed.query).get("v", [""])[0]
    if query_id and is_valid_video_id(query_id):
        return query_id

    path = parsed.path or ""
    if host == "youtu.be":
        segment = path.lstrip("/").split("/", 1)[0]
        if is_valid_video_id(segment):
            return segment

    for prefix in _PATH_PREFIXES:
        if path.startswith(prefix):
            segment = path[len(prefix):].split("/", 1)[0]
            if is_valid_video_id(segment):
                return segment

    raise InvalidVideoError(f"Video id not found in URL: {value}")
