"""Exception taxonomy shared by the ingest, session and HTTP layers."""

from __future__ import annotations

from typing import Optional


class ChatwatchError(Exception):
    """Base for every error raised by chatwatch."""


class ValidationError(ChatwatchError):
    """Caller supplied something we cannot monitor. Surfaced as HTTP 400."""


class InvalidVideoError(ValidationError):
    """Malformed video id/URL, or the video does not exist."""


class NotLiveError(ValidationError):
    """The video exists but has no active live chat."""


class ChatSourceError(ChatwatchError):
    """Failure talking to the chat source."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransientError(ChatSourceError):
    """Network or API hiccup; the poll loop retries with backoff."""


class FatalError(ChatSourceError):
    """Not worth retrying (bad credentials, quota, ceiling exceeded)."""


class SessionNotFoundError(ChatwatchError):
    """No active monitoring session for the given video."""

    def __init__(self, video_id: str):
        super().__init__(f"No active monitoring session for video: {video_id}")
        self.video_id = video_id
