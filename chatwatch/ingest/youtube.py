"""
YouTube Live Chat source

ChatSource implementation on top of the YouTube Data API v3:
- videos.list resolves a video to its activeLiveChatId
- liveChatMessages.list pages through the chat with nextPageToken

HTTP failures are classified into TransientError (retry with backoff) and
FatalError (stop polling) so the poll loop never has to look at status codes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

import httpx

from chatwatch.ingest.source import ChatMessage, ChatPage, RoleFlags, utcnow
from chatwatch.utils.errors import (
    ChatSourceError,
    FatalError,
    InvalidVideoError,
    NotLiveError,
    TransientError,
)
from chatwatch.utils.logging import get_logger

logger = get_logger(__name__, category="poller")

YOUTUBE_API_BASE = "https://www.googleapis.com/youtube/v3"

TRANSIENT_STATUS_CODES = {429, 500, 502, 503, 504}
FATAL_403_REASONS = {"quotaExceeded", "dailyLimitExceeded", "keyInvalid", "accessNotConfigured", "forbidden"}
TRANSIENT_400_REASONS = {"backendError", "internalError"}
CHAT_OVER_REASONS = {"liveChatEnded", "liveChatNotFound", "liveChatDisabled"}


def _error_reasons(response: httpx.Response) -> set:
    """Collect error.errors[*].reason (and error.status) from an API error body."""
    try:
        body = response.json()
    except ValueError:
        return set()
    error = body.get("error") if isinstance(body, dict) else None
    if not isinstance(error, dict):
        return set()
    reasons = {item.get("reason") for item in error.get("errors") or [] if isinstance(item, dict)}
    if error.get("status"):
        reasons.add(error["status"])
    reasons.discard(None)
    return reasons


def classify_error(response: httpx.Response) -> ChatSourceError:
    """Map a non-2xx API response onto the chat source error taxonomy."""
    status = response.status_code
    reasons = _error_reasons(response)
    detail = f"YouTube API returned {status}" + (f" ({', '.join(sorted(reasons))})" if reasons else "")

    if status in TRANSIENT_STATUS_CODES or status >= 500:
        return TransientError(detail, status_code=status)
    if status == 403:
        if reasons & FATAL_403_REASONS:
            return FatalError(detail, status_code=status)
        return TransientError(detail, status_code=status)
    if status == 400 and reasons & TRANSIENT_400_REASONS:
        return TransientError(detail, status_code=status)
    return FatalError(detail, status_code=status)


def _parse_timestamp(value: Optional[str]) -> datetime:
    if not value:
        return utcnow()
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return utcnow()


def parse_chat_message(item: Dict[str, Any]) -> Optional[ChatMessage]:
    snippet = item.get("snippet") or {}
    author = item.get("authorDetails") or {}
    author_id = author.get("channelId") or snippet.get("authorChannelId")
    if not author_id:
        return None
    return ChatMessage(
        message_id=item.get("id") or "",
        author_id=author_id,
        display_name=author.get("displayName") or "",
        occurred_at=_parse_timestamp(snippet.get("publishedAt")),
        roles=RoleFlags(
            is_owner=bool(author.get("isChatOwner")),
            is_moderator=bool(author.get("isChatModerator")),
            is_member=bool(author.get("isChatSponsor")),
        ),
        text=snippet.get("displayMessage") or "",
    )


class YouTubeChatSource:
    """
    YouTube Data API v3 chat source.

    Args:
        api_key: API key (required before any call is made)
        http_client: Optional preconfigured httpx.AsyncClient (tests pass one
            with a MockTransport); otherwise one is created and owned here
        max_results: maxResults for liveChatMessages.list
        request_timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        api_key: Optional[str],
        http_client: Optional[httpx.AsyncClient] = None,
        max_results: int = 2000,
        request_timeout: float = 30.0,
    ):
        self.api_key = api_key
        self.max_results = max_results
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(request_timeout, connect=10.0)
        )
        if not api_key:
            logger.warning("YouTube API key not configured - monitoring requests will fail")

    async def _get(self, path: str, params: Dict[str, Any]) -> httpx.Response:
        if not self.api_key:
            raise FatalError("YouTube API key not configured")
        try:
            return await self.http_client.get(
                f"{YOUTUBE_API_BASE}/{path}", params={**params, "key": self.api_key}
            )
        except httpx.TimeoutException as e:
            raise TransientError(f"YouTube API request timed out: {e}") from e
        except httpx.TransportError as e:
            raise TransientError(f"YouTube API request failed: {e}") from e

    async def resolve_chat_handle(self, video_id: str) -> str:
        response = await self._get("videos", {"part": "snippet,liveStreamingDetails", "id": video_id})
        if response.status_code >= 400:
            error = classify_error(response)
            if isinstance(error, FatalError) and response.status_code < 500 and response.status_code != 403:
                raise InvalidVideoError(f"Video lookup failed for {video_id}: {error}")
            raise error

        items = response.json().get("items") or []
        if not items:
            raise InvalidVideoError(f"Video not found: {video_id}")

        video = items[0]
        snippet = video.get("snippet") or {}
        details = video.get("liveStreamingDetails") or {}
        broadcast = snippet.get("liveBroadcastContent", "none")

        if broadcast == "none":
            raise NotLiveError("video is not a live stream")
        if broadcast == "upcoming":
            scheduled = details.get("scheduledStartTime")
            raise NotLiveError(
                f"live stream has not started yet (scheduled for {scheduled})"
                if scheduled
                else "live stream has not started yet"
            )
        if broadcast not in ("live", "active"):
            raise NotLiveError(f"video is not live (status: {broadcast})")

        chat_id = details.get("activeLiveChatId")
        if not chat_id:
            raise NotLiveError("live chat is not available for this video")

        logger.debug(f"Resolved live chat for {video_id}", extra={"video_id": video_id})
        return chat_id

    async def fetch_page(self, chat_handle: str, page_token: str) -> ChatPage:
        params: Dict[str, Any] = {
            "part": "snippet,authorDetails",
            "liveChatId": chat_handle,
            "maxResults": self.max_results,
        }
        if page_token:
            params["pageToken"] = page_token

        response = await self._get("liveChat/messages", params)
        if response.status_code >= 400:
            if response.status_code in (403, 404) and _error_reasons(response) & CHAT_OVER_REASONS:
                return ChatPage(ended=True, next_page_token=page_token)
            raise classify_error(response)

        data = response.json()
        messages = []
        for item in data.get("items") or []:
            message = parse_chat_message(item)
            if message is not None:
                messages.append(message)

        return ChatPage(
            messages=messages,
            next_page_token=data.get("nextPageToken") or "",
            suggested_delay_ms=data.get("pollingIntervalMillis"),
            ended=bool(data.get("offlineAt")),
        )

    async def release_chat_handle(self, chat_handle: str) -> None:
        # Live chat ids carry no server-side state to free
        return None

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http_client.aclose()
