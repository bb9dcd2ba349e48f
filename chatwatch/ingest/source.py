from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Protocol


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RoleFlags:
    is_owner: bool = False
    is_moderator: bool = False
    is_member: bool = False


@dataclass
class ChatMessage:
    message_id: str
    author_id: str
    display_name: str
    occurred_at: datetime = field(default_factory=utcnow)
    roles: RoleFlags = field(default_factory=RoleFlags)
    text: str = ""
    video_id: Optional[str] = None


@dataclass
class ChatPage:
    messages: List[ChatMessage] = field(default_factory=list)
    next_page_token: str = ""
    suggested_delay_ms: Optional[int] = None
    ended: bool = False


class ChatSource(Protocol):
    """
    Port to the live-chat provider.

    resolve_chat_handle raises NotLiveError / InvalidVideoError for videos we
    cannot monitor; fetch_page raises TransientError or FatalError.
    """

    async def resolve_chat_handle(self, video_id: str) -> str:
        ...

    async def fetch_page(self, chat_handle: str, page_token: str) -> ChatPage:
        ...

    async def release_chat_handle(self, chat_handle: str) -> None:
        ...

    async def aclose(self) -> None:
        ...
