"""
Message Router

Single consumer of a session's shared stream: drops re-delivered messages,
upserts the roster and republishes each new message to the fan-out hub.
The router is the only writer to the roster.
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Deque, Optional, Set

from chatwatch.ingest.source import ChatMessage
from chatwatch.memory.roster import Roster
from chatwatch.stream.channel import MessageStream
from chatwatch.stream.fanout import FanoutHub
from chatwatch.utils.logging import get_logger

logger = get_logger(__name__, category="stream")


class RecentIdWindow:
    """Bounded set of recently seen message ids (oldest evicted first)."""

    def __init__(self, size: int = 2000):
        self._order: Deque[str] = deque()
        self._ids: Set[str] = set()
        self.size = max(1, size)

    def __contains__(self, message_id: str) -> bool:
        return message_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def add(self, message_id: str) -> bool:
        """Remember an id; returns False if it was already in the window."""
        if message_id in self._ids:
            return False
        self._order.append(message_id)
        self._ids.add(message_id)
        if len(self._order) > self.size:
            self._ids.discard(self._order.popleft())
        return True


class MessageRouter:
    def __init__(
        self,
        video_id: str,
        stream: MessageStream,
        roster: Roster,
        hub: FanoutHub,
        window_size: int = 2000,
    ):
        self.video_id = video_id
        self.stream = stream
        self.roster = roster
        self.hub = hub
        self.seen = RecentIdWindow(window_size)
        self.routed = 0
        self.duplicates = 0
        self.task: Optional[asyncio.Task] = None

    def start(self) -> asyncio.Task:
        if self.task is None:
            self.task = asyncio.create_task(self.run(), name=f"router:{self.video_id}")
        return self.task

    async def run(self) -> None:
        """Drain the stream until it is closed."""
        async for message in self.stream:
            self.route(message)
        logger.debug(
            f"Router for {self.video_id} finished ({self.routed} routed, {self.duplicates} duplicates)",
            extra={"video_id": self.video_id},
        )

    def route(self, message: ChatMessage) -> bool:
        if message.message_id and not self.seen.add(message.message_id):
            self.duplicates += 1
            return False

        result = self.roster.upsert(
            message.author_id,
            message.display_name,
            message.occurred_at,
            message.roles,
        )
        self.routed += 1
        self.hub.publish_message(message, created=result.created)
        return True
