"""
Fan-out Hub

Republishes a session's routed messages to every connected subscriber.

Why per-subscriber queues?
- publish() never awaits a subscriber, so a slow viewer cannot stall the router
- Each subscriber runs its own heartbeat, roster and idle timers
- A subscriber whose queue overflows is dropped instead of blocking others

Transport framing (SSE / WebSocket) lives in chatwatch.main; this module
only produces StreamEvent objects.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, Optional, Set

from pydantic import BaseModel

from chatwatch.ingest.source import ChatMessage
from chatwatch.memory.roster import CommenterFilter, Roster, RosterOrder, default_commenter_filter
from chatwatch.schemas.events import (
    ChatMessageEvent,
    CommenterModel,
    ConnectedEvent,
    HeartbeatEvent,
    RosterUpdateEvent,
    SessionEndedEvent,
    TimeoutEvent,
)
from chatwatch.utils.errors import SessionNotFoundError
from chatwatch.utils.logging import get_logger

logger = get_logger(__name__, category="stream")


class EventKind(str, Enum):
    CONNECTED = "connected"
    ROSTER_UPDATE = "roster_update"
    CHAT_MESSAGE = "chat_message"
    HEARTBEAT = "heartbeat"
    SESSION_ENDED = "session_ended"
    TIMEOUT = "timeout"


TERMINAL_EVENTS = (EventKind.SESSION_ENDED, EventKind.TIMEOUT)


@dataclass(frozen=True)
class StreamEvent:
    kind: EventKind
    payload: BaseModel

    @property
    def is_terminal(self) -> bool:
        return self.kind in TERMINAL_EVENTS

    def to_dict(self) -> dict:
        return {"event": self.kind.value, "data": self.payload.model_dump(mode="json")}

    def to_sse(self) -> str:
        """Server-Sent Events frame."""
        return f"event: {self.kind.value}\ndata: {self.payload.model_dump_json()}\n\n"


# Queue marker: the subscriber overflowed and was removed from the hub
_DROPPED = object()

DetachCallback = Callable[["SubscriberStream"], Awaitable[None]]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SubscriberStream:
    """
    Sink for one connected viewer.

    Iterate events() to receive: connected, roster_update, then any mix of
    chat_message / heartbeat / roster_update, and finally one of
    session_ended or timeout. detach() is idempotent.

    Args:
        hub: Hub this subscriber is attached to
        order: Roster order used for roster_update snapshots
        filter: Keep-predicate for snapshots (None disables filtering)
        queue_size: Bound on undelivered events before the subscriber is dropped
    """

    def __init__(
        self,
        hub: "FanoutHub",
        order: RosterOrder = RosterOrder.FIRST_SEEN,
        filter: Optional[CommenterFilter] = default_commenter_filter,
        queue_size: int = 256,
    ):
        self.hub = hub
        self.order = RosterOrder(order)
        self.filter = filter
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=max(1, queue_size))
        self.dropped = False
        self.finished = False
        self._detached = False

    @property
    def video_id(self) -> str:
        return self.hub.video_id

    def offer(self, event: StreamEvent) -> bool:
        """Queue an event without waiting; drops the subscriber when full."""
        if self.finished or self.dropped:
            return False
        try:
            self.queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            self.dropped = True
            self._replace_queue_with(_DROPPED)
            self.hub.discard(self)
            logger.info(
                f"Dropping slow subscriber on {self.video_id} (queue size {self.queue.maxsize})",
                extra={"video_id": self.video_id},
            )
            return False

    def offer_terminal(self, event: StreamEvent) -> None:
        """Queue a terminal event, discarding pending ones if there is no room."""
        if self.finished or self.dropped:
            return
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            self._replace_queue_with(event)

    def _replace_queue_with(self, item) -> None:
        while not self.queue.empty():
            self.queue.get_nowait()
        self.queue.put_nowait(item)

    def roster_event(self) -> StreamEvent:
        view = self.hub.roster.view(self.order, self.filter)
        payload = RosterUpdateEvent(
            video_id=self.video_id,
            order=self.order.value,
            count=len(view.commenters),
            total=view.total,
            is_full=view.is_full,
            commenters=[CommenterModel.model_validate(c, from_attributes=True) for c in view.commenters],
        )
        return StreamEvent(EventKind.ROSTER_UPDATE, payload)

    def _timeout_event(self, reason: str) -> StreamEvent:
        return StreamEvent(
            EventKind.TIMEOUT,
            TimeoutEvent(
                video_id=self.video_id,
                reason=reason,
                idle_timeout_seconds=self.hub.idle_timeout if reason == "idle" else None,
            ),
        )

    async def events(self) -> AsyncIterator[StreamEvent]:
        hub = self.hub
        loop = asyncio.get_running_loop()
        try:
            yield StreamEvent(
                EventKind.CONNECTED,
                ConnectedEvent(
                    video_id=self.video_id,
                    subscribers=hub.subscriber_count,
                    heartbeat_interval_seconds=hub.heartbeat_interval,
                    idle_timeout_seconds=hub.idle_timeout,
                ),
            )
            yield self.roster_event()

            now = loop.time()
            next_heartbeat = now + hub.heartbeat_interval
            next_roster = now + hub.roster_interval
            idle_deadline = now + hub.idle_timeout

            while True:
                wait = min(next_heartbeat, next_roster, idle_deadline) - loop.time()
                try:
                    item = await asyncio.wait_for(self.queue.get(), timeout=max(0.0, wait))
                except asyncio.TimeoutError:
                    item = None

                if item is _DROPPED:
                    yield self._timeout_event("slow_consumer")
                    return
                if item is not None:
                    if item.kind == EventKind.CHAT_MESSAGE:
                        idle_deadline = loop.time() + hub.idle_timeout
                    yield item
                    if item.is_terminal:
                        return

                now = loop.time()
                if now >= idle_deadline:
                    logger.info(
                        f"Subscriber on {self.video_id} idle for {hub.idle_timeout}s, closing",
                        extra={"video_id": self.video_id},
                    )
                    yield self._timeout_event("idle")
                    return
                if now >= next_heartbeat:
                    next_heartbeat = now + hub.heartbeat_interval
                    yield StreamEvent(
                        EventKind.HEARTBEAT,
                        HeartbeatEvent(video_id=self.video_id, timestamp=_now()),
                    )
                if now >= next_roster:
                    next_roster = now + hub.roster_interval
                    yield self.roster_event()
        finally:
            self.finished = True
            await self.detach()

    async def detach(self) -> None:
        """Unregister from the hub and release this subscriber's session reference."""
        if self._detached:
            return
        self._detached = True
        self.finished = True
        self.hub.discard(self)
        if self.hub.on_detach is None:
            return
        try:
            await self.hub.on_detach(self)
        except SessionNotFoundError as e:
            logger.debug(f"Detach after session end: {e}", extra={"video_id": self.video_id})


class FanoutHub:
    """
    Per-session fan-out point.

    Args:
        video_id: Video the session monitors
        roster: Roster used for roster_update snapshots
        heartbeat_interval: Seconds between heartbeat events
        roster_interval: Seconds between roster_update events
        idle_timeout: Seconds without a chat_message before a subscriber times out
        queue_size: Per-subscriber queue bound
        on_detach: Awaited once per subscriber when it detaches (releases the session)
    """

    def __init__(
        self,
        video_id: str,
        roster: Roster,
        heartbeat_interval: float = 30.0,
        roster_interval: float = 10.0,
        idle_timeout: float = 300.0,
        queue_size: int = 256,
        on_detach: Optional[DetachCallback] = None,
    ):
        self.video_id = video_id
        self.roster = roster
        self.heartbeat_interval = heartbeat_interval
        self.roster_interval = roster_interval
        self.idle_timeout = idle_timeout
        self.queue_size = queue_size
        self.on_detach = on_detach
        self.subscribers: Set[SubscriberStream] = set()
        self.closed = False
        self.ended_event: Optional[StreamEvent] = None

    @property
    def subscriber_count(self) -> int:
        return len(self.subscribers)

    def attach(
        self,
        order: RosterOrder = RosterOrder.FIRST_SEEN,
        filter: Optional[CommenterFilter] = default_commenter_filter,
    ) -> SubscriberStream:
        subscriber = SubscriberStream(self, order=order, filter=filter, queue_size=self.queue_size)
        if self.closed and self.ended_event is not None:
            subscriber.offer_terminal(self.ended_event)
        else:
            self.subscribers.add(subscriber)
        logger.debug(
            f"Subscriber attached to {self.video_id} ({self.subscriber_count} attached)",
            extra={"video_id": self.video_id},
        )
        return subscriber

    def discard(self, subscriber: SubscriberStream) -> None:
        self.subscribers.discard(subscriber)

    def publish(self, event: StreamEvent) -> int:
        """Offer an event to every subscriber; returns how many accepted it."""
        if self.closed:
            return 0
        delivered = 0
        for subscriber in list(self.subscribers):
            if subscriber.offer(event):
                delivered += 1
        return delivered

    def publish_message(self, message: ChatMessage, created: bool = False) -> int:
        payload = ChatMessageEvent(
            video_id=message.video_id or self.video_id,
            message_id=message.message_id,
            author_id=message.author_id,
            display_name=message.display_name,
            text=message.text,
            occurred_at=message.occurred_at,
            is_owner=message.roles.is_owner,
            is_moderator=message.roles.is_moderator,
            is_member=message.roles.is_member,
            new_commenter=created,
        )
        return self.publish(StreamEvent(EventKind.CHAT_MESSAGE, payload))

    def close(self, reason: str, error: Optional[str] = None) -> None:
        """Deliver session_ended to every subscriber and stop accepting events."""
        if self.closed:
            return
        self.closed = True
        self.ended_event = StreamEvent(
            EventKind.SESSION_ENDED,
            SessionEndedEvent(video_id=self.video_id, reason=reason, error=error),
        )
        for subscriber in list(self.subscribers):
            subscriber.offer_terminal(self.ended_event)
        self.subscribers.clear()
        logger.info(
            f"Session for {self.video_id} closed ({reason})",
            extra={"video_id": self.video_id},
        )
