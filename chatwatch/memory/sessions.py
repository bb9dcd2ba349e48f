"""
Monitoring Session Registry

Keeps exactly one monitoring session (poll loop + router + roster + fan-out
hub) per video and reference-counts the subscribers sharing it.

Why ref-counting?
- Any number of viewers can watch one video while the chat source is polled once
- The last subscriber leaving cancels the poll loop and frees the roster
- A session that ends on its own (chat over, too many errors) removes itself
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from chatwatch.config import Settings, settings as default_settings
from chatwatch.ingest.poller import EndReason, PollLoop, PollState
from chatwatch.ingest.source import ChatSource
from chatwatch.memory.roster import Roster
from chatwatch.stream.channel import MessageStream
from chatwatch.stream.fanout import FanoutHub, SubscriberStream
from chatwatch.stream.router import MessageRouter
from chatwatch.utils.errors import SessionNotFoundError
from chatwatch.utils.logging import get_logger

logger = get_logger(__name__, category="session")


@dataclass(eq=False)
class MonitoringSession:
    video_id: str
    chat_handle: str
    roster: Roster
    stream: MessageStream
    hub: FanoutHub
    poller: PollLoop
    router: MessageRouter
    subscriber_count: int = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    task: Optional[asyncio.Task] = None

    @property
    def max_commenters(self) -> int:
        return self.roster.max_commenters

    @property
    def poll_state(self) -> PollState:
        return self.poller.state

    @property
    def end_reason(self) -> Optional[EndReason]:
        return self.poller.end_reason

    @property
    def is_active(self) -> bool:
        return self.task is not None and not self.task.done()

    async def run(self) -> Optional[EndReason]:
        """Run poll loop and router; close the hub once both are done."""
        self.poller.start()
        self.router.start()
        try:
            await self.poller.poll_task
            await self.router.task
        except asyncio.CancelledError:
            await self.poller.cancel()
            try:
                await self.router.task
            except asyncio.CancelledError:
                # Router interrupted mid-drain; the stream is closed either way
                pass
            raise
        finally:
            reason = self.poller.end_reason or EndReason.CANCELLED
            error = self.poller.last_error
            self.hub.close(reason.value, str(error) if error is not None else None)
        return self.poller.end_reason

    async def cancel(self) -> None:
        """
        Stop polling and tear down the roster.

        A session that already ended on its own keeps its final roster for
        whoever still holds it.
        """
        was_running = self.task is not None and not self.task.done()
        if self.task is not None:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                # Expected for a session stopped by its last subscriber
                pass
        # Both no-ops unless the task was cancelled before it ever ran
        await self.poller.cancel()
        self.hub.close(EndReason.CANCELLED.value)
        if was_running:
            self.roster.clear()


class SessionRegistry:
    """
    Owns every monitoring session in the process.

    Args:
        source: ChatSource shared by all sessions
        config: Settings for intervals, capacities and limits
    """

    def __init__(self, source: ChatSource, config: Optional[Settings] = None):
        self.source = source
        self.config = config or default_settings
        self._sessions: Dict[str, MonitoringSession] = {}
        self._lock = asyncio.Lock()

    async def subscribe(self, video_id: str, max_commenters: Optional[int] = None) -> MonitoringSession:
        """
        Join (or start) monitoring for a video.

        Raises:
            ValidationError: video does not exist or has no live chat; no
                session is created in that case
        """
        async with self._lock:
            session = self._sessions.get(video_id)
            if session is not None:
                session.subscriber_count += 1
                return session

        # Network I/O happens without the lock held
        chat_handle = await self.source.resolve_chat_handle(video_id)

        async with self._lock:
            session = self._sessions.get(video_id)
            if session is not None:
                session.subscriber_count += 1
                duplicate_handle = chat_handle
            else:
                session = self._create_session(video_id, chat_handle, max_commenters)
                session.subscriber_count = 1
                self._sessions[video_id] = session
                duplicate_handle = None

        if duplicate_handle is not None:
            await self.source.release_chat_handle(duplicate_handle)
        else:
            logger.info(
                f"Started monitoring {video_id} (max_commenters={session.max_commenters})",
                extra={"video_id": video_id},
            )
        return session

    async def unsubscribe(self, video_id: str, session: Optional[MonitoringSession] = None) -> int:
        """
        Drop one subscriber reference; returns the remaining count.

        When ``session`` is given the reference is only released if that exact
        session is still registered for the video.

        Raises:
            SessionNotFoundError: no (matching) session is registered
        """
        async with self._lock:
            current = self._sessions.get(video_id)
            if current is None or (session is not None and current is not session):
                raise SessionNotFoundError(video_id)
            current.subscriber_count -= 1
            remaining = current.subscriber_count
            if remaining <= 0:
                del self._sessions[video_id]

        if remaining <= 0:
            logger.info(f"Last subscriber left {video_id}, stopping", extra={"video_id": video_id})
            await current.cancel()
            return 0
        return remaining

    async def release(self, subscriber: SubscriberStream) -> None:
        """Detach hook used by fan-out hubs."""
        session = self._session_for_hub(subscriber.hub)
        if session is None:
            raise SessionNotFoundError(subscriber.video_id)
        await self.unsubscribe(subscriber.video_id, session)

    def get(self, video_id: str) -> Optional[MonitoringSession]:
        return self._sessions.get(video_id)

    def list_active(self) -> List[str]:
        return list(self._sessions.keys())

    def __len__(self) -> int:
        return len(self._sessions)

    async def shutdown(self) -> None:
        """Cancel every session (application shutdown)."""
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            await session.cancel()
        if sessions:
            logger.info(f"Stopped {len(sessions)} monitoring session(s)")

    def _session_for_hub(self, hub: FanoutHub) -> Optional[MonitoringSession]:
        session = self._sessions.get(hub.video_id)
        if session is not None and session.hub is hub:
            return session
        return None

    def _create_session(self, video_id: str, chat_handle: str, max_commenters: Optional[int]) -> MonitoringSession:
        config = self.config
        roster = Roster(video_id, max_commenters or config.default_max_commenters)
        stream: MessageStream = MessageStream(config.message_stream_capacity)
        hub = FanoutHub(
            video_id,
            roster,
            heartbeat_interval=config.heartbeat_interval_seconds,
            roster_interval=config.roster_update_interval_seconds,
            idle_timeout=config.subscriber_idle_timeout_seconds,
            queue_size=config.subscriber_queue_size,
            on_detach=self.release,
        )
        poller = PollLoop(
            video_id,
            self.source,
            stream,
            chat_handle=chat_handle,
            min_interval=config.min_poll_interval_seconds,
            default_interval=config.default_poll_interval_seconds,
            backoff_base=config.backoff_base_seconds,
            max_backoff=config.max_backoff_seconds,
            error_ceiling=config.max_consecutive_errors,
        )
        router = MessageRouter(video_id, stream, roster, hub, window_size=config.recent_message_window)
        session = MonitoringSession(
            video_id=video_id,
            chat_handle=chat_handle,
            roster=roster,
            stream=stream,
            hub=hub,
            poller=poller,
            router=router,
        )
        session.task = asyncio.create_task(session.run(), name=f"session:{video_id}")
        session.task.add_done_callback(lambda _task: self._on_session_done(session))
        return session

    def _on_session_done(self, session: MonitoringSession) -> None:
        # Only remove the entry if it still belongs to this session
        if self._sessions.get(session.video_id) is session:
            del self._sessions[session.video_id]
            logger.info(
                f"Session for {session.video_id} ended on its own ({session.end_reason.value if session.end_reason else 'unknown'})",
                extra={"video_id": session.video_id},
            )
        task = session.task
        if task is not None and not task.cancelled() and task.exception() is not None:
            logger.error(
                f"Session for {session.video_id} crashed: {task.exception()}",
                exc_info=task.exception(),
                extra={"video_id": session.video_id},
            )
