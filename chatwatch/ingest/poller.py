"""
Live Chat Poll Loop

Pulls chat pages for one video, follows page-token continuation and pushes
every message onto the session's shared stream.

Why an explicit state machine?
- RUNNING / BACKOFF / TERMINATED makes the retry policy visible and testable
- Consecutive failures are counted in one place (PollCursor)
- Termination always releases the chat handle and closes the stream
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from chatwatch.ingest.source import ChatPage, ChatSource
from chatwatch.stream.channel import MessageStream
from chatwatch.utils.errors import ChatSourceError, FatalError, TransientError, ValidationError
from chatwatch.utils.logging import get_logger

logger = get_logger(__name__, category="poller")


class PollState(str, Enum):
    RUNNING = "running"
    BACKOFF = "backoff"
    TERMINATED = "terminated"


class EndReason(str, Enum):
    ENDED = "ended"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class PollCursor:
    page_token: str = ""
    consecutive_errors: int = 0
    next_delay: float = 5.0


class PollLoop:
    """
    Poll loop for a single video.

    Args:
        video_id: Video being monitored
        source: ChatSource implementation
        stream: Shared stream the messages are pushed onto
        chat_handle: Pre-resolved chat handle (resolved on entry when None)
        min_interval: Floor for the source's suggested polling interval
        default_interval: Delay used until the source suggests one
        backoff_base: First backoff step in seconds
        max_backoff: Backoff cap in seconds
        error_ceiling: Consecutive failures that terminate the loop
    """

    def __init__(
        self,
        video_id: str,
        source: ChatSource,
        stream: MessageStream,
        chat_handle: Optional[str] = None,
        min_interval: float = 2.0,
        default_interval: float = 5.0,
        backoff_base: float = 1.0,
        max_backoff: float = 60.0,
        error_ceiling: int = 5,
    ):
        self.video_id = video_id
        self.source = source
        self.stream = stream
        self.chat_handle = chat_handle
        self.min_interval = min_interval
        self.backoff_base = backoff_base
        self.max_backoff = max_backoff
        self.error_ceiling = error_ceiling

        self.cursor = PollCursor(next_delay=max(default_interval, min_interval))
        self.state = PollState.RUNNING
        self.end_reason: Optional[EndReason] = None
        self.last_error: Optional[BaseException] = None
        self.pages_fetched = 0
        self.messages_forwarded = 0
        self.poll_task: Optional[asyncio.Task] = None

    def start(self) -> asyncio.Task:
        """Start the polling task."""
        if self.poll_task is None:
            self.poll_task = asyncio.create_task(self.run(), name=f"poll:{self.video_id}")
        return self.poll_task

    async def cancel(self) -> None:
        """Cancel the polling task and wait for it to finish."""
        if self.poll_task is not None:
            self.poll_task.cancel()
            try:
                await self.poll_task
            except asyncio.CancelledError:
                # Expected when the loop was sleeping or waiting on I/O
                pass
        if self.end_reason is None:
            # Cancelled before run() got to execute, so its cleanup never ran
            self._terminate(EndReason.CANCELLED)
            self.stream.close()
            await self._release_handle()

    def backoff_delay(self) -> float:
        return min(self.max_backoff, self.backoff_base * (2 ** self.cursor.consecutive_errors))

    async def run(self) -> Optional[EndReason]:
        """Main polling loop; returns the end reason once TERMINATED."""
        log_extra = {"video_id": self.video_id}
        try:
            if self.chat_handle is None:
                try:
                    self.chat_handle = await self.source.resolve_chat_handle(self.video_id)
                except (ValidationError, ChatSourceError) as e:
                    self._terminate(EndReason.FAILED, e)
                    logger.warning(f"Cannot monitor {self.video_id}: {e}", extra=log_extra)
                    return self.end_reason

            logger.info(f"Polling started for {self.video_id}", extra=log_extra)

            while self.state != PollState.TERMINATED:
                if self.state == PollState.RUNNING:
                    await self._run_step()
                else:
                    await self._backoff_step()

        except asyncio.CancelledError:
            self._terminate(EndReason.CANCELLED)
            logger.info(f"Polling cancelled for {self.video_id}", extra=log_extra)
        finally:
            self.state = PollState.TERMINATED
            self.stream.close()
            await self._release_handle()

        return self.end_reason

    async def _run_step(self) -> None:
        try:
            page = await self.source.fetch_page(self.chat_handle, self.cursor.page_token)
        except FatalError as e:
            self._terminate(EndReason.FAILED, e)
            logger.error(
                f"Fatal chat source error for {self.video_id}: {e}",
                extra={"video_id": self.video_id},
            )
            return
        except TransientError as e:
            self._record_failure(e)
            return
        except Exception as e:
            logger.error(
                f"Unexpected error fetching chat for {self.video_id}: {e}",
                exc_info=True,
                extra={"video_id": self.video_id},
            )
            self._record_failure(e)
            return

        await self._accept_page(page)

    async def _accept_page(self, page: ChatPage) -> None:
        cursor = self.cursor
        cursor.consecutive_errors = 0
        cursor.page_token = page.next_page_token or cursor.page_token
        if page.suggested_delay_ms is not None:
            cursor.next_delay = max(page.suggested_delay_ms / 1000.0, self.min_interval)
        self.pages_fetched += 1

        for message in page.messages:
            if message.video_id is None:
                message.video_id = self.video_id
            await self.stream.put(message)
            self.messages_forwarded += 1

        if page.ended:
            logger.info(f"Live chat ended for {self.video_id}", extra={"video_id": self.video_id})
            self._terminate(EndReason.ENDED)
            return

        await asyncio.sleep(cursor.next_delay)

    def _record_failure(self, error: BaseException) -> None:
        self.cursor.consecutive_errors += 1
        self.last_error = error
        self.state = PollState.BACKOFF
        logger.warning(
            f"Chat fetch failed for {self.video_id} "
            f"({self.cursor.consecutive_errors}/{self.error_ceiling}): {error}",
            extra={"video_id": self.video_id},
        )

    async def _backoff_step(self) -> None:
        if self.cursor.consecutive_errors >= self.error_ceiling:
            logger.error(
                f"Giving up on {self.video_id} after {self.cursor.consecutive_errors} consecutive errors",
                extra={"video_id": self.video_id},
            )
            self._terminate(EndReason.FAILED, self.last_error)
            return
        await asyncio.sleep(self.backoff_delay())
        self.state = PollState.RUNNING

    def _terminate(self, reason: EndReason, error: Optional[BaseException] = None) -> None:
        if self.end_reason is not None:
            return
        self.end_reason = reason
        if error is not None:
            self.last_error = error
        elif reason == EndReason.CANCELLED:
            self.last_error = None
        self.state = PollState.TERMINATED

    async def _release_handle(self) -> None:
        if self.chat_handle is None:
            return
        try:
            await self.source.release_chat_handle(self.chat_handle)
        except Exception as e:
            logger.warning(
                f"Failed to release chat handle for {self.video_id}: {e}",
                extra={"video_id": self.video_id},
            )
