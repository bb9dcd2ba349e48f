"""
Commenter Roster

Deduplicates chat authors for one monitored video into a bounded, ordered
list of commenters.

Why a dedicated structure?
- author_id is the stable identity; display names change mid-stream
- The list must stay bounded (max_commenters) on very busy chats
- Snapshots are read by HTTP handlers and subscriber timers while the
  router keeps upserting, so reads share a lock and writes are exclusive
"""

from __future__ import annotations

import unicodedata
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from chatwatch.ingest.source import RoleFlags
from chatwatch.utils.logging import get_logger
from chatwatch.utils.rwlock import ReadWriteLock

logger = get_logger(__name__, category="roster")

DEFAULT_BOT_NAMES = ("nightbot", "streamlabs", "moobot", "streamelements", "fossabot", "wizebot")

# Katakana block that has a hiragana counterpart 0x60 code points below
_KATAKANA_START = 0x30A1
_KATAKANA_END = 0x30F6
_KANA_OFFSET = 0x60


@dataclass
class Commenter:
    author_id: str
    display_name: str
    first_seen_at: datetime
    last_seen_at: datetime
    message_count: int = 1
    is_owner: bool = False
    is_moderator: bool = False
    is_member: bool = False


@dataclass(frozen=True)
class UpsertResult:
    created: bool
    skipped: bool = False


@dataclass(frozen=True)
class RosterView:
    commenters: List[Commenter]
    total: int
    is_full: bool


class RosterOrder(str, Enum):
    FIRST_SEEN = "first_seen"
    MESSAGE_COUNT = "message_count"
    NAME = "name"


CommenterFilter = Callable[[Commenter], bool]


def normalize_name(name: str) -> str:
    """NFKC + casefold, with katakana folded onto hiragana."""
    folded = unicodedata.normalize("NFKC", name or "").casefold()
    return "".join(
        chr(ord(ch) - _KANA_OFFSET) if _KATAKANA_START <= ord(ch) <= _KATAKANA_END else ch
        for ch in folded
    )


def name_sort_key(commenter: Commenter):
    return (normalize_name(commenter.display_name), commenter.author_id)


def make_bot_filter(bot_names: Iterable[str] = DEFAULT_BOT_NAMES) -> CommenterFilter:
    """
    Build the default keep-predicate.

    Returns a callable that is True for commenters that should be shown:
    not the channel owner, not a moderator, and no bot-looking name.
    """
    denylist = tuple(normalize_name(n) for n in bot_names if n)

    def keep(commenter: Commenter) -> bool:
        if commenter.is_owner or commenter.is_moderator:
            return False
        name = normalize_name(commenter.display_name)
        if "bot" in name:
            return False
        return not any(entry in name for entry in denylist)

    return keep


default_commenter_filter: CommenterFilter = make_bot_filter()


class Roster:
    """
    Bounded author_id -> Commenter map for a single video.

    Args:
        video_id: Video this roster belongs to (used for logging only)
        max_commenters: Capacity; new authors are skipped once it is reached
    """

    def __init__(self, video_id: str, max_commenters: int = 1000):
        if max_commenters < 1:
            raise ValueError("max_commenters must be at least 1")
        self.video_id = video_id
        self.max_commenters = max_commenters
        self._commenters: Dict[str, Commenter] = {}
        self._lock = ReadWriteLock()
        self._full_logged = False

    def upsert(
        self,
        author_id: str,
        display_name: str,
        occurred_at: datetime,
        roles: Optional[RoleFlags] = None,
    ) -> UpsertResult:
        roles = roles or RoleFlags()
        with self._lock.write():
            existing = self._commenters.get(author_id)
            if existing is not None:
                existing.display_name = display_name
                existing.is_owner = roles.is_owner
                existing.is_moderator = roles.is_moderator
                existing.is_member = roles.is_member
                existing.last_seen_at = max(occurred_at, existing.first_seen_at)
                existing.message_count += 1
                return UpsertResult(created=False)

            if len(self._commenters) >= self.max_commenters:
                should_log = not self._full_logged
                self._full_logged = True
            else:
                self._commenters[author_id] = Commenter(
                    author_id=author_id,
                    display_name=display_name,
                    first_seen_at=occurred_at,
                    last_seen_at=occurred_at,
                    message_count=1,
                    is_owner=roles.is_owner,
                    is_moderator=roles.is_moderator,
                    is_member=roles.is_member,
                )
                return UpsertResult(created=True)

        if should_log:
            logger.info(
                f"Roster full for {self.video_id} ({self.max_commenters} commenters), skipping new authors",
                extra={"video_id": self.video_id},
            )
        return UpsertResult(created=False, skipped=True)

    def snapshot(
        self,
        order: RosterOrder = RosterOrder.FIRST_SEEN,
        filter: Optional[CommenterFilter] = default_commenter_filter,
    ) -> List[Commenter]:
        """Filtered, ordered copy of the roster. Never mutates state."""
        return self.view(order, filter).commenters

    def view(
        self,
        order: RosterOrder = RosterOrder.FIRST_SEEN,
        filter: Optional[CommenterFilter] = default_commenter_filter,
    ) -> RosterView:
        """Snapshot plus the unfiltered totals, all taken under one read lock."""
        with self._lock.read():
            items = [replace(c) for c in self._commenters.values()]
            total = len(items)
            is_full = total >= self.max_commenters

        if filter is not None:
            items = [c for c in items if filter(c)]

        order = RosterOrder(order)
        if order == RosterOrder.FIRST_SEEN:
            items.sort(key=lambda c: (c.first_seen_at, normalize_name(c.display_name), c.author_id))
        elif order == RosterOrder.MESSAGE_COUNT:
            items.sort(key=lambda c: (-c.message_count, normalize_name(c.display_name), c.author_id))
        else:
            items.sort(key=name_sort_key)
        return RosterView(commenters=items, total=total, is_full=is_full)

    def get(self, author_id: str) -> Optional[Commenter]:
        with self._lock.read():
            commenter = self._commenters.get(author_id)
            return replace(commenter) if commenter else None

    def count(self) -> int:
        with self._lock.read():
            return len(self._commenters)

    def is_full(self) -> bool:
        with self._lock.read():
            return len(self._commenters) >= self.max_commenters

    def clear(self) -> None:
        with self._lock.write():
            self._commenters.clear()
            self._full_logged = False
