"""
Category-aware logging utility for chatwatch

Provides logging functionality with category filtering, log level control and
an in-memory buffer of recent records (served by /api/logs).
Logs can be filtered by category (poller, roster, session, stream, api, system).

Usage:
    from chatwatch.utils.logging import get_logger

    logger = get_logger(__name__, category="poller")
    logger.info("Page fetched", extra={"video_id": video_id})
"""

import logging
import threading
from collections import Counter, deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

from chatwatch.config import Settings, settings as default_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Log level hierarchy (lower number = more verbose)
LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

ROOT_LOGGER_NAME = "chatwatch"


def _parse_categories(raw: Optional[str]) -> Optional[List[str]]:
    if not raw:
        return None
    return [cat.strip().lower() for cat in raw.split(",") if cat.strip()]


# If not set, show all categories (default behavior)
_allowed_categories: Optional[List[str]] = _parse_categories(default_settings.log_categories)


class CategoryFilter(logging.Filter):
    """Filter logs by category if LOG_CATEGORIES is set."""

    def __init__(self, category: Optional[str] = None):
        """
        Initialize category filter.

        Args:
            category: Category name for this logger (e.g., 'poller', 'stream')
        """
        super().__init__()
        self.category = category.lower() if category else "system"

    def filter(self, record: logging.LogRecord) -> bool:
        record.category = self.category
        if _allowed_categories is None:
            return True
        return self.category in _allowed_categories


class RecentLogHandler(logging.Handler):
    """Keeps the most recent log records in a bounded ring buffer."""

    def __init__(self, capacity: int = 1000):
        super().__init__()
        self._records: Deque[Dict[str, Any]] = deque(maxlen=capacity)
        self._buffer_lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._records.maxlen or 0

    def emit(self, record: logging.LogRecord) -> None:
        try:
            entry = {
                "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "category": getattr(record, "category", "system"),
                "message": record.getMessage(),
                "video_id": getattr(record, "video_id", None),
            }
        except Exception:
            self.handleError(record)
            return
        with self._buffer_lock:
            self._records.append(entry)

    def records(
        self,
        limit: int = 100,
        video_id: Optional[str] = None,
        level: Optional[str] = None,
        category: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Return up to ``limit`` newest matching records, oldest first."""
        with self._buffer_lock:
            entries = list(self._records)
        if video_id:
            entries = [e for e in entries if e["video_id"] == video_id]
        if level:
            wanted = logging.getLevelName(LOG_LEVELS.get(level.upper(), level.upper()))
            entries = [e for e in entries if e["level"] == wanted]
        if category:
            entries = [e for e in entries if e["category"] == category.lower()]
        if limit <= 0:
            return []
        return entries[-limit:]

    def stats(self) -> Dict[str, Any]:
        """Counts of buffered records by level, category and video."""
        with self._buffer_lock:
            entries = list(self._records)
        return {
            "total": len(entries),
            "level_counts": dict(Counter(e["level"] for e in entries)),
            "category_counts": dict(Counter(e["category"] for e in entries)),
            "video_id_counts": dict(Counter(e["video_id"] for e in entries if e["video_id"])),
        }

    def clear(self) -> int:
        with self._buffer_lock:
            cleared = len(self._records)
            self._records.clear()
        return cleared


_recent_handler: Optional[RecentLogHandler] = None


def configure_logging(config: Optional[Settings] = None) -> RecentLogHandler:
    """
    Configure process logging once at startup.

    Sets the level of the chatwatch logger tree, applies LOG_CATEGORIES and
    attaches the recent-log buffer. Calling it again replaces the buffer.
    """
    global _allowed_categories, _recent_handler

    config = config or default_settings
    level = LOG_LEVELS.get(config.log_level.upper(), logging.INFO)

    logging.basicConfig(level=level, format=LOG_FORMAT)
    _allowed_categories = _parse_categories(config.log_categories)

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level)

    if _recent_handler is not None:
        root.removeHandler(_recent_handler)
    _recent_handler = RecentLogHandler(capacity=config.log_buffer_size)
    _recent_handler.setLevel(level)
    root.addHandler(_recent_handler)
    return _recent_handler


def get_recent_log_handler() -> Optional[RecentLogHandler]:
    return _recent_handler


def get_logger(name: str, category: Optional[str] = None) -> logging.Logger:
    """
    Get a logger with category filtering support.

    Args:
        name: Logger name (typically __name__)
        category: Category for filtering (e.g., 'poller', 'roster', 'stream')
                  If None, defaults to 'system'

    Returns:
        Logger instance with category filter applied
    """
    logger = logging.getLogger(name)

    # Remove existing category filters to avoid duplicates
    logger.filters = [f for f in logger.filters if not isinstance(f, CategoryFilter)]
    logger.addFilter(CategoryFilter(category))

    return logger
