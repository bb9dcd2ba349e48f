"""Unit tests for category-aware logging and the recent-log buffer."""
import logging

import pytest

from chatwatch.utils import logging as chat_logging
from chatwatch.utils.logging import (
    CategoryFilter,
    RecentLogHandler,
    configure_logging,
    get_logger,
    get_recent_log_handler,
)
from tests.fakes import fast_settings


def make_record(message, video_id=None, category=None, level=logging.INFO):
    record = logging.LogRecord("chatwatch.test", level, __file__, 1, message, None, None)
    if video_id is not None:
        record.video_id = video_id
    if category is not None:
        record.category = category
    return record


@pytest.mark.unit
class TestRecentLogHandler:
    def test_keeps_newest_records_up_to_capacity(self):
        handler = RecentLogHandler(capacity=3)
        for i in range(5):
            handler.emit(make_record(f"line {i}"))

        records = handler.records(limit=10)

        assert handler.capacity == 3
        assert [r["message"] for r in records] == ["line 2", "line 3", "line 4"]

    def test_limit_and_video_filter(self):
        handler = RecentLogHandler(capacity=10)
        handler.emit(make_record("a", video_id="v1"))
        handler.emit(make_record("b", video_id="v2"))
        handler.emit(make_record("c", video_id="v1", category="poller"))

        assert [r["message"] for r in handler.records(limit=1)] == ["c"]
        v1 = handler.records(video_id="v1")
        assert [r["message"] for r in v1] == ["a", "c"]
        assert v1[-1]["category"] == "poller"
        assert handler.records(limit=0) == []

    def test_level_and_category_filters(self):
        handler = RecentLogHandler(capacity=10)
        handler.emit(make_record("a", category="poller", level=logging.WARNING))
        handler.emit(make_record("b", category="api"))
        handler.emit(make_record("c", category="poller"))

        assert [r["message"] for r in handler.records(level="warn")] == ["a"]
        assert [r["message"] for r in handler.records(level="WARNING")] == ["a"]
        assert [r["message"] for r in handler.records(category="Poller")] == ["a", "c"]
        assert [r["message"] for r in handler.records(level="info", category="poller")] == ["c"]
        assert handler.records(level="nonsense") == []

    def test_stats_count_by_level_category_and_video(self):
        handler = RecentLogHandler(capacity=10)
        handler.emit(make_record("a", video_id="v1", category="poller", level=logging.WARNING))
        handler.emit(make_record("b", video_id="v1", category="api"))
        handler.emit(make_record("c", category="api"))

        stats = handler.stats()

        assert stats["total"] == 3
        assert stats["level_counts"] == {"WARNING": 1, "INFO": 2}
        assert stats["category_counts"] == {"poller": 1, "api": 2}
        assert stats["video_id_counts"] == {"v1": 2}

    def test_clear(self):
        handler = RecentLogHandler(capacity=10)
        handler.emit(make_record("a"))
        handler.emit(make_record("b"))

        assert handler.clear() == 2
        assert handler.records() == []
        assert handler.stats()["total"] == 0


@pytest.mark.unit
class TestCategoryLogging:
    def test_category_filter_tags_records(self):
        record = make_record("hello")
        assert CategoryFilter("Poller").filter(record) is True
        assert record.category == "poller"

    def test_category_allow_list(self, monkeypatch):
        monkeypatch.setattr(chat_logging, "_allowed_categories", ["stream"])

        assert CategoryFilter("stream").filter(make_record("x")) is True
        assert CategoryFilter("poller").filter(make_record("x")) is False

    def test_get_logger_does_not_stack_filters(self):
        logger = get_logger("chatwatch.test.filters", category="roster")
        logger = get_logger("chatwatch.test.filters", category="session")

        filters = [f for f in logger.filters if isinstance(f, CategoryFilter)]
        assert len(filters) == 1
        assert filters[0].category == "session"

    def test_configure_logging_feeds_buffer(self):
        handler = configure_logging(fast_settings(log_level="DEBUG", log_buffer_size=50))
        logger = get_logger("chatwatch.test.buffer", category="api")

        logger.info("buffered line", extra={"video_id": "vid"})

        assert get_recent_log_handler() is handler
        records = handler.records(video_id="vid")
        assert records[-1]["message"] == "buffered line"
        assert records[-1]["category"] == "api"
        assert records[-1]["level"] == "INFO"

    def test_reconfigure_replaces_buffer(self):
        first = configure_logging(fast_settings())
        second = configure_logging(fast_settings())

        root = logging.getLogger("chatwatch")
        assert first not in root.handlers
        assert second in root.handlers
