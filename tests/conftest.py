import pytest

from tests.fakes import fast_settings


@pytest.fixture
def test_settings():
    return fast_settings()


@pytest.fixture(autouse=True)
def settings_env(monkeypatch):
    """Set test environment variables."""
    # Keep a developer's real key out of the tests
    monkeypatch.setenv("YOUTUBE_API_KEY", "test-key-for-unit-tests")
    monkeypatch.delenv("LOG_CATEGORIES", raising=False)
    yield
