"""Unit tests for YouTubeChatSource using httpx.MockTransport."""
import httpx
import pytest

from chatwatch.ingest.youtube import YouTubeChatSource, classify_error
from chatwatch.utils.errors import (
    FatalError,
    InvalidVideoError,
    NotLiveError,
    TransientError,
)


def make_source(handler, api_key="test-key"):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return YouTubeChatSource(api_key, http_client=client)


def error_body(reason):
    return {"error": {"code": 403, "message": reason, "errors": [{"reason": reason}]}}


def video_response(broadcast="live", chat_id="chat-123", **details):
    live_details = dict(details)
    if chat_id:
        live_details["activeLiveChatId"] = chat_id
    return {
        "items": [
            {
                "id": "dQw4w9WgXcQ",
                "snippet": {"liveBroadcastContent": broadcast},
                "liveStreamingDetails": live_details,
            }
        ]
    }


CHAT_RESPONSE = {
    "nextPageToken": "next-1",
    "pollingIntervalMillis": 3000,
    "items": [
        {
            "id": "msg-1",
            "snippet": {"publishedAt": "2025-01-01T12:00:00.123+00:00", "displayMessage": "hello"},
            "authorDetails": {
                "channelId": "UC-alice",
                "displayName": "Alice",
                "isChatOwner": False,
                "isChatModerator": True,
                "isChatSponsor": True,
            },
        },
        {
            "id": "msg-2",
            "snippet": {"publishedAt": "2025-01-01T12:00:01Z", "displayMessage": "hi"},
            "authorDetails": {"channelId": "UC-bob", "displayName": "Bob"},
        },
        {
            "id": "msg-3",
            "snippet": {"displayMessage": "no author"},
            "authorDetails": {},
        },
    ],
}


@pytest.mark.unit
class TestResolveChatHandle:
    @pytest.mark.asyncio
    async def test_live_video_returns_chat_id(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json=video_response())

        source = make_source(handler)

        assert await source.resolve_chat_handle("dQw4w9WgXcQ") == "chat-123"
        assert seen["path"].endswith("/youtube/v3/videos")
        assert seen["params"]["id"] == "dQw4w9WgXcQ"
        assert seen["params"]["part"] == "snippet,liveStreamingDetails"
        assert seen["params"]["key"] == "test-key"
        await source.aclose()

    @pytest.mark.asyncio
    async def test_not_a_live_stream(self):
        source = make_source(lambda request: httpx.Response(200, json=video_response("none", chat_id=None)))
        with pytest.raises(NotLiveError, match="not a live stream"):
            await source.resolve_chat_handle("dQw4w9WgXcQ")

    @pytest.mark.asyncio
    async def test_upcoming_stream_mentions_schedule(self):
        body = video_response("upcoming", chat_id=None, scheduledStartTime="2025-02-01T18:00:00Z")
        source = make_source(lambda request: httpx.Response(200, json=body))
        with pytest.raises(NotLiveError, match="2025-02-01T18:00:00Z"):
            await source.resolve_chat_handle("dQw4w9WgXcQ")

    @pytest.mark.asyncio
    async def test_live_without_chat(self):
        source = make_source(lambda request: httpx.Response(200, json=video_response("live", chat_id=None)))
        with pytest.raises(NotLiveError):
            await source.resolve_chat_handle("dQw4w9WgXcQ")

    @pytest.mark.asyncio
    async def test_unknown_video(self):
        source = make_source(lambda request: httpx.Response(200, json={"items": []}))
        with pytest.raises(InvalidVideoError):
            await source.resolve_chat_handle("dQw4w9WgXcQ")

    @pytest.mark.asyncio
    async def test_client_error_is_invalid_video(self):
        source = make_source(lambda request: httpx.Response(404, json={"error": {"code": 404}}))
        with pytest.raises(InvalidVideoError):
            await source.resolve_chat_handle("dQw4w9WgXcQ")

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self):
        source = make_source(lambda request: httpx.Response(503))
        with pytest.raises(TransientError):
            await source.resolve_chat_handle("dQw4w9WgXcQ")

    @pytest.mark.asyncio
    async def test_missing_api_key_is_fatal(self):
        source = make_source(lambda request: httpx.Response(200, json=video_response()), api_key=None)
        with pytest.raises(FatalError):
            await source.resolve_chat_handle("dQw4w9WgXcQ")


@pytest.mark.unit
class TestFetchPage:
    @pytest.mark.asyncio
    async def test_maps_messages_and_paging(self):
        seen = {}

        def handler(request):
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json=CHAT_RESPONSE)

        source = make_source(handler)
        page = await source.fetch_page("chat-123", "token-0")

        assert seen["params"]["liveChatId"] == "chat-123"
        assert seen["params"]["pageToken"] == "token-0"
        assert seen["params"]["part"] == "snippet,authorDetails"
        assert page.next_page_token == "next-1"
        assert page.suggested_delay_ms == 3000
        assert page.ended is False
        assert [m.message_id for m in page.messages] == ["msg-1", "msg-2"]

        alice = page.messages[0]
        assert alice.author_id == "UC-alice"
        assert alice.display_name == "Alice"
        assert alice.text == "hello"
        assert alice.roles.is_moderator is True
        assert alice.roles.is_member is True
        assert alice.roles.is_owner is False
        assert alice.occurred_at.year == 2025
        assert page.messages[1].occurred_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_first_page_has_no_token(self):
        seen = {}

        def handler(request):
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={"items": []})

        source = make_source(handler)
        await source.fetch_page("chat-123", "")

        assert "pageToken" not in seen["params"]

    @pytest.mark.asyncio
    async def test_offline_at_marks_page_ended(self):
        body = {"items": [], "offlineAt": "2025-01-01T13:00:00Z"}
        source = make_source(lambda request: httpx.Response(200, json=body))

        page = await source.fetch_page("chat-123", "t")

        assert page.ended is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reason", ["liveChatEnded", "liveChatNotFound", "liveChatDisabled"])
    async def test_chat_over_reasons_end_the_session(self, reason):
        source = make_source(lambda request: httpx.Response(403, json=error_body(reason)))

        page = await source.fetch_page("chat-123", "t")

        assert page.ended is True
        assert page.messages == []

    @pytest.mark.asyncio
    async def test_transport_errors_are_transient(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        source = make_source(handler)
        with pytest.raises(TransientError):
            await source.fetch_page("chat-123", "")

    @pytest.mark.asyncio
    async def test_timeouts_are_transient(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        source = make_source(handler)
        with pytest.raises(TransientError):
            await source.fetch_page("chat-123", "")

    @pytest.mark.asyncio
    async def test_quota_exhaustion_is_fatal(self):
        source = make_source(lambda request: httpx.Response(403, json=error_body("quotaExceeded")))
        with pytest.raises(FatalError) as exc_info:
            await source.fetch_page("chat-123", "")
        assert exc_info.value.status_code == 403


@pytest.mark.unit
class TestClassifyError:
    @pytest.mark.parametrize(
        "status, body, expected",
        [
            (500, None, TransientError),
            (502, None, TransientError),
            (503, None, TransientError),
            (504, None, TransientError),
            (429, None, TransientError),
            (403, error_body("quotaExceeded"), FatalError),
            (403, error_body("dailyLimitExceeded"), FatalError),
            (403, error_body("keyInvalid"), FatalError),
            (403, error_body("accessNotConfigured"), FatalError),
            (403, error_body("forbidden"), FatalError),
            (403, error_body("rateLimitExceeded"), TransientError),
            (403, None, TransientError),
            (400, error_body("backendError"), TransientError),
            (400, error_body("internalError"), TransientError),
            (400, error_body("badRequest"), FatalError),
            (401, None, FatalError),
            (404, None, FatalError),
        ],
    )
    def test_status_mapping(self, status, body, expected):
        response = httpx.Response(status, json=body) if body else httpx.Response(status, text="oops")
        error = classify_error(response)
        assert type(error) is expected
        assert error.status_code == status
