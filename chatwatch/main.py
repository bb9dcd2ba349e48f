"""
chatwatch - FastAPI Application

This service:
- Monitors YouTube live chats (one poll loop per video, shared by all viewers)
- Keeps a deduplicated, ranked roster of commenters per video
- Streams chat messages and roster snapshots to viewers over SSE or WebSocket

Why FastAPI?
- Async support (poll loops and subscriber streams share one event loop)
- Type validation with Pydantic
- Automatic API documentation
- Native StreamingResponse and WebSocket support

RUNNING THE SERVER:
    uvicorn chatwatch.main:app --port 8000
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

from fastapi import FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

from chatwatch.config import Settings, settings as default_settings
from chatwatch.ingest.source import ChatSource
from chatwatch.ingest.video_id import extract_video_id
from chatwatch.ingest.youtube import YouTubeChatSource
from chatwatch.memory.roster import RosterOrder, make_bot_filter
from chatwatch.memory.sessions import MonitoringSession, SessionRegistry
from chatwatch.schemas.events import CommenterModel
from chatwatch.stream.fanout import SubscriberStream
from chatwatch.utils.errors import ChatSourceError, SessionNotFoundError, ValidationError
from chatwatch.utils.logging import configure_logging, get_logger
from schemas.messages import (
    ActiveSessionsResponse,
    HealthResponse,
    LogEntry,
    LogsClearedResponse,
    LogsResponse,
    LogStatsResponse,
    MonitoringResponse,
    RosterResponse,
    StartMonitoringRequest,
    StopMonitoringRequest,
    VideoStatusResponse,
)

# Use category-aware logger for system logs
logger = get_logger(__name__, category="system")
api_logger = get_logger(f"{__name__}.api", category="api")

# Configure uvicorn access logger to filter polling endpoints
access_logger = logging.getLogger("uvicorn.access")


def filter_access_log(record):
    """Filter out health checks and log polling."""
    message = record.getMessage()
    if message.find("/health") != -1:
        return False
    if message.find("/api/logs") != -1:
        return False
    return True


access_logger.addFilter(filter_access_log)


class SubscriberEventResponse(StreamingResponse):
    """
    Event stream bound to one fan-out subscriber.

    The subscriber is detached when the response finishes for any reason,
    including a client that leaves before the body starts streaming.
    """

    def __init__(self, content, subscriber: SubscriberStream, **kwargs):
        super().__init__(content, **kwargs)
        self.subscriber = subscriber

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self.subscriber.detach()


def _validated_video_id(value: str) -> str:
    try:
        return extract_video_id(value)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def create_app(settings: Optional[Settings] = None, chat_source: Optional[ChatSource] = None) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Settings instance (defaults to the env-loaded module settings)
        chat_source: ChatSource to poll (defaults to the YouTube Data API source)
    """
    config = settings or default_settings
    log_handler = configure_logging(config)

    source: ChatSource = chat_source or YouTubeChatSource(
        config.youtube_api_key,
        max_results=config.youtube_max_results,
        request_timeout=config.youtube_request_timeout_seconds,
    )
    registry = SessionRegistry(source, config)
    roster_filter = make_bot_filter(config.bot_names)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"chatwatch starting on {config.host}:{config.port}")
        yield
        logger.info("chatwatch shutting down")
        try:
            await registry.shutdown()
        finally:
            await source.aclose()

    app = FastAPI(
        title="chatwatch",
        description="Live chat commenter monitoring and fan-out",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = config
    app.state.registry = registry
    app.state.chat_source = source
    app.state.log_handler = log_handler

    async def subscribe_or_raise(video_id: str, max_commenters: Optional[int] = None) -> MonitoringSession:
        try:
            return await registry.subscribe(video_id, max_commenters)
        except ValidationError as exc:
            api_logger.info(f"Rejected monitoring request for {video_id}: {exc}", extra={"video_id": video_id})
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except ChatSourceError as exc:
            api_logger.warning(f"Chat source unavailable for {video_id}: {exc}", extra={"video_id": video_id})
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        except Exception as exc:
            api_logger.error(f"Unexpected error subscribing to {video_id}: {exc}", exc_info=True)
            raise HTTPException(status_code=500, detail="Failed to start monitoring") from exc

    def session_or_404(video_id: str) -> MonitoringSession:
        session = registry.get(video_id)
        if session is None:
            raise HTTPException(status_code=404, detail=str(SessionNotFoundError(video_id)))
        return session

    def attach(session: MonitoringSession, order: RosterOrder, include_all: bool) -> SubscriberStream:
        return session.hub.attach(order=order, filter=None if include_all else roster_filter)

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        """Health check endpoint (Docker health checks, load balancers)."""
        return HealthResponse(timestamp=datetime.now(timezone.utc), active_sessions=len(registry))

    @app.post("/api/monitoring/start", response_model=MonitoringResponse)
    async def start_monitoring(request: StartMonitoringRequest):
        """
        Start monitoring a video, or join the existing session for it.

        Each call holds one subscriber reference until /api/monitoring/stop.
        """
        video_id = _validated_video_id(request.video)
        session = await subscribe_or_raise(video_id, request.max_commenters)
        return MonitoringResponse(
            video_id=video_id,
            subscribers=session.subscriber_count,
            max_commenters=session.max_commenters,
        )

    @app.post("/api/monitoring/stop", response_model=MonitoringResponse)
    async def stop_monitoring(request: StopMonitoringRequest):
        try:
            remaining = await registry.unsubscribe(request.video_id)
        except SessionNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return MonitoringResponse(
            video_id=request.video_id,
            subscribers=remaining,
            is_monitoring=remaining > 0,
        )

    @app.get("/api/monitoring/active", response_model=ActiveSessionsResponse)
    async def list_active():
        return ActiveSessionsResponse(video_ids=registry.list_active())

    @app.get("/api/videos/{video_id}/status", response_model=VideoStatusResponse)
    async def video_status(video_id: str):
        session = session_or_404(video_id)
        return VideoStatusResponse(
            video_id=video_id,
            is_monitoring=session.is_active,
            subscribers=session.subscriber_count,
            commenter_count=session.roster.count(),
            roster_full=session.roster.is_full(),
            max_commenters=session.max_commenters,
            poll_state=session.poll_state.value,
            pages_fetched=session.poller.pages_fetched,
            messages_forwarded=session.poller.messages_forwarded,
            started_at=session.started_at,
        )

    @app.get("/api/videos/{video_id}/roster", response_model=RosterResponse)
    async def video_roster(
        video_id: str,
        order: RosterOrder = Query(RosterOrder.FIRST_SEEN),
        include_all: bool = Query(False, description="Disable the owner/moderator/bot filter"),
    ):
        session = session_or_404(video_id)
        view = session.roster.view(order, None if include_all else roster_filter)
        return RosterResponse(
            video_id=video_id,
            order=order.value,
            count=len(view.commenters),
            total=view.total,
            commenters=[CommenterModel.model_validate(c, from_attributes=True) for c in view.commenters],
        )

    @app.get("/api/sse/{video_id}")
    async def stream_events(
        video_id: str,
        order: RosterOrder = Query(RosterOrder.FIRST_SEEN),
        include_all: bool = Query(False),
    ):
        """
        Server-Sent Events feed for one video.

        Subscribing starts monitoring if nobody is watching the video yet;
        the reference is released when the stream ends or the client leaves.
        """
        video_id = _validated_video_id(video_id)
        session = await subscribe_or_raise(video_id)
        subscriber = attach(session, order, include_all)
        api_logger.info(f"SSE subscriber connected to {video_id}", extra={"video_id": video_id})

        async def event_source() -> AsyncIterator[str]:
            events = subscriber.events()
            try:
                async for event in events:
                    yield event.to_sse()
            finally:
                await events.aclose()
                await subscriber.detach()
                api_logger.info(f"SSE subscriber left {video_id}", extra={"video_id": video_id})

        return SubscriberEventResponse(
            event_source(),
            subscriber,
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    @app.websocket("/ws/{video_id}")
    async def websocket_events(
        websocket: WebSocket,
        video_id: str,
        order: RosterOrder = RosterOrder.FIRST_SEEN,
        include_all: bool = False,
    ):
        await websocket.accept()
        try:
            video_id = extract_video_id(video_id)
            session = await registry.subscribe(video_id)
        except (ValidationError, ChatSourceError) as exc:
            await websocket.send_json({"event": "error", "data": {"detail": str(exc)}})
            await websocket.close(code=1008)
            return

        subscriber = attach(session, order, include_all)
        api_logger.info(f"WebSocket subscriber connected to {video_id}", extra={"video_id": video_id})
        events = subscriber.events()
        try:
            async for event in events:
                await websocket.send_json(event.to_dict())
            await websocket.close()
        except WebSocketDisconnect:
            api_logger.info(f"WebSocket subscriber disconnected from {video_id}", extra={"video_id": video_id})
        finally:
            await events.aclose()
            await subscriber.detach()

    @app.get("/api/logs", response_model=LogsResponse)
    async def recent_logs(
        limit: int = Query(100, ge=1, le=1000),
        video_id: Optional[str] = Query(None),
        level: Optional[str] = Query(None, description="Exact level, e.g. INFO or WARNING"),
        category: Optional[str] = Query(None, description="Logger category, e.g. poller or api"),
    ):
        records = app.state.log_handler.records(limit=limit, video_id=video_id, level=level, category=category)
        return LogsResponse(count=len(records), logs=[LogEntry(**r) for r in records])

    @app.get("/api/logs/stats", response_model=LogStatsResponse)
    async def log_stats():
        return LogStatsResponse(**app.state.log_handler.stats())

    @app.delete("/api/logs", response_model=LogsClearedResponse)
    async def clear_logs():
        cleared = app.state.log_handler.clear()
        api_logger.info(f"Log buffer cleared ({cleared} records)")
        return LogsClearedResponse(cleared=cleared)

    return app


app = create_app()
