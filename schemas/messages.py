"""
API Schemas

These Pydantic models define:
- What data we expect to receive
- What data we send back

Why Pydantic models?
- Automatic validation (FastAPI rejects malformed bodies with 422)
- Auto-generated API documentation (Swagger/OpenAPI)
- Serialization (Python objects ↔ JSON)
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from chatwatch.schemas.events import CommenterModel


class StartMonitoringRequest(BaseModel):
    """
    Start (or join) monitoring of a live video

    `video` may be a bare video id or any YouTube watch/share URL.
    """

    video: str = Field(..., min_length=1, description="YouTube video id or URL")
    max_commenters: Optional[int] = Field(
        default=None,
        ge=1,
        le=10000,
        description="Roster capacity (defaults to DEFAULT_MAX_COMMENTERS)",
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "video": "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
                "max_commenters": 500,
            }
        }
    )


class StopMonitoringRequest(BaseModel):
    """Release one monitoring reference for a video"""

    video_id: str = Field(..., min_length=1, description="YouTube video id")


class MonitoringResponse(BaseModel):
    """Session summary returned by start/stop"""

    video_id: str
    subscribers: int = Field(..., description="Remaining subscriber references")
    max_commenters: Optional[int] = None
    is_monitoring: bool = True


class ActiveSessionsResponse(BaseModel):
    video_ids: List[str]


class VideoStatusResponse(BaseModel):
    """Live status of one monitored video"""

    video_id: str
    is_monitoring: bool
    subscribers: int
    commenter_count: int
    roster_full: bool
    max_commenters: int
    poll_state: str
    pages_fetched: int = 0
    messages_forwarded: int = 0
    started_at: datetime


class RosterResponse(BaseModel):
    """Ordered, filtered roster snapshot"""

    video_id: str
    order: str
    count: int
    total: int
    commenters: List[CommenterModel]


class LogEntry(BaseModel):
    timestamp: str
    level: str
    logger: str
    category: str
    message: str
    video_id: Optional[str] = None


class LogsResponse(BaseModel):
    count: int
    logs: List[LogEntry]


class LogStatsResponse(BaseModel):
    """Counts of buffered log records"""

    total: int
    level_counts: Dict[str, int]
    category_counts: Dict[str, int]
    video_id_counts: Dict[str, int]


class LogsClearedResponse(BaseModel):
    cleared: int


class HealthResponse(BaseModel):
    status: str = "healthy"
    service: str = "chatwatch"
    timestamp: datetime
    active_sessions: int
