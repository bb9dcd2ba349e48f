"""
Subscriber Event Schemas

Pydantic models for the events pushed to SSE / WebSocket subscribers.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field


class CommenterModel(BaseModel):
	"""One deduplicated chat author."""

	author_id: str
	display_name: str
	first_seen_at: datetime
	last_seen_at: datetime
	message_count: int = Field(ge=1)
	is_owner: bool = False
	is_moderator: bool = False
	is_member: bool = False


class ConnectedEvent(BaseModel):
	"""First event on every subscriber stream."""

	video_id: str
	subscribers: int
	heartbeat_interval_seconds: float
	idle_timeout_seconds: float


class RosterUpdateEvent(BaseModel):
	"""Point-in-time roster snapshot (filtered and ordered for this subscriber)."""

	video_id: str
	order: str
	count: int = Field(description="Commenters in this snapshot after filtering")
	total: int = Field(description="Commenters tracked for the video before filtering")
	is_full: bool
	commenters: List[CommenterModel]


class ChatMessageEvent(BaseModel):
	"""A newly routed chat message."""

	video_id: str
	message_id: str
	author_id: str
	display_name: str
	text: str = ""
	occurred_at: datetime
	is_owner: bool = False
	is_moderator: bool = False
	is_member: bool = False
	new_commenter: bool = Field(default=False, description="True when this message added the author to the roster")


class HeartbeatEvent(BaseModel):
	"""Keep-alive for idle connections."""

	video_id: str
	timestamp: datetime


class SessionEndedEvent(BaseModel):
	"""The monitoring session terminated; the stream closes after this event."""

	video_id: str
	reason: str = Field(description="ended, failed or cancelled")
	error: Optional[str] = None


class TimeoutEvent(BaseModel):
	"""This subscriber was closed (idle window elapsed or dropped as a slow consumer)."""

	video_id: str
	reason: str = Field(description="idle or slow_consumer")
	idle_timeout_seconds: Optional[float] = None
