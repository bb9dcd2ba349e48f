"""
Ingest layer: chat source port, YouTube Data API source, and the poll loop
"""

from .source import ChatMessage, ChatPage, ChatSource, RoleFlags
from .video_id import extract_video_id
from .youtube import YouTubeChatSource

__all__ = [
    "ChatMessage",
    "ChatPage",
    "ChatSource",
    "RoleFlags",
    "extract_video_id",
    "YouTubeChatSource",
]
