"""
chatwatch - live chat commenter monitoring service
Polls YouTube live chats and fans the commenter roster out to connected viewers
"""

__version__ = "0.1.0"
