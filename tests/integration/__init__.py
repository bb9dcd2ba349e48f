"""
Integration tests for the chatwatch service.

These tests drive the FastAPI app in-process:
- HTTP endpoints through httpx.ASGITransport
- WebSocket streams through FastAPI's TestClient
- The chat source is always the scripted FakeChatSource (no network)
"""
