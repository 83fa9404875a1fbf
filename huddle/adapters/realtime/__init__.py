"""Live connection tracking and the WebSocket transport."""
