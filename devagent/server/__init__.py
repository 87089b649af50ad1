"""HTTP + WebSocket front end."""
