"""HTTP and WebSocket surface of the sync server."""
