"""Infrastructure: Redis fan-out and token verification."""
