"""reelsync: push-based cache synchronization for the video-production tracker.

Server side: reelsync.main (FastAPI app factory). Client side: reelsync.client.
"""

__version__ = "1.0.0"
