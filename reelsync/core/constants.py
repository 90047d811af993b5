"""Core constants: query key roots and wire-protocol literals.

Query key roots double as the GET paths of the external read layer, so a
key like ("/api/projects", "p1", "comments") maps to /api/projects/p1/comments.
"""

# Query key roots (first key segment)
KEY_PROJECTS = "/api/projects"
KEY_METRICS = "/api/metrics"
KEY_NOTES = "/api/notes"

# Sub-resource segments under a project key
SUBKEY_COMMENTS = "comments"
SUBKEY_LOGS = "logs"
SUBKEY_MUSIC = "music"
SUBKEY_VOICES = "voices"

# Wire protocol
SOCKET_PATH = "/socket.io"
TRANSPORT_WEBSOCKET = "websocket"
EVENT_PING = "ping"
EVENT_PONG = "pong"
EVENT_CONNECTED = "connected"

# Close code used when the session token is missing or invalid
WS_POLICY_VIOLATION = 1008

# Payload field carrying the parent project id on child resources
PARENT_PROJECT_FIELD = "projectId"
