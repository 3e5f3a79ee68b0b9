import os

# Listen address; PORT is the only setting meant to be overridden per deployment
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3000"))

HEARTBEAT_INTERVAL_SEC = 30.0
REAPER_INTERVAL_SEC = 30 * 60.0
SESSION_RETENTION_SEC = 2 * 60 * 60.0

# Largest WebSocket frame the server accepts, and so the largest artifact (100 MiB)
WS_MAX_SIZE = 100 * 1024 * 1024
