"""
Environment driven settings
"""
import os

PORT = int(os.environ.get("PORT", 3000))
SERVER_HOST = os.environ.get("SERVER_HOST", "0.0.0.0")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

# Seconds an emptied room survives before it is deleted
CLEANUP_DELAY = float(os.environ.get("ROOMRELAY_CLEANUP_DELAY", 5.0))

DEFAULT_LIMIT = int(os.environ.get("ROOMRELAY_DEFAULT_LIMIT", 4))
MAX_LIMIT = int(os.environ.get("ROOMRELAY_MAX_LIMIT", 50))
DEFAULT_LANGUAGE = "Other"
DEFAULT_LEVEL = "Any"
PREVIEW_AVATARS = 3

DEV_SECRET = "roomrelay-development-secret-change-me"
SESSION_SECRET = os.environ.get("ROOMRELAY_SESSION_SECRET", DEV_SECRET)
SESSION_TTL = int(os.environ.get("ROOMRELAY_SESSION_TTL", 60 * 60))

RATE_LIMIT = int(os.environ.get("ROOMRELAY_RATE_LIMIT", 100))
HEARTBEAT = float(os.environ.get("ROOMRELAY_HEARTBEAT", 20.0))
