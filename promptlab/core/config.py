import os
import secrets
from dotenv import load_dotenv

# Load environment variables from .env file if it exists
load_dotenv()


def _get_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# Security Configuration
SESSION_SECRET = os.getenv("SESSION_SECRET", secrets.token_hex(32))
ORIGIN = os.getenv("ORIGIN", "http://localhost:8000")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# AI Collaborator
GEMINI_CMD = os.getenv("GEMINI_CMD", "gemini")
MODEL_NAME = os.getenv("MODEL_NAME", "gemini-2.5-flash")
FALLBACK_MODEL = os.getenv("FALLBACK_MODEL", "gemini-2.5-flash-lite")
AI_TIMEOUT_SECONDS = float(os.getenv("AI_TIMEOUT_SECONDS", "60"))

# Sessions
# A user may hold several interviews at once unless MULTI_SESSION is turned off,
# in which case starting a new interview drops the previous one.
MULTI_SESSION = _get_bool("MULTI_SESSION", True)
MAX_SESSIONS_PER_USER = int(os.getenv("MAX_SESSIONS_PER_USER", "0"))

# Push notifications
SSE_QUEUE_SIZE = int(os.getenv("SSE_QUEUE_SIZE", "100"))
SSE_KEEPALIVE_SECONDS = float(os.getenv("SSE_KEEPALIVE_SECONDS", "30"))
