"""Centralized configuration: all env vars in one place."""
import os
import logging
from dotenv import load_dotenv

load_dotenv()

# --- Server ---
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3000"))
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "")

# --- Rate Limiting ---
RATE_LIMIT_WINDOW = 60  # seconds
RATE_LIMIT_MAX_REQUESTS = 10  # max HTTP room creations per window per IP

# --- WebSocket Security ---
WS_RATE_LIMIT_PER_SEC = 10
MAX_WS_MESSAGE_SIZE = 4096  # bytes

# --- Storage Limits ---
MAX_ROOMS = int(os.getenv("MAX_ROOMS", "50"))
ROOM_TTL_SECONDS = int(os.getenv("ROOM_TTL_SECONDS", "3600"))
MAX_ROOM_CODE_ATTEMPTS = 10
ROOM_CODE_LENGTH = 6
ROOM_CODE_CHARS = "ABCDEFGHJKLMNPQRSTUVWXYZ123456789"  # no 0 or O

# --- Cards ---
CARDS_DIR = os.getenv("CARDS_DIR", ".")
HAND_SIZE = 10
MAX_CUSTOM_TEXT_LENGTH = 100

# --- Game ---
MIN_PLAYERS = 3
WIN_POINTS = int(os.getenv("WIN_POINTS", "10"))
MAX_NAME_LENGTH = 15

# --- Timers (seconds) ---
TICK_SECONDS = 1.0
COUNTDOWN_SECONDS = int(os.getenv("COUNTDOWN_SECONDS", "15"))
RECONNECT_SECONDS = int(os.getenv("RECONNECT_SECONDS", "60"))
SUBMIT_SECONDS = int(os.getenv("SUBMIT_SECONDS", "45"))
JUDGE_SECONDS = int(os.getenv("JUDGE_SECONDS", "45"))
ROUND_RESULT_DELAY = float(os.getenv("ROUND_RESULT_DELAY", "3.5"))

# --- Reconnection ---
# Fall back to case-insensitive name matching when the session token is unknown.
ALLOW_NAME_RECONNECT = os.getenv("ALLOW_NAME_RECONNECT", "true").lower() in ("1", "true", "yes")

# --- Logging ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("LOG_FILE", "")


def setup_logging():
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if LOG_FILE:
        handlers.append(logging.FileHandler(LOG_FILE))
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )
