import json
import os
from pathlib import Path

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
DEV_MODE = os.getenv("DEV_MODE", "false").lower() == "true"
JWT_SECRET = os.getenv("JWT_SECRET", "")

_default_migrations = Path(__file__).resolve().parents[1] / "migrations"
MIGRATIONS_DIR = Path(os.getenv("MIGRATIONS_DIR", str(_default_migrations)))

ALLOWED_ORIGINS = [
    o.strip()
    for o in os.getenv("ALLOWED_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(",")
    if o.strip()
]

# Group sizing
DEFAULT_GROUP_SIZE = int(os.getenv("DEFAULT_GROUP_SIZE", "3"))
MIN_GROUP_SIZE = int(os.getenv("MIN_GROUP_SIZE", "2"))
MAX_GROUP_SIZE = int(os.getenv("MAX_GROUP_SIZE", "5"))
STALE_GROUP_MINUTES = int(os.getenv("STALE_GROUP_MINUTES", "5"))

# Freeze
DEFAULT_FREEZE_HOURS = float(os.getenv("DEFAULT_FREEZE_HOURS", "2"))
CHAT_FREEZE_FOLLOWS_CLOCK = os.getenv("CHAT_FREEZE_FOLLOWS_CLOCK", "false").lower() == "true"

# Moderation
AUTO_MUTE_MINUTES = int(os.getenv("AUTO_MUTE_MINUTES", "10"))
MAX_MESSAGE_LENGTH = int(os.getenv("MAX_MESSAGE_LENGTH", "5000"))
CLASSIFIER_URL = os.getenv("CLASSIFIER_URL", "")
CLASSIFIER_API_KEY = os.getenv("CLASSIFIER_API_KEY", "")
CLASSIFIER_MODEL = os.getenv("CLASSIFIER_MODEL", "google/gemini-2.5-flash-lite")
CLASSIFIER_TIMEOUT_SECONDS = float(os.getenv("CLASSIFIER_TIMEOUT_SECONDS", "4"))

DEFAULT_BLOCKED_TERMS: list[str] = [
    "fuck", "shit", "bitch", "piss", "dick", "cock",
    "pussy", "asshole", "bastard", "slut", "whore", "nigger", "faggot",
    "retard", "kill yourself", "kys", "nazi", "rape", "molest",
]
BLOCKED_TERMS: list[str] = list(DEFAULT_BLOCKED_TERMS)

if os.getenv("BLOCKED_TERMS_JSON"):
    try:
        _terms = json.loads(os.getenv("BLOCKED_TERMS_JSON", "[]"))
        if isinstance(_terms, list):
            BLOCKED_TERMS = [str(t).strip().lower() for t in _terms if str(t).strip()]
    except json.JSONDecodeError:
        pass

# Attendance
CHECK_IN_WINDOW_BEFORE_MINUTES = int(os.getenv("CHECK_IN_WINDOW_BEFORE_MINUTES", "30"))
CHECK_IN_WINDOW_AFTER_MINUTES = int(os.getenv("CHECK_IN_WINDOW_AFTER_MINUTES", "60"))

# Auth
ACCESS_TOKEN_TTL_MINUTES = int(os.getenv("ACCESS_TOKEN_TTL_MINUTES", "60"))
