import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent.parent

DB_PATH = os.getenv("POMOTRACK_DB_PATH", str(BASE_DIR / "data" / "pomotrack.db"))
HOST = os.getenv("POMOTRACK_HOST", "0.0.0.0")
PORT = int(os.getenv("POMOTRACK_PORT", "8000"))
LOG_LEVEL = os.getenv("POMOTRACK_LOG_LEVEL", "INFO")

# Phase durations (minutes)
DEFAULT_FOCUS_MINUTES = int(os.getenv("POMOTRACK_FOCUS_MINUTES", "35"))
DEFAULT_BREAK_MINUTES = int(os.getenv("POMOTRACK_BREAK_MINUTES", "8"))
DEFAULT_LONG_BREAK_MINUTES = int(os.getenv("POMOTRACK_LONG_BREAK_MINUTES", "20"))
MAX_FOCUS_MINUTES = int(os.getenv("POMOTRACK_MAX_FOCUS_MINUTES", "120"))
MAX_BREAK_MINUTES = int(os.getenv("POMOTRACK_MAX_BREAK_MINUTES", "60"))
MAX_LONG_BREAK_MINUTES = int(os.getenv("POMOTRACK_MAX_LONG_BREAK_MINUTES", "120"))
DEFAULT_THEME_COLOR = os.getenv("POMOTRACK_THEME_COLOR", "#ff6b6b")

# Seconds since the last sign-in within which destructive account operations are allowed
REAUTH_WINDOW_SECONDS = int(os.getenv("POMOTRACK_REAUTH_WINDOW_SECONDS", "300"))

CYCLES_BEFORE_LONG_BREAK = 4

CATEGORIES = (
    "maths",
    "physics",
    "chemistry",
    "programming",
    "languages",
    "history",
    "other",
)
