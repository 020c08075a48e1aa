"""Configuration constants for the Junior Savers web frontend."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from ..store import sanitize_app_id

load_dotenv()

RAW_APP_ID = os.environ.get("JUNIOR_SAVERS_APP_ID", "junior-savers-production-v3")
APP_ID = sanitize_app_id(RAW_APP_ID)
SQLITE_FILE_NAME = os.environ.get("JUNIOR_SAVERS_SQLITE", "junior_savers.db")
DATABASE_URL = os.environ.get("JUNIOR_SAVERS_DATABASE_URL", f"sqlite:///{SQLITE_FILE_NAME}")
SESSION_SECRET = os.environ.get("SESSION_SECRET", "change-this-session-secret")
SESSION_COOKIE_KEY = "junior_savers_session"
_LOG_PATH = os.environ.get("JUNIOR_SAVERS_LOG_PATH", "").strip()
LOG_PATH: Optional[Path] = Path(_LOG_PATH) if _LOG_PATH else None
MAX_SESSIONS = int(os.environ.get("JUNIOR_SAVERS_MAX_SESSIONS", "500"))
SESSION_IDLE_MINUTES = int(os.environ.get("JUNIOR_SAVERS_SESSION_IDLE_MINUTES", "30"))

__all__ = [
    "APP_ID",
    "DATABASE_URL",
    "LOG_PATH",
    "MAX_SESSIONS",
    "RAW_APP_ID",
    "SESSION_COOKIE_KEY",
    "SESSION_IDLE_MINUTES",
    "SESSION_SECRET",
    "SQLITE_FILE_NAME",
]
