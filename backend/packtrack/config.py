# backend/packtrack/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/packtrack.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///packtrack.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Scan-only enforcement: reject manual keystrokes and paste on scan fields.
    # Timing thresholds are policy (see ScanPolicy)
    SCAN_ONLY_ENFORCEMENT = _env_bool("SCAN_ONLY_ENFORCEMENT", True)
    SCAN_FAST_THRESHOLD_MS = int(os.environ.get("SCAN_FAST_THRESHOLD_MS", "15"))
    SCAN_SLOW_THRESHOLD_MS = int(os.environ.get("SCAN_SLOW_THRESHOLD_MS", "100"))
    SCAN_SLOW_STRIKES = int(os.environ.get("SCAN_SLOW_STRIKES", "2"))
    SCAN_MAX_AGE_MS = int(os.environ.get("SCAN_MAX_AGE_MS", "120000"))

    # Ticket counts must match exactly unless a tolerance is configured
    TICKET_VARIANCE_TOLERANCE = int(os.environ.get("TICKET_VARIANCE_TOLERANCE", "0"))

    # Cash variance needs review once it is over $5 and over 1% of expected
    CASH_VARIANCE_ABSOLUTE_CENTS = int(os.environ.get("CASH_VARIANCE_ABSOLUTE_CENTS", "500"))
    CASH_VARIANCE_PERCENT = float(os.environ.get("CASH_VARIANCE_PERCENT", "1.0"))

    BATCH_RECEIVE_LIMIT = int(os.environ.get("BATCH_RECEIVE_LIMIT", "100"))
