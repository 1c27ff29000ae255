# backend/labstore/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/labstore.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///labstore.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Bearer token for admin routes. Empty disables admin routes entirely.
    ADMIN_API_TOKEN = os.environ.get("ADMIN_API_TOKEN", "")

    # Kiosk unlock password (compared in constant time)
    KIOSK_PASSWORD = os.environ.get("KIOSK_PASSWORD", "admin")

    # Notifications
    SLACK_WEBHOOK_URL = os.environ.get("SLACK_WEBHOOK_URL", "")
    LOW_STOCK_THRESHOLD = _env_int("LOW_STOCK_THRESHOLD", 3)
    NOTIFY_TIMEOUT_SECONDS = _env_float("NOTIFY_TIMEOUT_SECONDS", 5.0)

    # Kiosk runtime
    CARD_READER_URL = os.environ.get("CARD_READER_URL", "http://localhost:5001")
    RECONNECT_DELAY_SECONDS = _env_float("RECONNECT_DELAY_SECONDS", 3.0)
    REALTIME_HEARTBEAT_SECONDS = _env_float("REALTIME_HEARTBEAT_SECONDS", 15.0)
