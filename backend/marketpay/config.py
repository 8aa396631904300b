# backend/marketpay/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/marketpay.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///marketpay.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Payment window: a transaction not verified within this many hours expires
    TRANSACTION_TTL_HOURS = int(os.environ.get("TRANSACTION_TTL_HOURS", "48"))

    # Rejections must carry an auditable reason
    REJECTION_REASON_MIN_LENGTH = int(os.environ.get("REJECTION_REASON_MIN_LENGTH", "10"))

    CURRENCY = os.environ.get("CURRENCY", "RWF")

    # Push delivery endpoint (unset = log only)
    PUSH_SEND_URL = os.environ.get("PUSH_SEND_URL")
    PUSH_TIMEOUT_SECONDS = float(os.environ.get("PUSH_TIMEOUT_SECONDS", "10"))
    NOTIFICATION_WORKERS = int(os.environ.get("NOTIFICATION_WORKERS", "4"))
    # "thread" (fire-and-forget pool) or "inline" (same thread, still best-effort)
    NOTIFICATION_DISPATCH_MODE = os.environ.get("NOTIFICATION_DISPATCH_MODE", "thread")

    DB_RETRY_ATTEMPTS = int(os.environ.get("DB_RETRY_ATTEMPTS", "3"))

    # Browser origins allowed to call the API directly
    CORS_ALLOWED_ORIGINS = tuple(
        o.strip() for o in os.environ.get(
            "CORS_ALLOWED_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173"
        ).split(",") if o.strip()
    )
