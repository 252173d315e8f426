# backend/sportify/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/sportify.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///sportify.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Callable(message: dict) used to email suppliers about low stock.
    # None falls back to the logging sender in notification_service.
    LOW_STOCK_EMAIL_SENDER = None

    # Dispatch low-stock alerts right after the stock mutation commits.
    # The daily CLI job drains whatever is left PENDING.
    DISPATCH_ALERTS_INLINE = os.environ.get("DISPATCH_ALERTS_INLINE", "true").lower() == "true"

    # Browser origins allowed to call the API directly (comma separated)
    CORS_ORIGINS = [
        o.strip()
        for o in os.environ.get("CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(",")
        if o.strip()
    ]
