# backend/stockledger/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/stockledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///stockledger.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Transaction retry budget for contended products
    STOCK_RETRY_ATTEMPTS = int(os.environ.get("STOCK_RETRY_ATTEMPTS", "3"))
    STOCK_RETRY_BACKOFF_SECONDS = float(os.environ.get("STOCK_RETRY_BACKOFF_SECONDS", "0.1"))

    # Stock history paging
    HISTORY_DEFAULT_LIMIT = int(os.environ.get("HISTORY_DEFAULT_LIMIT", "50"))
    HISTORY_MAX_LIMIT = int(os.environ.get("HISTORY_MAX_LIMIT", "500"))

    # Display clamp for stock trend percentages (storage is never clamped)
    STOCK_TREND_DISPLAY_LIMIT = float(os.environ.get("STOCK_TREND_DISPLAY_LIMIT", "100"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
