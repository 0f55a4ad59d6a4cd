# backend/poscore/config.py
from __future__ import annotations
import os


class Config:
    # SQLite DB stored next to the instance by default
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location (e.g. postgresql://...)
        "sqlite:///poscore.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Default tax policy: flat rate in basis points on the order subtotal
    TAX_RATE_BPS = int(os.environ.get("TAX_RATE_BPS", "0"))

    # Bounded lock wait and retry on concurrent modification
    LOCK_TIMEOUT_SECONDS = float(os.environ.get("LOCK_TIMEOUT_SECONDS", "5"))
    RETRY_ATTEMPTS = int(os.environ.get("RETRY_ATTEMPTS", "3"))
    RETRY_BACKOFF_BASE = float(os.environ.get("RETRY_BACKOFF_BASE", "0.05"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
