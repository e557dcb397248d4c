# backend/stockledger/config.py
from __future__ import annotations
import os
from decimal import Decimal


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/stockledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///stockledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Seconds a SQLite writer waits for the database lock before failing
    SQLITE_BUSY_TIMEOUT = float(os.environ.get("SQLITE_BUSY_TIMEOUT", "30"))

    # Upper bound for any document sequence counter
    SEQUENCE_MAX_VALUE = int(os.environ.get("SEQUENCE_MAX_VALUE", str(2**31 - 1)))

    # Drift above either threshold is flagged for investigation
    RECONCILIATION_VARIANCE_PCT = Decimal(os.environ.get("RECONCILIATION_VARIANCE_PCT", "5"))
    RECONCILIATION_VARIANCE_UNITS = Decimal(os.environ.get("RECONCILIATION_VARIANCE_UNITS", "10"))

    IDEMPOTENCY_KEY_RETENTION_HOURS = int(os.environ.get("IDEMPOTENCY_KEY_RETENTION_HOURS", "72"))
    IDEMPOTENCY_RETRY_ATTEMPTS = int(os.environ.get("IDEMPOTENCY_RETRY_ATTEMPTS", "3"))
