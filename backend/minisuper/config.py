# backend/minisuper/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/minisuper.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///minisuper.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # BCV rate source (PyDolar). Fetched at most once per calendar day.
    EXCHANGE_RATE_API_URL = os.environ.get(
        "EXCHANGE_RATE_API_URL",
        "http://pydolarve.org/api/v1/dollar",
    )
    EXCHANGE_RATE_TIMEOUT = float(os.environ.get("EXCHANGE_RATE_TIMEOUT", "10"))

    # Batches expiring within this many days are flagged in stock summaries
    EXPIRY_WARNING_DAYS = int(os.environ.get("EXPIRY_WARNING_DAYS", "30"))

    # Store identity printed on receipt payloads
    STORE_NAME = os.environ.get("STORE_NAME", "Sistema POS Minisuper")
    STORE_ADDRESS = os.environ.get("STORE_ADDRESS", "")
    STORE_PHONE = os.environ.get("STORE_PHONE", "")
    STORE_RIF = os.environ.get("STORE_RIF", "")

    # bcrypt cost factor for password hashes (tests lower it)
    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))

    # Login session lifetime
    SESSION_ABSOLUTE_TIMEOUT_HOURS = int(os.environ.get("SESSION_ABSOLUTE_TIMEOUT_HOURS", "24"))
    SESSION_IDLE_TIMEOUT_MINUTES = int(os.environ.get("SESSION_IDLE_TIMEOUT_MINUTES", "120"))

    # Whole-transaction attempts for sale create/cancel
    SALE_RETRY_ATTEMPTS = int(os.environ.get("SALE_RETRY_ATTEMPTS", "3"))

    # Optional httpx transport for the rate fetch (tests inject httpx.MockTransport)
    EXCHANGE_RATE_TRANSPORT = None
