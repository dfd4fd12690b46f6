# backend/marketplace/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///marketplace.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Bank gateway (client-credentials OAuth + operation charge API)
    BANK_OAUTH_URL = os.environ.get("BANK_OAUTH_URL", "https://epay-oauth.homebank.kz")
    BANK_API_URL = os.environ.get("BANK_API_URL", "https://epay-api.homebank.kz")
    BANK_CLIENT_ID = os.environ.get("BANK_CLIENT_ID", "")
    BANK_CLIENT_SECRET = os.environ.get("BANK_CLIENT_SECRET", "")
    BANK_TERMINAL_AUTH = os.environ.get("BANK_TERMINAL_AUTH", "")
    BANK_TIMEOUT_SECONDS = float(os.environ.get("BANK_TIMEOUT_SECONDS", "10"))
    BANK_TOKEN_CACHE = _env_bool("BANK_TOKEN_CACHE", False)

    # Whole authenticate + capture chain must finish inside this window
    SETTLEMENT_DEADLINE_SECONDS = float(os.environ.get("SETTLEMENT_DEADLINE_SECONDS", "25"))
    SETTLEMENT_LEASE_SECONDS = int(os.environ.get("SETTLEMENT_LEASE_SECONDS", "60"))

    CATALOG_SYNC_CHUNK_SIZE = int(os.environ.get("CATALOG_SYNC_CHUNK_SIZE", "500"))
