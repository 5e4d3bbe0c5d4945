"""Environment-driven settings, one class per APP_ENV."""

from __future__ import annotations

import os
from datetime import timedelta
from typing import Dict, Type

from dotenv import load_dotenv
from sqlalchemy.engine.url import make_url

load_dotenv()


def _int(name: str, default: int) -> int:
    return int(os.environ.get(name, str(default)))


def _flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def engine_options_for(uri: str) -> dict:
    """pool_pre_ping everywhere; connect timeouts in each driver's own spelling."""
    backend = make_url(uri).get_backend_name()
    if backend == "sqlite":
        return {"pool_pre_ping": True, "connect_args": {"timeout": 30}}
    if backend in ("postgresql", "postgres"):
        return {
            "pool_pre_ping": True,
            "connect_args": {"connect_timeout": _int("DB_CONNECT_TIMEOUT_SECONDS", 10)},
        }
    return {"pool_pre_ping": True}


class BaseConfig:
    SECRET_KEY = os.environ.get("SECRET_KEY", "change-me")
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", "sqlite:///instance/homestay.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # API auth: bearer tokens only, issued by the parent identity service.
    JWT_SECRET_KEY = os.environ.get("JWT_SECRET_KEY", SECRET_KEY)
    JWT_TOKEN_LOCATION = ["headers"]
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(minutes=_int("JWT_ACCESS_MINUTES", 30))

    RATELIMIT_ENABLED = _flag("RATELIMIT_ENABLED", True)
    RATELIMIT_DEFAULT = os.environ.get("RATELIMIT_DEFAULT", "200/hour")
    RATELIMIT_STORAGE_URI = os.environ.get("REDIS_URL", "memory://")

    # Calendar providers
    GOOGLE_CLIENT_ID = os.environ.get("GOOGLE_CLIENT_ID", "")
    GOOGLE_CLIENT_SECRET = os.environ.get("GOOGLE_CLIENT_SECRET", "")
    PROVIDER_TIMEOUT_SECONDS = _int("PROVIDER_TIMEOUT_SECONDS", 30)
    SYNC_PAST_MONTHS = _int("SYNC_PAST_MONTHS", 6)
    SYNC_FUTURE_MONTHS = _int("SYNC_FUTURE_MONTHS", 12)
    ICS_MAX_BYTES = _int("ICS_MAX_BYTES", 5 * 1024 * 1024)
    ICS_MAX_EVENTS = _int("ICS_MAX_EVENTS", 5000)

    MAPPING_CONFLICT_RETRIES = _int("MAPPING_CONFLICT_RETRIES", 1)


class DevelopmentConfig(BaseConfig):
    DEBUG = True


class TestingConfig(BaseConfig):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.environ.get("TEST_DATABASE_URL", "sqlite:///instance/test.db")
    RATELIMIT_ENABLED = False
    JWT_SECRET_KEY = "testing-secret-key-with-enough-length-for-hs256"


class ProductionConfig(BaseConfig):
    DEBUG = False


config_by_name: Dict[str, Type[BaseConfig]] = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "ci": TestingConfig,
    "production": ProductionConfig,
}
