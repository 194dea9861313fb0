"""
Django settings for the online market project.

Everything deployment-specific comes from environment variables; the defaults
give a local SQLite setup suitable for development and the test suite.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    return int(value)


SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "online-market-dev-key")

DEBUG = _env_bool("DJANGO_DEBUG", default=True)

ALLOWED_HOSTS = [
    host.strip()
    for host in os.environ.get("DJANGO_ALLOWED_HOSTS", "localhost,127.0.0.1").split(",")
    if host.strip()
]

INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "django.contrib.auth",
    "market",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
]

ROOT_URLCONF = "onlinemarket.urls"
WSGI_APPLICATION = "onlinemarket.wsgi.application"

# PostgreSQL when configured (row locks and lock timeouts), SQLite otherwise.
if os.environ.get("POSTGRES_DB"):
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": os.environ["POSTGRES_DB"],
            "USER": os.environ.get("POSTGRES_USER", "postgres"),
            "PASSWORD": os.environ.get("POSTGRES_PASSWORD", ""),
            "HOST": os.environ.get("POSTGRES_HOST", "localhost"),
            "PORT": os.environ.get("POSTGRES_PORT", "5432"),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": BASE_DIR / "db.sqlite3",
            # Writers take the database lock at BEGIN instead of on first write.
            "OPTIONS": {"transaction_mode": "IMMEDIATE"},
            # File-backed so concurrent connections share one database.
            "TEST": {"NAME": BASE_DIR / "test_db.sqlite3"},
        }
    }

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# ── Marketplace ──────────────────────────────────
MARKET_LOCK_TIMEOUT_MS = _env_int("MARKET_LOCK_TIMEOUT_MS", 2000)
MARKET_CONFLICT_RETRIES = _env_int("MARKET_CONFLICT_RETRIES", 2)
MARKET_LOW_STOCK_THRESHOLD = _env_int("MARKET_LOW_STOCK_THRESHOLD", 5)

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
        },
    },
    "loggers": {
        "market": {
            "handlers": ["console"],
            "level": os.environ.get("MARKET_LOG_LEVEL", "INFO"),
            "propagate": False,
        },
    },
}
