"""
PATH: backend/settings/base.py

BASE SETTINGS (shared by dev + prod)

Operational maturity:
- Typed env config via django-environ (optionally from .env)
- Console logging with a single LOG_LEVEL knob
- Sentry (optional): invariant violations are logged at CRITICAL and alert
- LEDGER dict: tuning for the posting engine, oracle, scheduler and runner
"""

from __future__ import annotations

import sys
from pathlib import Path

import environ

# -----------------------------------------
# BASE DIRECTORY
# -----------------------------------------
BASE_DIR = Path(__file__).resolve().parent.parent.parent

# -----------------------------------------
# TEST MODE DETECTION
# -----------------------------------------
TESTING = "test" in sys.argv or "pytest" in sys.modules

# -----------------------------------------
# ENV (django-environ)
# -----------------------------------------
env = environ.Env(
    DEBUG=(bool, True),
    SECRET_KEY=(str, ""),
    TIME_ZONE=(str, "UTC"),
    ALLOWED_HOSTS=(list, ["localhost", "127.0.0.1"]),
    DATABASE_URL=(str, f"sqlite:///{BASE_DIR / 'db.sqlite3'}"),
    LOG_LEVEL=(str, "INFO"),
    # Classification oracle (optional; disabled without an endpoint)
    CLASSIFIER_ENDPOINT=(str, ""),
    CLASSIFIER_API_KEY=(str, ""),
    CLASSIFIER_TIMEOUT_SECONDS=(float, 4.0),
    CLASSIFIER_PER_MINUTE=(int, 15),
    CLASSIFIER_PER_DAY=(int, 200),
    # Recurring scheduler
    RECURRING_TICK_SECONDS=(int, 60),
    RECURRING_RUN_LOG_LIMIT=(int, 20),
    # Depreciation runner
    DEPRECIATION_BATCH_LIMIT=(int, 50),
    # Sentry (optional; enable by setting SENTRY_DSN)
    SENTRY_DSN=(str, ""),
    SENTRY_ENVIRONMENT=(str, "development"),
    SENTRY_TRACES_SAMPLE_RATE=(float, 0.0),
    SENTRY_SEND_PII=(bool, False),
)

# -----------------------------------------
# LOAD .env
# -----------------------------------------
env_file_1 = BASE_DIR / ".env"
env_file_2 = BASE_DIR.parent / ".env"

if env_file_1.exists():
    env.read_env(str(env_file_1))
elif env_file_2.exists():
    env.read_env(str(env_file_2))

# -----------------------------------------
# CORE SECURITY
# -----------------------------------------
SECRET_KEY = (env("SECRET_KEY") or "dev-insecure-change-me").strip()
DEBUG = env.bool("DEBUG")
ALLOWED_HOSTS = env.list("ALLOWED_HOSTS")

# -----------------------------------------
# I18N / TZ
# -----------------------------------------
LANGUAGE_CODE = "en-us"
TIME_ZONE = (env("TIME_ZONE") or "UTC").strip()
USE_I18N = True
USE_TZ = True

# -----------------------------------------
# INSTALLED APPS
# -----------------------------------------
INSTALLED_APPS = [
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "rest_framework",
    "accounting.apps.AccountingConfig",
    "inventory.apps.InventoryConfig",
    "assets.apps.AssetsConfig",
    "recurring.apps.RecurringConfig",
]

# -----------------------------------------
# DATABASE
# -----------------------------------------
DATABASES = {
    "default": env.db("DATABASE_URL"),
}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# -----------------------------------------
# LOGGING
# -----------------------------------------
LOG_LEVEL = (env("LOG_LEVEL") or "INFO").strip().upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "plain": {
            "format": "%(asctime)s %(levelname)s %(name)s: %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "plain",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "WARNING",
    },
    "loggers": {
        app: {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False}
        for app in ("accounting", "inventory", "assets", "recurring")
    },
}

# -----------------------------------------
# LEDGER ENGINE
# -----------------------------------------
LEDGER = {
    "CLASSIFIER": {
        "ENDPOINT": (env("CLASSIFIER_ENDPOINT") or "").strip(),
        "API_KEY": (env("CLASSIFIER_API_KEY") or "").strip(),
        "TIMEOUT_SECONDS": env.float("CLASSIFIER_TIMEOUT_SECONDS"),
        "PER_MINUTE": env.int("CLASSIFIER_PER_MINUTE"),
        "PER_DAY": env.int("CLASSIFIER_PER_DAY"),
    },
    "RECURRING": {
        "TICK_SECONDS": env.int("RECURRING_TICK_SECONDS"),
        "RUN_LOG_LIMIT": env.int("RECURRING_RUN_LOG_LIMIT"),
    },
    "DEPRECIATION": {
        "BATCH_LIMIT": env.int("DEPRECIATION_BATCH_LIMIT"),
    },
}

# -----------------------------------------
# REST FRAMEWORK (serializers used as input validators only)
# -----------------------------------------
REST_FRAMEWORK = {
    "COERCE_DECIMAL_TO_STRING": False,
}

# -----------------------------------------
# SENTRY (optional)
# -----------------------------------------
SENTRY_DSN = (env("SENTRY_DSN") or "").strip()
SENTRY_ENVIRONMENT = (env("SENTRY_ENVIRONMENT") or "development").strip()
SENTRY_TRACES_SAMPLE_RATE = float(env("SENTRY_TRACES_SAMPLE_RATE"))
SENTRY_SEND_PII = env.bool("SENTRY_SEND_PII")

if SENTRY_DSN and not TESTING:
    import logging

    import sentry_sdk
    from sentry_sdk.integrations.django import DjangoIntegration
    from sentry_sdk.integrations.logging import LoggingIntegration

    sentry_sdk.init(
        dsn=SENTRY_DSN,
        environment=SENTRY_ENVIRONMENT,
        integrations=[
            DjangoIntegration(),
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
        ],
        traces_sample_rate=SENTRY_TRACES_SAMPLE_RATE,
        send_default_pii=SENTRY_SEND_PII,
    )
