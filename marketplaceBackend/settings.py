"""
Django settings for marketplaceBackend project.

Values come from the environment with development defaults. The order engine's
transaction policy lives in ``ORDER_TRANSACTIONS``.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def env_bool(name, default=False):
    return os.environ.get(name, str(default)).lower() in ("1", "true", "yes", "on")


SECRET_KEY = os.environ.get("SECRET_KEY")
if not SECRET_KEY:
    raise ValueError("SECRET_KEY environment variable is required")

DEBUG = env_bool("DEBUG", False)

ALLOWED_HOSTS = [host.strip() for host in os.environ.get("ALLOWED_HOSTS", "localhost,127.0.0.1").split(",") if host]

INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "django.contrib.auth",
    "rest_framework",
    "marketplace",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
]

# Database
DB_ENGINE = os.environ.get("DB_ENGINE", "sqlite").lower()

if DB_ENGINE == "postgresql":
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": os.environ.get("DB_NAME", "marketplace"),
            "USER": os.environ.get("DB_USER", "marketplace"),
            "PASSWORD": os.environ.get("DB_PASSWORD", ""),
            "HOST": os.environ.get("DB_HOST", "localhost"),
            "PORT": os.environ.get("DB_PORT", "5432"),
            "CONN_MAX_AGE": int(os.environ.get("DB_CONN_MAX_AGE", "60")),
        }
    }
elif DB_ENGINE == "mysql":
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.mysql",
            "NAME": os.environ.get("DB_NAME", "marketplace"),
            "USER": os.environ.get("DB_USER", "marketplace"),
            "PASSWORD": os.environ.get("DB_PASSWORD", ""),
            "HOST": os.environ.get("DB_HOST", "localhost"),
            "PORT": os.environ.get("DB_PORT", "3306"),
            "CONN_MAX_AGE": int(os.environ.get("DB_CONN_MAX_AGE", "60")),
            "OPTIONS": {
                "charset": "utf8mb4",
                "init_command": "SET sql_mode='STRICT_TRANS_TABLES'",
            },
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": os.environ.get("DB_NAME", str(BASE_DIR / "db.sqlite3")),
            "OPTIONS": {
                "timeout": 20,
                "transaction_mode": "IMMEDIATE",
            },
        }
    }

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

REST_FRAMEWORK = {
    "COERCE_DECIMAL_TO_STRING": True,
}

# Order engine transaction policy (delays in milliseconds, timeout in seconds)
ORDER_TRANSACTIONS = {
    "MAX_RETRIES": int(os.environ.get("ORDER_TX_MAX_RETRIES", "3")),
    "INITIAL_DELAY_MS": int(os.environ.get("ORDER_TX_INITIAL_DELAY_MS", "100")),
    "MAX_DELAY_MS": int(os.environ.get("ORDER_TX_MAX_DELAY_MS", "3000")),
    "JITTER_MS": int(os.environ.get("ORDER_TX_JITTER_MS", "100")),
    "ISOLATION_LEVEL": os.environ.get("ORDER_TX_ISOLATION_LEVEL", "SERIALIZABLE"),
    "TIMEOUT_SECONDS": float(os.environ.get("ORDER_TX_TIMEOUT_SECONDS", "10")),
    "DATABASE": "default",
}

# Payment gateway
STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY", "")

# Observability
TRACING_ENABLED = env_bool("TRACING_ENABLED", False)
TRACING_SERVICE_NAME = os.environ.get("TRACING_SERVICE_NAME", "marketplace-orders")
TRACING_CONSOLE_EXPORT = env_bool("TRACING_CONSOLE_EXPORT", False)

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{levelname} {asctime} {name} {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "WARNING",
    },
    "loggers": {
        "marketplace": {
            "handlers": ["console"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
        "utils": {
            "handlers": ["console"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
    },
}
