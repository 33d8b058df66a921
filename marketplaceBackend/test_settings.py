import os

# Mock SECRET_KEY for tests BEFORE importing settings to bypass validation
os.environ.setdefault("SECRET_KEY", "django-insecure-test-key-for-unit-tests-only")

from .settings import *  # noqa: F403

# File-backed SQLite so threaded tests share one database. IMMEDIATE transactions
# take the write lock at BEGIN, which serializes concurrent checkouts.
DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": BASE_DIR / "db.sqlite3",  # noqa: F405
        "OPTIONS": {
            "timeout": 20,
            "transaction_mode": "IMMEDIATE",
        },
        "TEST": {
            "NAME": BASE_DIR / "test_db.sqlite3",  # noqa: F405
        },
    }
}

DEBUG = False

STRIPE_SECRET_KEY = "sk_test_mock_key"

TRACING_ENABLED = False

# Keep retry backoff short in tests
ORDER_TRANSACTIONS = {
    **ORDER_TRANSACTIONS,  # noqa: F405
    "INITIAL_DELAY_MS": 1,
    "MAX_DELAY_MS": 10,
    "JITTER_MS": 1,
}

LOGGING["loggers"]["marketplace"]["level"] = "DEBUG"  # noqa: F405
LOGGING["loggers"]["utils"]["level"] = "DEBUG"  # noqa: F405

# Fast password hashing for user factories
PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]
