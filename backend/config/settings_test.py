# config/settings_test.py - isolated settings for the test suite
import os

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("DJANGO_ENV", "test")
os.environ.setdefault("REDIS_URL", "")

from .settings import *  # noqa: E402,F401,F403

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "erp-tests",
    }
}

CELERY_TASK_ALWAYS_EAGER = True
CELERY_BROKER_URL = "memory://"

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

INVENTORY_STOCK_STORE = "row_lock"
INVENTORY_RESERVATION_POLICY = "strict"
INVENTORY_LEDGER_WRITE_ATTEMPTS = 3
