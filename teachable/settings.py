"""
Django settings for the Teachable project.

Only what the JSON API needs: no database, no templates, no auth.
Engine hyperparameters are overridden through ``TEACHABLE_TRAINING``
(keys are ``training.config.TrainingConfig`` field names).
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get("TEACHABLE_SECRET_KEY", "dev-only-insecure-key")
DEBUG = os.environ.get("TEACHABLE_DEBUG", "1") == "1"
ALLOWED_HOSTS = os.environ.get("TEACHABLE_ALLOWED_HOSTS", "localhost,127.0.0.1").split(",")

INSTALLED_APPS = [
    "classifier",
]

MIDDLEWARE = [
    "django.middleware.common.CommonMiddleware",
]

ROOT_URLCONF = "teachable.urls"

DATABASES = {}

USE_TZ = True
TIME_ZONE = "UTC"

# Uploaded samples are decoded in memory, never written to disk.
FILE_UPLOAD_MAX_MEMORY_SIZE = 10 * 1024 * 1024
DATA_UPLOAD_MAX_MEMORY_SIZE = 10 * 1024 * 1024

# ── Engine ──────────────────────────────────────────────────────────────────

TEACHABLE_TRAINING = {
    "base_model": os.environ.get("TEACHABLE_BASE_MODEL", "mobilenet"),
}

# Load the feature extractor in the background when the app starts.
TEACHABLE_PRELOAD_EXTRACTOR = os.environ.get("TEACHABLE_PRELOAD", "0") == "1"

# ── Logging ─────────────────────────────────────────────────────────────────

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple": {"format": "%(asctime)s %(levelname)s %(name)s: %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "simple"},
    },
    "loggers": {
        "training": {"handlers": ["console"], "level": "INFO"},
        "classifier": {"handlers": ["console"], "level": "INFO"},
    },
}
