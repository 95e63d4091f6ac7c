from pathlib import Path
import os
from dotenv import load_dotenv
from django.core.exceptions import ImproperlyConfigured

# -----------------------------------------------------
# Helpers
# -----------------------------------------------------
def env(name: str, default=None, *, required: bool = False):
    val = os.getenv(name, default)
    if required and (val is None or (isinstance(val, str) and val.strip() == "")):
        raise ImproperlyConfigured(f"Missing required environment variable: {name}")
    return val

def env_bool(name: str, default: bool = False) -> bool:
    return str(os.getenv(name, str(default))).lower() in {"1", "true", "yes", "on"}

def env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ImproperlyConfigured(f"Environment variable {name} must be an integer, got {raw!r}")

# -----------------------------------------------------
# Paths & basics
# -----------------------------------------------------
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")

DEBUG = env_bool("DEBUG", False)

# In production (DEBUG=False) you must set a strong secret in .env
SECRET_KEY = env("DJANGO_SECRET_KEY", "dev-only-secret-key-change-me", required=not DEBUG)

# Keep hosts explicit by default
ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "127.0.0.1,localhost").split(",") if h.strip()]

# -----------------------------------------------------
# Applications
# -----------------------------------------------------
INSTALLED_APPS = [
    "django.contrib.auth",
    "django.contrib.contenttypes",

    # Third-party
    "rest_framework",

    # Local
    "jobs",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
]

ROOT_URLCONF = "ffmpeg_rest.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
            ],
        },
    },
]

WSGI_APPLICATION = "ffmpeg_rest.wsgi.application"

# -----------------------------------------------------
# Database (Postgres if DB_* env vars set, else SQLite)
# -----------------------------------------------------
if os.getenv("DB_HOST"):
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": env("DB_NAME", "ffmpeg_rest"),
            "USER": env("DB_USER", "ffmpeg_rest"),
            "PASSWORD": env("DB_PASSWORD", ""),
            "HOST": env("DB_HOST", "127.0.0.1"),
            "PORT": env("DB_PORT", "5432"),
            "CONN_MAX_AGE": int(env("DB_CONN_MAX_AGE", "60")),  # keep-alive
            "OPTIONS": {
                **({"sslmode": os.getenv("DB_SSLMODE")} if os.getenv("DB_SSLMODE") else {})
            },
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": BASE_DIR / "db.sqlite3",
        }
    }

# -----------------------------------------------------
# Internationalization
# -----------------------------------------------------
LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

# -----------------------------------------------------
# Media: staged uploads and produced artifacts
# -----------------------------------------------------
MEDIA_ROOT = Path(env("MEDIA_ROOT", str(BASE_DIR / "media")))
UPLOAD_MAX_MB = env_int("UPLOAD_MAX_MB", 1024)
FILE_UPLOAD_MAX_MEMORY_SIZE = 10 * 1024 * 1024
DATA_UPLOAD_MAX_MEMORY_SIZE = UPLOAD_MAX_MB * 1024 * 1024

# -----------------------------------------------------
# Django REST Framework
# -----------------------------------------------------
REST_FRAMEWORK = {
    "DEFAULT_RENDERER_CLASSES": [
        "rest_framework.renderers.JSONRenderer",
    ],
    "DEFAULT_PARSER_CLASSES": [
        "rest_framework.parsers.JSONParser",
        "rest_framework.parsers.FormParser",
        "rest_framework.parsers.MultiPartParser",
    ],
    "UNAUTHENTICATED_USER": None,
}

# -----------------------------------------------------
# Logging
# -----------------------------------------------------
LOG_LEVEL = env("LOG_LEVEL", "INFO").upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "plain": {
            "format": "%(asctime)s %(levelname)s %(name)s - %(message)s",
            "datefmt": "%Y-%m-%dT%H:%M:%S%z",
        },
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "plain"},
    },
    "root": {"handlers": ["console"], "level": LOG_LEVEL},
    "loggers": {
        "botocore": {"level": "WARNING"},
        "urllib3": {"level": "WARNING"},
    },
}

# -----------------------------------------------------
# Job queue & worker pool
# -----------------------------------------------------
WORKER_CONCURRENCY = env_int("WORKER_CONCURRENCY", 5)
JOB_MAX_ATTEMPTS = env_int("JOB_MAX_ATTEMPTS", 3)
JOB_BACKOFF_DELAY_MS = env_int("JOB_BACKOFF_DELAY_MS", 2000)

# ffmpeg/ffprobe calls are killed after this many seconds
EXECUTOR_TIMEOUT_SECONDS = env_int("EXECUTOR_TIMEOUT_SECONDS", 60 * 30)
# an active job without a heartbeat for this long belongs to a dead worker
JOB_LEASE_SECONDS = env_int("JOB_LEASE_SECONDS", EXECUTOR_TIMEOUT_SECONDS + 300)

COMPLETED_JOB_RETENTION_SECONDS = env_int("COMPLETED_JOB_RETENTION_SECONDS", 3600)
COMPLETED_JOB_KEEP = env_int("COMPLETED_JOB_KEEP", 100)
FAILED_JOB_RETENTION_SECONDS = env_int("FAILED_JOB_RETENTION_SECONDS", 24 * 3600)
FAILED_JOB_KEEP = env_int("FAILED_JOB_KEEP", 50)

if WORKER_CONCURRENCY < 1:
    raise ImproperlyConfigured("WORKER_CONCURRENCY must be at least 1")
if JOB_MAX_ATTEMPTS < 1:
    raise ImproperlyConfigured("JOB_MAX_ATTEMPTS must be at least 1")

# -----------------------------------------------------
# Celery / Redis
# -----------------------------------------------------
REDIS_URL = env("REDIS_URL", "redis://127.0.0.1:6379/0")
CELERY_BROKER_URL = env("CELERY_BROKER_URL", REDIS_URL)
CELERY_TASK_IGNORE_RESULT = True
CELERY_TASK_ACKS_LATE = True
CELERY_TASK_REJECT_ON_WORKER_LOST = True
CELERY_WORKER_PREFETCH_MULTIPLIER = 1
CELERY_WORKER_CONCURRENCY = WORKER_CONCURRENCY
CELERY_TASK_TIME_LIMIT = int(env("CELERY_TASK_TIME_LIMIT", str(EXECUTOR_TIMEOUT_SECONDS * 4)))  # seconds
CELERY_BEAT_SCHEDULE = {
    "requeue-stale-jobs": {
        "task": "jobs.tasks.requeue_stale_jobs",
        "schedule": 60.0,
    },
    "purge-expired-jobs": {
        "task": "jobs.tasks.purge_expired_jobs",
        "schedule": 300.0,
    },
}

# -----------------------------------------------------
# Default PK type
# -----------------------------------------------------
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# -----------------------------------------------------
# Result storage: "stateless" keeps artifacts on local disk,
# "s3" uploads them to S3/R2/MinIO and hands out URLs
# -----------------------------------------------------
STORAGE_MODE = env("STORAGE_MODE", "stateless").strip().lower()
if STORAGE_MODE == "object-storage":
    STORAGE_MODE = "s3"
if STORAGE_MODE not in {"stateless", "s3"}:
    raise ImproperlyConfigured(f"STORAGE_MODE must be 'stateless' or 's3', got {STORAGE_MODE!r}")

S3_ENDPOINT_URL = os.getenv("S3_ENDPOINT")
S3_REGION = os.getenv("S3_REGION", "auto")
S3_BUCKET = os.getenv("S3_BUCKET")
S3_ACCESS_KEY = os.getenv("S3_ACCESS_KEY_ID")          # set in .env for s3 mode
S3_SECRET_KEY = os.getenv("S3_SECRET_ACCESS_KEY")      # set in .env for s3 mode
S3_PUBLIC_URL = os.getenv("S3_PUBLIC_URL")
S3_PATH_PREFIX = os.getenv("S3_PATH_PREFIX", "ffmpeg-rest")

if STORAGE_MODE == "s3":
    _missing = [
        name
        for name in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY")
        if not (os.getenv(name) or "").strip()
    ]
    if _missing:
        raise ImproperlyConfigured(
            f"S3 mode is enabled but missing required environment variables: {', '.join(_missing)}"
        )
