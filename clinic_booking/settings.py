# clinic_booking/settings.py
#
# Purpose:
# - Django settings for the clinic scheduling backend.
# - Everything deployment-specific is read from environment variables so the
#   same file works for local dev (SQLite) and production (PostgreSQL).
#
# Scheduling settings (bottom of file):
# - REFUND_POLICY_TIERS, THERAPIST_SOFT_LIMIT, MAX_BOOKING_DURATION_MINUTES,
#   PAYMENT_GATEWAY, DEFAULT_CURRENCY.
#   THERAPIST_SOFT_LIMIT and MAX_BOOKING_DURATION_MINUTES can also be
#   overridden at runtime through configmgr.SystemSetting.
#
import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def _env_bool(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "dev-only-insecure-key-change-me")
DEBUG = _env_bool("DJANGO_DEBUG", default=True)
ALLOWED_HOSTS = [h.strip() for h in os.environ.get("DJANGO_ALLOWED_HOSTS", "*").split(",") if h.strip()]

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "rest_framework",
    "booking",
    "staff",
    "configmgr",
    "notifications.apps.NotificationsConfig",
    "reports",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "clinic_booking.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

WSGI_APPLICATION = "clinic_booking.wsgi.application"

# -------------------------
# Database
# -------------------------
# PostgreSQL when DB_NAME is set (row locks for slot reservation),
# otherwise a local SQLite file. Tests use a file-backed SQLite database so
# concurrent booking tests get real write locking.
if os.environ.get("DB_NAME"):
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": os.environ["DB_NAME"],
            "USER": os.environ.get("DB_USER", ""),
            "PASSWORD": os.environ.get("DB_PASSWORD", ""),
            "HOST": os.environ.get("DB_HOST", "localhost"),
            "PORT": os.environ.get("DB_PORT", "5432"),
            "ATOMIC_REQUESTS": False,
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": BASE_DIR / "db.sqlite3",
            # IMMEDIATE: writers take the database lock at BEGIN, so slot
            # reservations queue behind each other instead of failing.
            "OPTIONS": {"timeout": 20, "transaction_mode": "IMMEDIATE"},
            "TEST": {"NAME": BASE_DIR / "test_db.sqlite3"},
        }
    }

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

AUTH_PASSWORD_VALIDATORS = [
    {"NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator"},
    {"NAME": "django.contrib.auth.password_validation.MinimumLengthValidator"},
]

# -------------------------
# Time zone
# -------------------------
# Rules and schedules are wall-clock times in the clinic's time zone;
# bookings are stored as absolute instants.
LANGUAGE_CODE = "en-us"
TIME_ZONE = os.environ.get("CLINIC_TIME_ZONE", "UTC")
USE_I18N = True
USE_TZ = True

STATIC_URL = "static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

# -------------------------
# REST framework
# -------------------------
REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "rest_framework.authentication.SessionAuthentication",
        "rest_framework.authentication.BasicAuthentication",
    ],
    "DEFAULT_PERMISSION_CLASSES": [
        "rest_framework.permissions.AllowAny",
    ],
}

# -------------------------
# Email (notifications app)
# -------------------------
EMAIL_BACKEND = os.environ.get("EMAIL_BACKEND", "django.core.mail.backends.console.EmailBackend")
EMAIL_HOST = os.environ.get("EMAIL_HOST", "localhost")
EMAIL_PORT = int(os.environ.get("EMAIL_PORT", "25"))
EMAIL_HOST_USER = os.environ.get("EMAIL_HOST_USER", "")
EMAIL_HOST_PASSWORD = os.environ.get("EMAIL_HOST_PASSWORD", "")
EMAIL_USE_TLS = _env_bool("EMAIL_USE_TLS")
DEFAULT_FROM_EMAIL = os.environ.get("DEFAULT_FROM_EMAIL", "bookings@clinic.local")
CLINIC_NAME = os.environ.get("CLINIC_NAME", "our clinic")
# Staff mailbox for cancellation alerts; empty disables them.
STAFF_ALERT_EMAIL = os.environ.get("STAFF_ALERT_EMAIL", EMAIL_HOST_USER)

# -------------------------
# Logging
# -------------------------
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "WARNING",
    },
    "loggers": {
        "booking": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "staff": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "notifications": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "reports": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
    },
}

# -------------------------
# Scheduling & payments
# -------------------------
# (minimum hours before the appointment, percent refunded), checked in order.
# Strictly greater than the threshold qualifies: exactly 24h falls in the 50% tier.
REFUND_POLICY_TIERS = [
    (24, 100),
    (12, 50),
]

# Secondary limit: concurrent bookings one therapist may hold at one start time.
THERAPIST_SOFT_LIMIT = int(os.environ.get("THERAPIST_SOFT_LIMIT", "5"))

# Bookings longer than this are treated as bad data in utilization reports.
MAX_BOOKING_DURATION_MINUTES = 24 * 60

PAYMENT_GATEWAY = os.environ.get(
    "PAYMENT_GATEWAY", "booking.services.payment_gateway.ManualPaymentGateway"
)
DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "CAD")
