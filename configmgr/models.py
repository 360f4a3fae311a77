import logging

from django.conf import settings
from django.db import models

logger = logging.getLogger(__name__)


class SystemSetting(models.Model):
    """
    Simple key/value settings store for runtime overrides.
    Example keys:
      - THERAPIST_SOFT_LIMIT (e.g., '5')
      - MAX_BOOKING_DURATION_MINUTES (e.g., '1440')
    Missing or malformed rows fall back to the Django setting of the same name.
    """
    key = models.CharField(max_length=100, unique=True)
    value = models.CharField(max_length=200)

    def __str__(self):
        return f"{self.key}={self.value}"

    @classmethod
    def get_int(cls, key: str, default: int = None) -> int:
        fallback = getattr(settings, key, default)
        row = cls.objects.filter(key=key).first()
        if row is None:
            return fallback
        try:
            return int(row.value)
        except (TypeError, ValueError):
            logger.warning("SystemSetting %s=%r is not an integer; using %r", key, row.value, fallback)
            return fallback
