"""Celery beat schedule configuration."""
from __future__ import annotations

from core.settings import payment_settings

CELERY_BEAT_SCHEDULE = {
    "expire-stale-drafts": {
        "task": "payments.expire_stale_drafts",
        "schedule": payment_settings.drafts.cleanup_interval_seconds,
    },
}
