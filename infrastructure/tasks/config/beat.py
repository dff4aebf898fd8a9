"""Celery beat schedule configuration.

Keeping the structure close to the Celery docs makes copying snippets
straightforward for new periodic jobs.
"""
from __future__ import annotations

from core.settings import payment_settings

CELERY_BEAT_SCHEDULE = {
    # Retry failed payments whose retry delay has elapsed
    "payments-process-scheduled-retries": {
        "task": "payments.process_scheduled_retries",
        "schedule": float(payment_settings.retries.sweep_interval_seconds),
        "options": {"queue": "high", "expires": payment_settings.retries.sweep_interval_seconds},
    },
}
