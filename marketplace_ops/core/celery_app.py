"""
Celery application configuration for background maintenance tasks.
"""

from celery import Celery

from marketplace_ops.core.config import settings

celery_app = Celery(
    "marketplace_ops",
    broker=settings.celery_broker,
    backend=settings.celery_backend,
    include=["marketplace_ops.tasks.maintenance_tasks"],
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=60 * 30,  # full sweeps over large collections
    worker_prefetch_multiplier=1,
    result_expires=3600,  # 1 hour
)


def build_beat_schedule() -> dict:
    """Sweeps run on a timer only when explicitly enabled."""
    if not settings.PERIODIC_MAINTENANCE_ENABLED:
        return {}
    return {
        "reconcile-all-conversations": {
            "task": "marketplace_ops.tasks.maintenance_tasks.reconcile_all_conversations",
            "schedule": settings.MAINTENANCE_INTERVAL_SECONDS,
        },
        "recompute-all-provider-stats": {
            "task": "marketplace_ops.tasks.maintenance_tasks.recompute_all_provider_stats",
            "schedule": settings.MAINTENANCE_INTERVAL_SECONDS,
        },
    }


celery_app.conf.beat_schedule = build_beat_schedule()
