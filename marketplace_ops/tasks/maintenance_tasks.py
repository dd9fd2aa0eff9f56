"""
Maintenance background tasks.

Per-record tasks are meant to be enqueued by application event handlers
(a message was sent, a review was written, a booking completed). The sweep
tasks re-run the same work over every record and are safe to repeat.
"""

from typing import Any

from celery import shared_task

from marketplace_ops.core.config import settings
from marketplace_ops.core.errors import TransientStoreError
from marketplace_ops.core.logging import logger
from marketplace_ops.services.batch import run_batch
from marketplace_ops.services.conversation_reconciler import ConversationReconciler
from marketplace_ops.services.provider_stats import ProviderStatsAggregator
from marketplace_ops.store import get_record_store


@shared_task(
    autoretry_for=(TransientStoreError,),
    retry_backoff=True,
    retry_backoff_max=60,
    retry_jitter=False,
    max_retries=settings.RETRY_MAX_ATTEMPTS,
)
def reconcile_conversation(conversation_id: str) -> dict[str, Any]:
    """
    Repair the participant list of one conversation.
    """
    logger.info(
        {
            "event_type": "task_execution",
            "event_name": "reconcile_conversation_start",
            "conversation_id": conversation_id,
        }
    )
    result = ConversationReconciler(get_record_store()).reconcile_by_id(conversation_id)
    return {
        "success": True,
        "conversation_id": conversation_id,
        "changed": result.changed,
        "added": result.added,
    }


@shared_task(
    autoretry_for=(TransientStoreError,),
    retry_backoff=True,
    retry_backoff_max=60,
    retry_jitter=False,
    max_retries=settings.RETRY_MAX_ATTEMPTS,
)
def recompute_provider_stats(provider_id: str) -> dict[str, Any]:
    """
    Rebuild one provider's reputation fields.
    """
    logger.info(
        {
            "event_type": "task_execution",
            "event_name": "recompute_provider_stats_start",
            "provider_id": provider_id,
        }
    )
    stats = ProviderStatsAggregator(get_record_store()).recompute(provider_id)
    return {"success": True, **stats.model_dump()}


@shared_task
def reconcile_all_conversations() -> dict[str, Any]:
    """
    Periodic sweep over every conversation.
    """
    reconciler = ConversationReconciler(get_record_store())
    report = run_batch(
        "reconcile_conversations",
        reconciler.all_conversations(),
        reconciler.reconcile,
        max_workers=settings.BATCH_MAX_WORKERS,
    )
    return {
        "success": report.failed == 0,
        **report.summary(),
        "failed_ids": [o.record_id for o in report.failures],
    }


@shared_task
def recompute_all_provider_stats() -> dict[str, Any]:
    """
    Periodic sweep over every provider.
    """
    aggregator = ProviderStatsAggregator(get_record_store())
    report = run_batch(
        "provider_stats",
        aggregator.provider_ids(),
        aggregator.recompute,
        max_workers=settings.BATCH_MAX_WORKERS,
    )
    return {
        "success": report.failed == 0,
        **report.summary(),
        "failed_ids": [o.record_id for o in report.failures],
    }
