"""
Recompute provider reputation fields from bookings and reviews.

The fields on the user document are a cache. They are always rebuilt from the
source records, never adjusted by deltas, so re-running converges.
"""
from typing import Iterable

from marketplace_ops.booking_models import (
    BOOKINGS,
    REVIEWS,
    USERS,
    BookingStatus,
    ProviderStats,
    ReviewView,
    UserRole,
    round_half_away,
)
from marketplace_ops.core.logging import logger
from marketplace_ops.store import SERVER_TIMESTAMP, Document, RecordStore, where


def compute_stats(
    provider_id: str,
    bookings: Iterable[Document],
    reviews: Iterable[Document],
) -> ProviderStats:
    completed = sum(
        1 for b in bookings if b.get("status") == BookingStatus.COMPLETED.value
    )

    total_rating = 0.0
    review_count = 0
    for doc in reviews:
        review = ReviewView.model_validate({**doc.data, "id": doc.id})
        if review.counts_toward_rating:
            total_rating += review.rating
            review_count += 1

    average = total_rating / review_count if review_count > 0 else 0
    return ProviderStats(
        provider_id=provider_id,
        completed_jobs=completed,
        review_count=review_count,
        average_rating=round_half_away(average, 2),
    )


class ProviderStatsAggregator:
    def __init__(self, store: RecordStore):
        self.store = store

    def compute(self, provider_id: str) -> ProviderStats:
        completed_bookings = self.store.query(
            BOOKINGS,
            [
                where("providerId", "==", provider_id),
                where("status", "==", BookingStatus.COMPLETED.value),
            ],
        )
        reviews = self.store.query(REVIEWS, [where("providerId", "==", provider_id)])
        return compute_stats(provider_id, completed_bookings, reviews)

    def recompute(self, provider_id: str, dry_run: bool = False) -> ProviderStats:
        provider = self.store.get(USERS, provider_id)
        stats = self.compute(provider_id)
        stats.changed = any(
            provider.get(name) != value for name, value in stats.to_update().items()
        )

        logger.info(
            {
                "event_type": "provider_stats",
                "event_name": "stats_computed",
                "provider_id": provider_id,
                "completed_jobs": stats.completed_jobs,
                "review_count": stats.review_count,
                "average_rating": stats.average_rating,
                "changed": stats.changed,
                "dry_run": dry_run,
            }
        )
        if not dry_run:
            # one write carrying every alias keeps old and new readers in step
            self.store.update(USERS, provider_id, {**stats.to_update(), "updatedAt": SERVER_TIMESTAMP})
        return stats

    def provider_ids(self) -> list[str]:
        providers = self.store.query(USERS, [where("role", "==", UserRole.PROVIDER.value)])
        return [p.id for p in providers]
