"""
Booking lifecycle transitions and the operator reset.
"""
from typing import Any

from marketplace_ops.booking_models import BOOKINGS, BookingStatus
from marketplace_ops.core.config import settings
from marketplace_ops.core.errors import ConflictError, InvalidTransitionError
from marketplace_ops.core.logging import logger
from marketplace_ops.store import DELETE_FIELD, SERVER_TIMESTAMP, RecordStore

S = BookingStatus

NON_TERMINAL = (S.PENDING, S.ACCEPTED, S.TRAVELING, S.ARRIVED, S.IN_PROGRESS)

FORWARD = {
    S.PENDING: S.ACCEPTED,
    S.ACCEPTED: S.TRAVELING,
    S.TRAVELING: S.ARRIVED,
    S.ARRIVED: S.IN_PROGRESS,
    S.IN_PROGRESS: S.COMPLETED,
    S.COMPLETED: S.PAYMENT_RECEIVED,
}


def _build_graph() -> dict[str, frozenset[str]]:
    graph: dict[str, set[str]] = {status.value: set() for status in S}
    for current, nxt in FORWARD.items():
        graph[current.value].add(nxt.value)
    for current in NON_TERMINAL:
        graph[current.value].update((S.CANCELLED.value, S.REJECTED.value))
    return {k: frozenset(v) for k, v in graph.items()}


TRANSITIONS = _build_graph()

# Timestamp stamped when a booking enters each status
PHASE_TIMESTAMPS = {
    S.ACCEPTED.value: "acceptedAt",
    S.TRAVELING.value: "travelingAt",
    S.ARRIVED.value: "arrivedAt",
    S.IN_PROGRESS.value: "startedAt",
    S.COMPLETED.value: "completedAt",
    S.CANCELLED.value: "cancelledAt",
    S.REJECTED.value: "rejectedAt",
    S.PAYMENT_RECEIVED.value: "paymentReceivedAt",
}

# Phase markers erased by a reset; presence means "phase reached"
RESET_CLEARED_FIELDS = ("acceptedAt", "travelingAt", "arrivedAt", "startedAt")


def allowed_transitions(status: str | None) -> frozenset[str]:
    """Statuses reachable in one step. Unknown statuses have no exits."""
    if status is None:
        return frozenset()
    return TRANSITIONS.get(str(status), frozenset())


def can_transition(current: str | None, target: str) -> bool:
    return target in allowed_transitions(current)


def transition_update(target: str) -> dict[str, Any]:
    return {
        "status": target,
        PHASE_TIMESTAMPS[target]: SERVER_TIMESTAMP,
        "updatedAt": SERVER_TIMESTAMP,
    }


def reset_update() -> dict[str, Any]:
    update: dict[str, Any] = {
        "status": S.PENDING.value,
        "adminApproved": True,
    }
    for name in RESET_CLEARED_FIELDS:
        update[name] = DELETE_FIELD
    update["updatedAt"] = SERVER_TIMESTAMP
    return update


class BookingStateMachine:
    def __init__(self, store: RecordStore, conflict_retries: int | None = None):
        self.store = store
        self.conflict_retries = (
            conflict_retries if conflict_retries is not None else settings.TRANSITION_CONFLICT_RETRIES
        )

    def transition(self, booking_id: str, target: str) -> str:
        """
        Move a booking to ``target`` and stamp the phase timestamp.

        The write is conditional on the status read just before it; if another
        writer got there first the booking is re-read and re-validated.
        Returns the status the booking moved from.
        """
        target = target.value if isinstance(target, BookingStatus) else str(target)

        attempt = 0
        while True:
            attempt += 1
            booking = self.store.get(BOOKINGS, booking_id)
            current = booking.get("status")

            if not can_transition(current, target):
                logger.warning(
                    {
                        "event_type": "booking_lifecycle",
                        "event_name": "invalid_transition",
                        "booking_id": booking_id,
                        "current_status": current,
                        "target_status": target,
                    }
                )
                raise InvalidTransitionError(booking_id, current, target)

            try:
                self.store.update_if(
                    BOOKINGS,
                    booking_id,
                    expected={"status": current},
                    field_updates=transition_update(target),
                )
            except ConflictError as e:
                logger.warning(
                    {
                        "event_type": "booking_lifecycle",
                        "event_name": "transition_conflict",
                        "booking_id": booking_id,
                        "expected_status": current,
                        "actual_status": e.actual,
                        "attempt": attempt,
                    }
                )
                if attempt >= self.conflict_retries:
                    raise
                continue

            logger.info(
                {
                    "event_type": "booking_lifecycle",
                    "event_name": "status_changed",
                    "booking_id": booking_id,
                    "from_status": current,
                    "to_status": target,
                }
            )
            return current

    def reset(self, booking_id: str) -> None:
        """
        Put a booking back to ``pending`` regardless of where it is.

        Operator tooling only. Phase timestamps are removed, not nulled, so
        presence checks read as "not reached yet".
        """
        self.store.update(BOOKINGS, booking_id, reset_update())
        logger.info(
            {
                "event_type": "booking_lifecycle",
                "event_name": "booking_reset",
                "booking_id": booking_id,
                "cleared_fields": list(RESET_CLEARED_FIELDS),
            }
        )
