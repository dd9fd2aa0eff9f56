"""
Error taxonomy shared by the store adapter, the domain services and the CLI.
"""
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from marketplace_ops.services.batch import BatchReport


class StoreError(Exception):
    """Base class for record store failures."""


class NotFoundError(StoreError):
    def __init__(self, collection: str, doc_id: str):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"{collection}/{doc_id} not found")


class TransientStoreError(StoreError):
    """Network, timeout or availability failure. Safe to retry."""


class ConflictError(StoreError):
    """A conditional write found the record changed since it was read."""

    def __init__(self, collection: str, doc_id: str, field: str, expected, actual):
        self.collection = collection
        self.doc_id = doc_id
        self.field = field
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{collection}/{doc_id}: expected {field}={expected!r}, found {actual!r}"
        )


class InvalidTransitionError(Exception):
    def __init__(self, booking_id: str, current: str | None, target: str):
        self.booking_id = booking_id
        self.current = current
        self.target = target
        super().__init__(
            f"booking {booking_id}: cannot move from {current!r} to {target!r}"
        )


class PartialBatchFailure(Exception):
    def __init__(self, report: "BatchReport"):
        self.report = report
        super().__init__(
            f"{report.name}: {report.failed} of {report.total} records failed"
        )
