"""
Run one maintenance operation over many records.

Every record is isolated: a failure is logged and recorded, and the batch
moves on. Callers decide what a failed batch means via ``raise_for_failures``.
"""
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional, TypeVar

from marketplace_ops.core.errors import PartialBatchFailure
from marketplace_ops.core.logging import logger
from marketplace_ops.core.retry import RetryPolicy, retry_with_backoff

T = TypeVar("T")


@dataclass
class RecordOutcome:
    record_id: str
    ok: bool
    changed: bool = False
    result: Any = None
    error: Optional[str] = None


@dataclass
class BatchReport:
    name: str
    outcomes: list[RecordOutcome] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.ok)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.ok)

    @property
    def changed(self) -> int:
        return sum(1 for o in self.outcomes if o.ok and o.changed)

    @property
    def failures(self) -> list[RecordOutcome]:
        return [o for o in self.outcomes if not o.ok]

    def summary(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "total": self.total,
            "succeeded": self.succeeded,
            "changed": self.changed,
            "failed": self.failed,
        }

    def raise_for_failures(self) -> None:
        if self.failed:
            raise PartialBatchFailure(self)


def _default_key(item: Any) -> str:
    return str(getattr(item, "id", item))


def run_batch(
    name: str,
    items: Iterable[T],
    handler: Callable[[T], Any],
    key: Callable[[T], str] = _default_key,
    max_workers: int = 1,
    retry_policy: RetryPolicy | None = None,
    sleep: Callable[[float], None] | None = None,
) -> BatchReport:
    items = list(items)

    logger.info(
        {
            "event_type": "batch",
            "event_name": "batch_start",
            "batch": name,
            "record_count": len(items),
            "max_workers": max_workers,
        }
    )

    def process(item: T) -> RecordOutcome:
        record_id = key(item)
        try:
            result = retry_with_backoff(lambda: handler(item), policy=retry_policy, sleep=sleep)
        except Exception as e:
            logger.error(
                {
                    "event_type": "batch",
                    "event_name": "record_failed",
                    "batch": name,
                    "record_id": record_id,
                    "error_type": type(e).__name__,
                    "error": str(e),
                }
            )
            return RecordOutcome(record_id, ok=False, error=f"{type(e).__name__}: {e}")

        changed = bool(getattr(result, "changed", False))
        return RecordOutcome(record_id, ok=True, changed=changed, result=result)

    report = BatchReport(name)
    if max_workers > 1 and len(items) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            report.outcomes.extend(pool.map(process, items))
    else:
        report.outcomes.extend(process(item) for item in items)

    logger.info({"event_type": "batch", "event_name": "batch_complete", **report.summary()})
    return report
