from collections.abc import Generator

import pytest

from marketplace_ops.core.retry import RetryPolicy
from tests.utils.memory_store import InMemoryRecordStore


@pytest.fixture(scope="function")
def store() -> Generator[InMemoryRecordStore, None, None]:
    yield InMemoryRecordStore()


@pytest.fixture(autouse=True)
def fast_retries(monkeypatch) -> None:
    """Keep backoff real but instant: no test should actually sleep."""
    monkeypatch.setattr("marketplace_ops.core.retry.time.sleep", lambda _: None)


@pytest.fixture
def retry_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, base_delay=0.01)
