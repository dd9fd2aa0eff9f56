import copy
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from marketplace_ops.core.errors import ConflictError, NotFoundError, TransientStoreError
from marketplace_ops.store import (
    DELETE_FIELD,
    SERVER_TIMESTAMP,
    Document,
    Predicate,
    RecordStore,
)


class InMemoryRecordStore(RecordStore):
    """
    Dict-backed store with the same contract as FirestoreRecordStore.

    ``fail(op, collection, doc_id, times)`` makes the next ``times`` calls
    raise TransientStoreError; ``writes`` records every applied update.
    """

    def __init__(self):
        self.collections: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        self.subcollections: dict[tuple[str, str, str], dict[str, dict[str, Any]]] = defaultdict(dict)
        self.writes: list[tuple[str, str, dict[str, Any]]] = []
        self._failures: dict[tuple[str, str, str | None], int] = {}
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    # -- seeding helpers --

    def add(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        self.collections[collection][doc_id] = copy.deepcopy(dict(data))

    def add_sub(self, collection: str, doc_id: str, subcollection: str, sub_id: str, data: Mapping[str, Any]) -> None:
        self.subcollections[(collection, doc_id, subcollection)][sub_id] = copy.deepcopy(dict(data))

    def data(self, collection: str, doc_id: str) -> dict[str, Any]:
        return self.collections[collection][doc_id]

    def fail(self, op: str, collection: str, doc_id: str | None = None, times: int = 1) -> None:
        self._failures[(op, collection, doc_id)] = times

    def _maybe_fail(self, op: str, collection: str, doc_id: str | None) -> None:
        for key in ((op, collection, doc_id), (op, collection, None)):
            remaining = self._failures.get(key, 0)
            if remaining:
                self._failures[key] = remaining - 1
                raise TransientStoreError(f"injected {op} failure on {collection}/{doc_id}")

    # -- RecordStore --

    def get(self, collection: str, doc_id: str) -> Document:
        self._maybe_fail("get", collection, doc_id)
        docs = self.collections.get(collection, {})
        if doc_id not in docs:
            raise NotFoundError(collection, doc_id)
        return Document(doc_id, copy.deepcopy(docs[doc_id]))

    def query(self, collection: str, predicates: Iterable[Predicate] = ()) -> list[Document]:
        self._maybe_fail("query", collection, None)
        predicates = list(predicates)
        return [
            Document(doc_id, copy.deepcopy(data))
            for doc_id, data in self.collections.get(collection, {}).items()
            if all(self._matches(data, p) for p in predicates)
        ]

    @staticmethod
    def _matches(data: Mapping[str, Any], predicate: Predicate) -> bool:
        if predicate.field not in data:
            return False
        value = data[predicate.field]
        if predicate.op == "==":
            return value == predicate.value
        if predicate.op == "in":
            return value in predicate.value
        if predicate.op == "array_contains":
            return isinstance(value, list) and predicate.value in value
        raise ValueError(predicate.op)

    def _apply(self, data: dict[str, Any], field_updates: Mapping[str, Any]) -> None:
        for path, value in field_updates.items():
            parts = path.split(".")
            target = data
            for part in parts[:-1]:
                target = target.setdefault(part, {})
            if value is DELETE_FIELD:
                target.pop(parts[-1], None)
            elif value is SERVER_TIMESTAMP:
                target[parts[-1]] = self.now
            else:
                target[parts[-1]] = copy.deepcopy(value)

    def update(self, collection: str, doc_id: str, field_updates: Mapping[str, Any]) -> None:
        self._maybe_fail("update", collection, doc_id)
        docs = self.collections.get(collection, {})
        if doc_id not in docs:
            raise NotFoundError(collection, doc_id)
        self._apply(docs[doc_id], field_updates)
        self.writes.append((collection, doc_id, dict(field_updates)))

    def update_if(
        self,
        collection: str,
        doc_id: str,
        expected: Mapping[str, Any],
        field_updates: Mapping[str, Any],
    ) -> None:
        self._maybe_fail("update_if", collection, doc_id)
        docs = self.collections.get(collection, {})
        if doc_id not in docs:
            raise NotFoundError(collection, doc_id)
        current = docs[doc_id]
        for name, value in expected.items():
            if current.get(name) != value:
                raise ConflictError(collection, doc_id, name, value, current.get(name))
        self._apply(current, field_updates)
        self.writes.append((collection, doc_id, dict(field_updates)))

    def list_subcollection(self, collection: str, doc_id: str, subcollection: str) -> list[Document]:
        self._maybe_fail("list_subcollection", collection, doc_id)
        items = self.subcollections.get((collection, doc_id, subcollection), {})
        return [Document(sub_id, copy.deepcopy(data)) for sub_id, data in items.items()]
