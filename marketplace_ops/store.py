"""
Record store adapter.

The domain services talk to the document store only through ``RecordStore``.
``FirestoreRecordStore`` is the production implementation on top of the
Firebase Admin SDK; tests use an in-memory double with the same contract.
"""
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from firebase_admin import firestore
from google.api_core import exceptions as google_exceptions
from google.cloud.firestore_v1.base_query import FieldFilter

from marketplace_ops.core.config import settings
from marketplace_ops.core.errors import (
    ConflictError,
    NotFoundError,
    TransientStoreError,
)
from marketplace_ops.core.logging import logger


class _Marker:
    def __init__(self, name: str):
        self.name = name

    def __repr__(self) -> str:
        return self.name


# Field update values with special meaning
DELETE_FIELD = _Marker("DELETE_FIELD")
SERVER_TIMESTAMP = _Marker("SERVER_TIMESTAMP")

QUERY_OPERATORS = ("==", "in", "array_contains")


@dataclass(frozen=True)
class Predicate:
    field: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in QUERY_OPERATORS:
            raise ValueError(f"unsupported query operator: {self.op!r}")


@dataclass
class Document:
    id: str
    data: dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)


def where(field_path: str, op: str, value: Any) -> Predicate:
    return Predicate(field_path, op, value)


class RecordStore:
    """Capabilities the maintenance jobs need from the document store."""

    def get(self, collection: str, doc_id: str) -> Document:
        raise NotImplementedError

    def query(self, collection: str, predicates: Iterable[Predicate] = ()) -> list[Document]:
        raise NotImplementedError

    def update(self, collection: str, doc_id: str, field_updates: Mapping[str, Any]) -> None:
        raise NotImplementedError

    def update_if(
        self,
        collection: str,
        doc_id: str,
        expected: Mapping[str, Any],
        field_updates: Mapping[str, Any],
    ) -> None:
        """Apply ``field_updates`` only if every ``expected`` field still matches."""
        raise NotImplementedError

    def list_subcollection(self, collection: str, doc_id: str, subcollection: str) -> list[Document]:
        raise NotImplementedError


# google.api_core errors that mean "try again later"
TRANSIENT_ERRORS = (
    google_exceptions.ServiceUnavailable,
    google_exceptions.DeadlineExceeded,
    google_exceptions.Aborted,
    google_exceptions.ResourceExhausted,
    google_exceptions.InternalServerError,
    google_exceptions.GatewayTimeout,
    google_exceptions.RetryError,
)


class FirestoreRecordStore(RecordStore):
    def __init__(self, client, timeout: float | None = None):
        self.client = client
        self.timeout = timeout if timeout is not None else settings.STORE_TIMEOUT_SECONDS

    def _call(self, operation: str, collection: str, doc_id: str | None, fn):
        try:
            return fn()
        except google_exceptions.NotFound as e:
            raise NotFoundError(collection, doc_id or "") from e
        except TRANSIENT_ERRORS as e:
            logger.warning(
                {
                    "event_type": "record_store",
                    "event_name": "transient_error",
                    "operation": operation,
                    "collection": collection,
                    "doc_id": doc_id,
                    "error_type": type(e).__name__,
                    "error": str(e),
                }
            )
            raise TransientStoreError(f"{operation} {collection}/{doc_id or '*'}: {e}") from e

    @staticmethod
    def _to_firestore_value(value: Any) -> Any:
        if value is DELETE_FIELD:
            return firestore.DELETE_FIELD
        if value is SERVER_TIMESTAMP:
            return firestore.SERVER_TIMESTAMP
        return value

    def _translate(self, field_updates: Mapping[str, Any]) -> dict[str, Any]:
        return {k: self._to_firestore_value(v) for k, v in field_updates.items()}

    @staticmethod
    def _document(snapshot) -> Document:
        return Document(id=snapshot.id, data=snapshot.to_dict() or {})

    def get(self, collection: str, doc_id: str) -> Document:
        ref = self.client.collection(collection).document(doc_id)
        snapshot = self._call("get", collection, doc_id, lambda: ref.get(timeout=self.timeout))
        if not snapshot.exists:
            raise NotFoundError(collection, doc_id)
        return self._document(snapshot)

    def query(self, collection: str, predicates: Iterable[Predicate] = ()) -> list[Document]:
        query = self.client.collection(collection)
        for predicate in predicates:
            query = query.where(filter=FieldFilter(predicate.field, predicate.op, predicate.value))

        snapshots = self._call("query", collection, None, lambda: query.get(timeout=self.timeout))
        return [self._document(s) for s in snapshots]

    def update(self, collection: str, doc_id: str, field_updates: Mapping[str, Any]) -> None:
        ref = self.client.collection(collection).document(doc_id)
        payload = self._translate(field_updates)
        self._call("update", collection, doc_id, lambda: ref.update(payload, timeout=self.timeout))

    def update_if(
        self,
        collection: str,
        doc_id: str,
        expected: Mapping[str, Any],
        field_updates: Mapping[str, Any],
    ) -> None:
        ref = self.client.collection(collection).document(doc_id)
        payload = self._translate(field_updates)

        @firestore.transactional
        def _apply(transaction):
            snapshot = ref.get(transaction=transaction, timeout=self.timeout)
            if not snapshot.exists:
                raise NotFoundError(collection, doc_id)
            current = snapshot.to_dict() or {}
            for name, value in expected.items():
                if current.get(name) != value:
                    raise ConflictError(collection, doc_id, name, value, current.get(name))
            transaction.update(ref, payload)

        self._call(
            "update_if",
            collection,
            doc_id,
            lambda: _apply(self.client.transaction()),
        )

    def list_subcollection(self, collection: str, doc_id: str, subcollection: str) -> list[Document]:
        ref = self.client.collection(collection).document(doc_id).collection(subcollection)
        snapshots = self._call(
            "list_subcollection",
            f"{collection}/{doc_id}/{subcollection}",
            None,
            lambda: ref.get(timeout=self.timeout),
        )
        return [self._document(s) for s in snapshots]


def get_record_store(cred_path: str | None = None) -> FirestoreRecordStore:
    from marketplace_ops.core.firebase_utils import get_firestore_client

    return FirestoreRecordStore(get_firestore_client(cred_path))
