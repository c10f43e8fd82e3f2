"""In-process document store used for local development and tests."""

from __future__ import annotations

import copy
from threading import Lock
from typing import Any

from exam_app.core.errors import ConflictError, NotFoundError
from exam_app.storage.document_store import BatchOperation, Document, DocumentStore


class InMemoryDocumentStore(DocumentStore):
    """Dictionary-backed store with Firestore-like collection paths."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._collections: dict[str, dict[str, Document]] = {}

    def get(self, collection: str, doc_id: str) -> Document | None:
        with self._lock:
            document = self._collections.get(collection, {}).get(doc_id)
            return copy.deepcopy(document) if document is not None else None

    def stream(self, collection: str) -> list[tuple[str, Document]]:
        with self._lock:
            documents = self._collections.get(collection, {})
            return [(doc_id, copy.deepcopy(data)) for doc_id, data in documents.items()]

    def query(self, collection: str, field_name: str, value: Any) -> list[tuple[str, Document]]:
        return [(doc_id, data) for doc_id, data in self.stream(collection) if data.get(field_name) == value]

    def create(self, collection: str, data: Document) -> str:
        doc_id = self.new_id(collection)
        self.set(collection, doc_id, data)
        return doc_id

    def set(self, collection: str, doc_id: str, data: Document) -> None:
        with self._lock:
            self._collections.setdefault(collection, {})[doc_id] = copy.deepcopy(data)

    def insert(self, collection: str, doc_id: str, data: Document) -> None:
        with self._lock:
            documents = self._collections.setdefault(collection, {})
            if doc_id in documents:
                raise ConflictError(f"Document {collection}/{doc_id} already exists.")
            documents[doc_id] = copy.deepcopy(data)

    def update(self, collection: str, doc_id: str, changes: Document) -> None:
        with self._lock:
            document = self._collections.get(collection, {}).get(doc_id)
            if document is None:
                raise NotFoundError(f"No document {collection}/{doc_id} to update.")
            document.update(copy.deepcopy(changes))

    def delete(self, collection: str, doc_id: str) -> None:
        with self._lock:
            self._collections.get(collection, {}).pop(doc_id, None)

    def commit_batch(self, operations: list[BatchOperation]) -> None:
        unknown = [op.action for op in operations if op.action not in ("set", "delete")]
        if unknown:
            raise ValueError(f"Unknown batch action {unknown[0]!r}")
        with self._lock:
            for operation in operations:
                documents = self._collections.setdefault(operation.collection, {})
                if operation.action == "set":
                    documents[operation.doc_id] = copy.deepcopy(operation.data or {})
                else:
                    documents.pop(operation.doc_id, None)

    def snapshot(self) -> dict[str, dict[str, Document]]:
        """Deep copy of every collection, for inspection in tests and tooling."""
        with self._lock:
            return copy.deepcopy(self._collections)
