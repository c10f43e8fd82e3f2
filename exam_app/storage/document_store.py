"""Document store port used by every repository.

Collections are addressed by slash-separated paths (``"exams"``,
``"exams/<id>/questions"``) exactly as Firestore addresses them, so the same
repository code runs against the in-memory store and Firestore.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

Document = dict[str, Any]


@dataclass(slots=True)
class BatchOperation:
    """One staged write inside a :class:`WriteBatch`."""

    action: str  # "set" | "delete"
    collection: str
    doc_id: str
    data: Document | None = None


@dataclass(slots=True)
class WriteBatch:
    """Collects writes that the store applies all-or-nothing on commit."""

    store: "DocumentStore"
    operations: list[BatchOperation] = field(default_factory=list)
    committed: bool = False

    def set(self, collection: str, doc_id: str, data: Document) -> None:
        self._ensure_open()
        self.store.validate_staged_write(collection, doc_id, data)
        self.operations.append(BatchOperation("set", collection, doc_id, dict(data)))

    def delete(self, collection: str, doc_id: str) -> None:
        self._ensure_open()
        self.store.validate_staged_write(collection, doc_id, None)
        self.operations.append(BatchOperation("delete", collection, doc_id))

    def commit(self) -> None:
        self._ensure_open()
        self.store.commit_batch(self.operations)
        self.committed = True

    def __len__(self) -> int:
        return len(self.operations)

    def _ensure_open(self) -> None:
        if self.committed:
            raise RuntimeError("Batch has already been committed.")


class DocumentStore(ABC):
    """Minimal document database contract."""

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Document | None:
        """Return a copy of the document, or ``None`` when it does not exist."""

    @abstractmethod
    def stream(self, collection: str) -> list[tuple[str, Document]]:
        """Return ``(doc_id, data)`` pairs for every document in the collection."""

    @abstractmethod
    def query(self, collection: str, field_name: str, value: Any) -> list[tuple[str, Document]]:
        """Return documents whose ``field_name`` equals ``value``."""

    @abstractmethod
    def create(self, collection: str, data: Document) -> str:
        """Store ``data`` under a generated id and return that id."""

    @abstractmethod
    def set(self, collection: str, doc_id: str, data: Document) -> None:
        """Create or replace a document."""

    @abstractmethod
    def insert(self, collection: str, doc_id: str, data: Document) -> None:
        """Create a document under ``doc_id``; raise ``ConflictError`` if it already exists."""

    @abstractmethod
    def update(self, collection: str, doc_id: str, changes: Document) -> None:
        """Merge ``changes`` into an existing document."""

    @abstractmethod
    def delete(self, collection: str, doc_id: str) -> None:
        """Delete a document. Deleting a missing document is a no-op."""

    @abstractmethod
    def commit_batch(self, operations: list[BatchOperation]) -> None:
        """Apply staged operations atomically."""

    def new_id(self, collection: str) -> str:
        """Generate an unused document id without writing anything."""
        return uuid4().hex[:20]

    def exists(self, collection: str, doc_id: str) -> bool:
        return self.get(collection, doc_id) is not None

    def batch(self) -> WriteBatch:
        return WriteBatch(store=self)

    def validate_staged_write(self, collection: str, doc_id: str, data: Document | None) -> None:
        """Hook run while staging a batch write; raising aborts the batch."""
        if not doc_id:
            raise ValueError("Document id must not be empty.")
