"""Document store port and its in-memory implementation.

The Firestore adapter lives in :mod:`exam_app.storage.firestore_store`.
"""

from .document_store import BatchOperation, Document, DocumentStore, WriteBatch
from .memory_store import InMemoryDocumentStore

__all__ = [
    "BatchOperation",
    "Document",
    "DocumentStore",
    "InMemoryDocumentStore",
    "WriteBatch",
]
