"""Firestore-backed document store built on the Firebase Admin SDK."""

from __future__ import annotations

import logging
import os
from typing import Any

import firebase_admin
from firebase_admin import credentials, firestore
from google.api_core import exceptions as google_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud.firestore_v1.base_query import FieldFilter

from exam_app.core.errors import ConflictError, NotFoundError, PersistenceError
from exam_app.storage.document_store import BatchOperation, Document, DocumentStore

logger = logging.getLogger(__name__)

# Errors a Firestore call can raise: API errors, exhausted retries, credential refresh.
_STORE_ERRORS = (
    google_exceptions.GoogleAPICallError,
    google_exceptions.RetryError,
    auth_exceptions.GoogleAuthError,
)


def initialize_firebase_app(credentials_path: str | None) -> firebase_admin.App:
    """Initialize the default Firebase app once and return it.

    Without a credentials file the SDK falls back to application default
    credentials (``GOOGLE_APPLICATION_CREDENTIALS`` or the metadata server).
    """
    if firebase_admin._apps:
        return firebase_admin.get_app()

    if credentials_path:
        if not os.path.exists(credentials_path):
            raise PersistenceError(f"Firebase credentials file not found at {credentials_path}")
        logger.info("Initializing Firebase with credentials at %s", credentials_path)
        cred = credentials.Certificate(str(credentials_path))
    else:
        logger.info("Initializing Firebase with application default credentials")
        cred = credentials.ApplicationDefault()

    try:
        return firebase_admin.initialize_app(cred)
    except ValueError as exc:
        raise PersistenceError(f"Invalid Firebase credentials: {exc}") from exc


class FirestoreDocumentStore(DocumentStore):
    """Translates the store contract onto a Firestore client."""

    def __init__(self, client: Any) -> None:
        self._db = client

    @classmethod
    def from_credentials(cls, credentials_path: str | None) -> "FirestoreDocumentStore":
        app = initialize_firebase_app(credentials_path)
        logger.info("Connected to Firestore")
        return cls(firestore.client(app))

    def get(self, collection: str, doc_id: str) -> Document | None:
        try:
            snapshot = self._db.collection(collection).document(doc_id).get()
        except _STORE_ERRORS as exc:
            raise PersistenceError(f"Failed to read {collection}/{doc_id}: {exc}") from exc
        return snapshot.to_dict() if snapshot.exists else None

    def stream(self, collection: str) -> list[tuple[str, Document]]:
        try:
            return [(doc.id, doc.to_dict()) for doc in self._db.collection(collection).stream()]
        except _STORE_ERRORS as exc:
            raise PersistenceError(f"Failed to list {collection}: {exc}") from exc

    def query(self, collection: str, field_name: str, value: Any) -> list[tuple[str, Document]]:
        query = self._db.collection(collection).where(filter=FieldFilter(field_name, "==", value))
        try:
            return [(doc.id, doc.to_dict()) for doc in query.stream()]
        except _STORE_ERRORS as exc:
            raise PersistenceError(f"Failed to query {collection} on {field_name}: {exc}") from exc

    def new_id(self, collection: str) -> str:
        return self._db.collection(collection).document().id

    def create(self, collection: str, data: Document) -> str:
        reference = self._db.collection(collection).document()
        try:
            reference.set(data)
        except _STORE_ERRORS as exc:
            raise PersistenceError(f"Failed to create a document in {collection}: {exc}") from exc
        return reference.id

    def set(self, collection: str, doc_id: str, data: Document) -> None:
        try:
            self._db.collection(collection).document(doc_id).set(data)
        except _STORE_ERRORS as exc:
            raise PersistenceError(f"Failed to write {collection}/{doc_id}: {exc}") from exc

    def insert(self, collection: str, doc_id: str, data: Document) -> None:
        try:
            self._db.collection(collection).document(doc_id).create(data)
        except google_exceptions.AlreadyExists as exc:
            raise ConflictError(f"Document {collection}/{doc_id} already exists.") from exc
        except _STORE_ERRORS as exc:
            raise PersistenceError(f"Failed to create {collection}/{doc_id}: {exc}") from exc

    def update(self, collection: str, doc_id: str, changes: Document) -> None:
        try:
            self._db.collection(collection).document(doc_id).update(changes)
        except google_exceptions.NotFound as exc:
            raise NotFoundError(f"No document {collection}/{doc_id} to update.") from exc
        except _STORE_ERRORS as exc:
            raise PersistenceError(f"Failed to update {collection}/{doc_id}: {exc}") from exc

    def delete(self, collection: str, doc_id: str) -> None:
        try:
            self._db.collection(collection).document(doc_id).delete()
        except _STORE_ERRORS as exc:
            raise PersistenceError(f"Failed to delete {collection}/{doc_id}: {exc}") from exc

    def commit_batch(self, operations: list[BatchOperation]) -> None:
        batch = self._db.batch()
        for operation in operations:
            reference = self._db.collection(operation.collection).document(operation.doc_id)
            if operation.action == "set":
                batch.set(reference, operation.data or {})
            elif operation.action == "delete":
                batch.delete(reference)
            else:
                raise ValueError(f"Unknown batch action {operation.action!r}")
        try:
            batch.commit()
        except _STORE_ERRORS as exc:
            raise PersistenceError(f"Batch commit of {len(operations)} writes failed: {exc}") from exc
