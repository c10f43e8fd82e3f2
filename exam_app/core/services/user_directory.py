"""Service for user profiles and their auth accounts.

User documents are keyed by national id. Older documents may still be keyed
by the auth uid, so every lookup by national id falls back to a
``nationalId`` query.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timezone

from exam_app.constants.auth_constants import (
    MIN_CHANGE_PASSWORD_LENGTH,
    MIN_CREATE_PASSWORD_LENGTH,
    STUDENT_NATIONAL_ID_PATTERN,
)
from exam_app.constants.exam_constants import USERS_COLLECTION
from exam_app.core.auth import (
    AuthIdentity,
    AuthProvider,
    account_email,
    is_recent_login,
    role_from_email,
    username_from_email,
)
from exam_app.core.errors import ConflictError, InvalidInputError, NotFoundError, PermissionDeniedError
from exam_app.core.models import AuthSession, Role, User
from exam_app.storage.document_store import Document, DocumentStore

logger = logging.getLogger(__name__)

_STUDENT_ID_RE = re.compile(STUDENT_NATIONAL_ID_PATTERN)


@dataclass(slots=True)
class ProfileUpdate:
    first_name: str
    last_name: str
    national_id: str
    new_password: str | None = None


@dataclass(slots=True)
class SyncReport:
    checked: int
    deleted: int
    failed: int

    @property
    def in_sync(self) -> bool:
        return self.deleted == 0 and self.failed == 0


class UserRepository:
    """Reads and writes ``users`` documents."""

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    def find(self, key: str) -> User | None:
        """Look a user up by document id, then by ``nationalId``."""
        document = self._store.get(USERS_COLLECTION, key)
        if document is not None:
            return user_from_document(key, document)
        matches = self._store.query(USERS_COLLECTION, "nationalId", key)
        if matches:
            doc_id, data = matches[0]
            return user_from_document(doc_id, data)
        return None

    def get(self, key: str) -> User:
        user = self.find(key)
        if user is None:
            raise NotFoundError(f"User {key} does not exist.")
        return user

    def find_by_auth_uid(self, uid: str) -> User | None:
        matches = self._store.query(USERS_COLLECTION, "uid", uid)
        if matches:
            doc_id, data = matches[0]
            return user_from_document(doc_id, data)
        document = self._store.get(USERS_COLLECTION, uid)
        return user_from_document(uid, document) if document is not None else None

    def list_users(self) -> list[User]:
        users = [user_from_document(doc_id, data) for doc_id, data in self._store.stream(USERS_COLLECTION)]
        return sorted(users, key=lambda u: (u.role.value, u.last_name, u.first_name))

    def is_free(self, doc_id: str) -> bool:
        return not self._store.exists(USERS_COLLECTION, doc_id)

    def save(self, user: User) -> None:
        self._store.set(USERS_COLLECTION, user.id, user_to_document(user))

    def delete(self, doc_id: str) -> None:
        self._store.delete(USERS_COLLECTION, doc_id)

    def move(self, user: User, new_id: str) -> User:
        """Re-key a document in one batch: write the new one, delete the old one."""
        moved = replace(user, id=new_id)
        batch = self._store.batch()
        batch.set(USERS_COLLECTION, new_id, user_to_document(moved))
        batch.delete(USERS_COLLECTION, user.id)
        batch.commit()
        return moved

    def referenced_uids(self) -> set[str]:
        uids: set[str] = set()
        for doc_id, data in self._store.stream(USERS_COLLECTION):
            uids.add(doc_id)
            if data.get("uid"):
                uids.add(data["uid"])
        return uids


class UserDirectory:
    """User management on top of the repository and the auth provider."""

    def __init__(
        self,
        users: UserRepository,
        auth: AuthProvider,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._users = users
        self._auth = auth
        self._now = now or (lambda: datetime.now(timezone.utc))

    @property
    def repository(self) -> UserRepository:
        return self._users

    def resolve_session(self, identity: AuthIdentity) -> AuthSession:
        """Build the caller's session from a verified token."""
        role = role_from_email(identity.email)
        username = username_from_email(identity.email)
        user = self._users.find_by_auth_uid(identity.uid)
        if user is None and username:
            user = self._users.find(username)
        national_id = user.national_id if user is not None else username
        return AuthSession(
            user_id=identity.uid,
            role=role,
            national_id=national_id,
            email=identity.email,
            authenticated_at=identity.authenticated_at,
        )

    def create_user(self, full_name: str, username: str, password: str, role: Role | str) -> User:
        """Create the auth account and the profile document keyed by national id."""
        role = _coerce_role(role)
        full_name = full_name.strip()
        username = username.strip()
        if len(full_name) < 3:
            raise InvalidInputError("Full name must be at least 3 characters long.")
        _validate_national_id(username, role)
        if len(password) < MIN_CREATE_PASSWORD_LENGTH:
            raise InvalidInputError(f"Password must be at least {MIN_CREATE_PASSWORD_LENGTH} characters long.")
        if self._users.find(username) is not None:
            raise ConflictError(f"A user with national id {username} already exists.")

        email = account_email(username, role)
        uid = self._auth.create_user(email, password, display_name=full_name)
        first_name, _, last_name = full_name.partition(" ")
        user = User(
            id=username,
            national_id=username,
            first_name=first_name,
            last_name=last_name.strip(),
            role=role,
            email=email,
            auth_uid=uid,
        )
        self._users.save(user)
        logger.info("Created %s account for %s", role.value, username)
        return user

    def list_users(self) -> list[User]:
        return self._users.list_users()

    def get_user(self, key: str) -> User:
        return self._users.get(key)

    def delete_user(self, key: str) -> None:
        """Remove the profile document. The auth account is left for :meth:`sync_auth_users`."""
        user = self._users.get(key)
        self._users.delete(user.id)
        logger.info("Deleted user document %s", user.id)

    def update_profile(self, session: AuthSession, update: ProfileUpdate) -> User:
        """Apply a self-service profile change; requires a recent sign-in."""
        if not is_recent_login(session, now=self._now()):
            raise PermissionDeniedError("Please sign in again before changing your profile.")
        user = self._users.find_by_auth_uid(session.user_id)
        if user is None and session.national_id:
            user = self._users.find(session.national_id)
        if user is None:
            raise NotFoundError("No profile exists for the signed-in account.")

        first_name = update.first_name.strip()
        last_name = update.last_name.strip()
        national_id = update.national_id.strip()
        if not first_name or not last_name:
            raise InvalidInputError("First and last name are required.")
        if not national_id:
            raise InvalidInputError("National id is required.")
        if update.new_password is not None and len(update.new_password) < MIN_CHANGE_PASSWORD_LENGTH:
            raise InvalidInputError(
                f"New password must be at least {MIN_CHANGE_PASSWORD_LENGTH} characters long."
            )

        updated = replace(user, first_name=first_name, last_name=last_name, auth_uid=user.auth_uid or session.user_id)
        if national_id != user.national_id:
            _validate_national_id(national_id, user.role)
            if not self._users.is_free(national_id):
                raise ConflictError(f"National id {national_id} is already in use.")
            new_email = account_email(national_id, user.role)
            updated = self._users.move(replace(updated, national_id=national_id, email=new_email), national_id)
            self._auth.update_user(session.user_id, email=new_email)
            logger.info("Moved user %s to %s", user.id, national_id)
        else:
            self._users.save(updated)

        self._auth.update_user(
            session.user_id,
            password=update.new_password,
            display_name=updated.full_name,
        )
        return updated

    def sync_auth_users(self) -> SyncReport:
        """Delete auth accounts that no user document refers to."""
        uids = self._auth.list_uids()
        referenced = self._users.referenced_uids()
        orphaned = [uid for uid in uids if uid not in referenced]
        if not orphaned:
            logger.info("Auth accounts and user documents are in sync")
            return SyncReport(checked=len(uids), deleted=0, failed=0)
        deleted = self._auth.delete_users(orphaned)
        failed = len(orphaned) - deleted
        if failed:
            logger.warning("Could not delete %d orphaned auth accounts", failed)
        logger.info("Deleted %d orphaned auth accounts", deleted)
        return SyncReport(checked=len(uids), deleted=deleted, failed=failed)


def _coerce_role(role: Role | str) -> Role:
    try:
        return Role(role)
    except ValueError as exc:
        raise InvalidInputError(f"Unknown role {role!r}.") from exc


def _validate_national_id(national_id: str, role: Role) -> None:
    if not national_id:
        raise InvalidInputError("National id is required.")
    if role is Role.STUDENT and not _STUDENT_ID_RE.match(national_id):
        raise InvalidInputError("A student's national id must be exactly 10 digits.")


def user_to_document(user: User) -> Document:
    document: Document = {
        "id": user.id,
        "nationalId": user.national_id,
        "firstName": user.first_name,
        "lastName": user.last_name,
        "role": user.role.value,
    }
    if user.email:
        document["email"] = user.email
    if user.auth_uid:
        document["uid"] = user.auth_uid
    return document


def user_from_document(doc_id: str, data: Document) -> User:
    try:
        role = Role(data.get("role", Role.STUDENT.value))
    except ValueError:
        role = Role.STUDENT
    return User(
        id=doc_id,
        national_id=data.get("nationalId") or "",
        first_name=data.get("firstName") or "",
        last_name=data.get("lastName") or "",
        role=role,
        email=data.get("email"),
        auth_uid=data.get("uid"),
    )
