"""Authentication port plus its Firebase and in-memory adapters."""

from __future__ import annotations

import logging
import re
import secrets
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from firebase_admin import auth as firebase_auth
from firebase_admin.exceptions import FirebaseError

from exam_app.constants.auth_constants import EMAIL_DOMAIN, RECENT_LOGIN_WINDOW_SECONDS
from exam_app.core.errors import (
    ConflictError,
    ExternalServiceError,
    InvalidInputError,
    NotFoundError,
    PermissionDeniedError,
)
from exam_app.core.models import AuthSession, Role

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(rf"^(?P<role>[a-z]+)-(?P<username>[^@]+)@{re.escape(EMAIL_DOMAIN)}$")

# Firebase Auth deletes at most this many accounts per call.
_DELETE_CHUNK_SIZE = 1000


@dataclass(frozen=True, slots=True)
class AuthIdentity:
    """What the auth service vouches for after verifying a token."""

    uid: str
    email: str | None
    authenticated_at: datetime | None = None
    display_name: str | None = None


def account_email(username: str, role: Role | str) -> str:
    return f"{Role(role).value}-{username}@{EMAIL_DOMAIN}"


def role_from_email(email: str | None) -> Role:
    """Accounts are created as ``teacher-...`` or ``student-...``; anything else is a student."""
    if email and email.lower().startswith(f"{Role.TEACHER.value}-"):
        return Role.TEACHER
    return Role.STUDENT


def username_from_email(email: str | None) -> str | None:
    if not email:
        return None
    match = _EMAIL_RE.match(email.lower())
    return match.group("username") if match else None


def require_capability(session: AuthSession, capability: str) -> AuthSession:
    """Raise PermissionDeniedError unless the caller's role grants ``capability``."""
    if not getattr(session.role, capability, False):
        raise PermissionDeniedError(f"Role {session.role.value} may not perform this action ({capability}).")
    return session


def is_recent_login(
    session: AuthSession,
    now: datetime | None = None,
    window_seconds: int = RECENT_LOGIN_WINDOW_SECONDS,
) -> bool:
    if session.authenticated_at is None:
        return False
    now = now or datetime.now(timezone.utc)
    return now - session.authenticated_at <= timedelta(seconds=window_seconds)


class AuthProvider(ABC):
    """Operations the service needs from the identity platform."""

    @abstractmethod
    def verify_token(self, token: str) -> AuthIdentity:
        """Resolve a bearer token; raises PermissionDeniedError when it is not valid."""

    @abstractmethod
    def create_user(self, email: str, password: str, display_name: str | None = None) -> str:
        """Create an account and return its uid."""

    @abstractmethod
    def update_user(
        self,
        uid: str,
        *,
        email: str | None = None,
        password: str | None = None,
        display_name: str | None = None,
    ) -> None: ...

    @abstractmethod
    def list_uids(self) -> list[str]: ...

    @abstractmethod
    def delete_users(self, uids: Sequence[str]) -> int:
        """Delete accounts and return how many were removed."""


@dataclass(slots=True)
class _Account:
    uid: str
    email: str
    password: str
    display_name: str | None = None


class InMemoryAuthProvider(AuthProvider):
    """Process-local accounts and opaque tokens, used for tests and local runs."""

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._accounts: dict[str, _Account] = {}
        self._tokens: dict[str, tuple[str, datetime]] = {}

    def sign_in(self, email: str, password: str) -> str:
        """Check the password and issue a token stamped with the current time."""
        account = next((a for a in self._accounts.values() if a.email == email.lower()), None)
        if account is None or account.password != password:
            raise PermissionDeniedError("Invalid email or password.")
        token = secrets.token_urlsafe(24)
        self._tokens[token] = (account.uid, self._clock())
        return token

    def verify_token(self, token: str) -> AuthIdentity:
        entry = self._tokens.get(token)
        if entry is None or entry[0] not in self._accounts:
            raise PermissionDeniedError("Invalid or expired authentication token.")
        uid, issued_at = entry
        account = self._accounts[uid]
        return AuthIdentity(
            uid=uid,
            email=account.email,
            authenticated_at=issued_at,
            display_name=account.display_name,
        )

    def create_user(self, email: str, password: str, display_name: str | None = None) -> str:
        email = email.lower()
        if any(a.email == email for a in self._accounts.values()):
            raise ConflictError(f"An account for {email} already exists.")
        uid = secrets.token_hex(14)
        self._accounts[uid] = _Account(uid=uid, email=email, password=password, display_name=display_name)
        return uid

    def update_user(
        self,
        uid: str,
        *,
        email: str | None = None,
        password: str | None = None,
        display_name: str | None = None,
    ) -> None:
        account = self._accounts.get(uid)
        if account is None:
            raise NotFoundError(f"No auth account {uid}.")
        if email is not None:
            email = email.lower()
            if any(a.email == email and a.uid != uid for a in self._accounts.values()):
                raise ConflictError(f"An account for {email} already exists.")
            account.email = email
        if password is not None:
            account.password = password
        if display_name is not None:
            account.display_name = display_name

    def list_uids(self) -> list[str]:
        return list(self._accounts)

    def delete_users(self, uids: Sequence[str]) -> int:
        deleted = 0
        for uid in uids:
            if self._accounts.pop(uid, None) is not None:
                deleted += 1
        self._tokens = {t: entry for t, entry in self._tokens.items() if entry[0] in self._accounts}
        return deleted

    def email_of(self, uid: str) -> str | None:
        account = self._accounts.get(uid)
        return account.email if account else None


class FirebaseAuthProvider(AuthProvider):
    """Firebase Auth through the Admin SDK."""

    def __init__(self, app=None) -> None:
        self._app = app

    def verify_token(self, token: str) -> AuthIdentity:
        try:
            claims = firebase_auth.verify_id_token(token, app=self._app)
        except (firebase_auth.InvalidIdTokenError, firebase_auth.ExpiredIdTokenError, firebase_auth.RevokedIdTokenError) as exc:
            raise PermissionDeniedError(f"Invalid authentication token: {exc}") from exc
        except (ValueError, firebase_auth.CertificateFetchError) as exc:
            raise ExternalServiceError(f"Could not verify authentication token: {exc}") from exc

        auth_time = claims.get("auth_time")
        return AuthIdentity(
            uid=claims["uid"],
            email=claims.get("email"),
            authenticated_at=datetime.fromtimestamp(auth_time, tz=timezone.utc) if auth_time else None,
            display_name=claims.get("name"),
        )

    def create_user(self, email: str, password: str, display_name: str | None = None) -> str:
        try:
            record = firebase_auth.create_user(
                email=email,
                password=password,
                display_name=display_name,
                app=self._app,
            )
        except firebase_auth.EmailAlreadyExistsError as exc:
            raise ConflictError(f"An account for {email} already exists.") from exc
        except ValueError as exc:
            raise InvalidInputError(str(exc)) from exc
        except FirebaseError as exc:
            raise ExternalServiceError(f"Creating the auth account failed: {exc}") from exc
        logger.info("Created auth account %s", record.uid)
        return record.uid

    def update_user(
        self,
        uid: str,
        *,
        email: str | None = None,
        password: str | None = None,
        display_name: str | None = None,
    ) -> None:
        changes = {
            key: value
            for key, value in {"email": email, "password": password, "display_name": display_name}.items()
            if value is not None
        }
        if not changes:
            return
        try:
            firebase_auth.update_user(uid, app=self._app, **changes)
        except firebase_auth.UserNotFoundError as exc:
            raise NotFoundError(f"No auth account {uid}.") from exc
        except firebase_auth.EmailAlreadyExistsError as exc:
            raise ConflictError(f"An account for {email} already exists.") from exc
        except FirebaseError as exc:
            raise ExternalServiceError(f"Updating the auth account failed: {exc}") from exc

    def list_uids(self) -> list[str]:
        try:
            return [user.uid for user in firebase_auth.list_users(app=self._app).iterate_all()]
        except FirebaseError as exc:
            raise ExternalServiceError(f"Listing auth accounts failed: {exc}") from exc

    def delete_users(self, uids: Sequence[str]) -> int:
        deleted = 0
        for start in range(0, len(uids), _DELETE_CHUNK_SIZE):
            chunk = list(uids[start : start + _DELETE_CHUNK_SIZE])
            try:
                outcome = firebase_auth.delete_users(chunk, app=self._app)
            except FirebaseError as exc:
                raise ExternalServiceError(f"Deleting auth accounts failed: {exc}") from exc
            deleted += outcome.success_count
            for error in outcome.errors:
                logger.warning("Could not delete auth account #%d: %s", error.index, error.reason)
        return deleted
