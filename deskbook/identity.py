"""Identity provider and admin check.

Two ways of establishing who a caller is:

- ``LocalIdentityProvider`` keeps email/password accounts in memory and is
  used by the ``local`` auth mode and the tests.
- ``verify_firebase_token`` checks a Firebase ID token with ``google-auth``
  for the ``firebase`` auth mode, where sign-up and sign-in happen in the
  client against Firebase directly.

Admin privileges are granted to exactly one email address, compared as an
exact string against ``settings.admin_email``.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import re
import secrets
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import google.auth.transport.requests
from google.auth import exceptions as google_auth_exceptions
from google.oauth2 import id_token

from .errors import AuthError
from .models import UserHandle

logger = logging.getLogger(__name__)

AuthListener = Callable[[str, Optional[UserHandle]], None]

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_PBKDF2_ROUNDS = 120_000

DEMO_USERS = (("admin@test.com", "admin123"), ("user@test.com", "user123"))


def is_admin(user: Optional[UserHandle], admin_email: str) -> bool:
    return user is not None and bool(admin_email) and user.email == admin_email


def _hash_password(password: str, salt: bytes) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, _PBKDF2_ROUNDS)


@dataclass
class _Account:
    handle: UserHandle
    salt: bytes
    password_hash: bytes


class LocalIdentityProvider:
    """In-memory email/password accounts with auth-state notifications."""

    def __init__(self, allow_signup: bool = True, min_password_length: int = 6) -> None:
        self.allow_signup = allow_signup
        self.min_password_length = min_password_length
        self._accounts: Dict[str, _Account] = {}
        self._signed_in: Dict[str, UserHandle] = {}
        self._listeners: List[AuthListener] = []

    def _emit(self, uid: str, user: Optional[UserHandle]) -> None:
        for listener in list(self._listeners):
            try:
                listener(uid, user)
            except Exception:
                logger.exception("Auth state listener failed")

    def on_auth_state_change(self, listener: AuthListener) -> Callable[[], None]:
        """Register ``listener(uid, user_or_None)``; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def sign_up(self, email: str, password: str) -> UserHandle:
        if not self.allow_signup:
            raise AuthError(AuthError.OPERATION_NOT_ALLOWED)
        email = email.strip()
        if not _EMAIL_RE.match(email):
            raise AuthError(AuthError.INVALID_CREDENTIALS, "Invalid email address.")
        if email.lower() in self._accounts:
            raise AuthError(AuthError.EMAIL_IN_USE)
        if len(password) < self.min_password_length:
            raise AuthError(
                AuthError.WEAK_PASSWORD,
                f"The password must be at least {self.min_password_length} characters long.",
            )
        salt = secrets.token_bytes(16)
        handle = UserHandle(uid=uuid.uuid4().hex, email=email)
        self._accounts[email.lower()] = _Account(handle, salt, _hash_password(password, salt))
        logger.info("Account created for %s", email)
        # Creating an account signs the user in.
        self._signed_in[handle.uid] = handle
        self._emit(handle.uid, handle)
        return handle

    def sign_in(self, email: str, password: str) -> UserHandle:
        account = self._accounts.get(email.strip().lower())
        if account is None or not hmac.compare_digest(
            account.password_hash, _hash_password(password, account.salt)
        ):
            raise AuthError(AuthError.INVALID_CREDENTIALS)
        self._signed_in[account.handle.uid] = account.handle
        self._emit(account.handle.uid, account.handle)
        return account.handle

    def sign_out(self, uid: str) -> None:
        if self._signed_in.pop(uid, None) is not None:
            self._emit(uid, None)

    def is_signed_in(self, uid: str) -> bool:
        return uid in self._signed_in

    def seed_demo_users(self) -> None:
        for email, password in DEMO_USERS:
            if email not in self._accounts:
                salt = secrets.token_bytes(16)
                handle = UserHandle(uid=uuid.uuid4().hex, email=email)
                self._accounts[email] = _Account(handle, salt, _hash_password(password, salt))


def verify_firebase_token(token: str, project_id: str) -> UserHandle:
    """Verify a Firebase ID token and return the user it identifies.

    This performs a blocking HTTP request for Google's public certificates
    (cached by google-auth), so async callers should run it in a thread.
    """
    request = google.auth.transport.requests.Request()
    try:
        claims = id_token.verify_firebase_token(token, request, audience=project_id or None)
    except (ValueError, google_auth_exceptions.GoogleAuthError) as exc:
        logger.warning("Rejected Firebase ID token: %s", exc)
        raise AuthError(AuthError.INVALID_CREDENTIALS, "Invalid or expired ID token.") from exc
    if not claims or not claims.get("email"):
        raise AuthError(AuthError.INVALID_CREDENTIALS, "ID token carries no email.")
    return UserHandle(uid=claims.get("user_id") or claims["sub"], email=claims["email"])
