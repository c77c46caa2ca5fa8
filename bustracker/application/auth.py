"""
Auth Service - Registration, Login, Logout, Password Reset
==========================================================

Plays the identity provider: credentials (uid + password hash) are kept in
the local ``credentials`` collection keyed by email, separate from the
profile documents the data access layer manages.

All failures raise AuthError subclasses whose message is safe to show to
the user.
"""

import hashlib
import logging
import secrets
import string
import time
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from .data_access import DataAccessLayer
from .errors import (
    AuthError,
    EmailInUseError,
    InvalidCredentialError,
    InvalidResetTokenError,
    TooManyAttemptsError,
    UserNotFoundError,
    WeakPasswordError,
)
from .session import SessionContext
from ..domain.models import User, parse_iso
from ..infrastructure.config import Settings, get_settings
from ..infrastructure.persistence import LocalCache, CREDENTIALS, USERS

logger = logging.getLogger(__name__)

UID_LENGTH = 28
_UID_ALPHABET = string.ascii_letters + string.digits

RESET_PREFIX = "password_reset_"


def hash_password(password: str) -> str:
    return hashlib.sha256(password.encode()).hexdigest()


def generate_uid() -> str:
    """Identity-provider style uid (28 alphanumerics)."""
    return "".join(secrets.choice(_UID_ALPHABET) for _ in range(UID_LENGTH))


class AuthService:
    """
    Usage:
        auth = AuthService(cache, dal)
        session = sessions.open()
        user = await auth.register("alice", "alice@x.com", "secret1", session)
        user = await auth.login("alice@x.com", "secret1", session)
        auth.logout(session)
    """

    def __init__(
        self,
        cache: LocalCache,
        data: DataAccessLayer,
        settings: Optional[Settings] = None,
        clock=time.monotonic,
    ):
        self._cache = cache
        self._data = data
        self._settings = settings or get_settings()
        self._clock = clock
        self._failures: Dict[str, List[float]] = {}

    # ── Credentials ────────────────────────────────────────────────

    def _credential(self, email: str) -> Optional[dict]:
        return self._cache.get(CREDENTIALS, email.lower())

    def _store_credential(self, email: str, uid: str, password: str) -> None:
        self._cache.put(CREDENTIALS, email.lower(), {
            "id": email.lower(),
            "uid": uid,
            "password_hash": hash_password(password),
        })

    def seed_credentials(self) -> int:
        """
        Give locally seeded users (which carry a plain placeholder password)
        a credential so they can sign in. Returns number created.
        """
        created = 0
        for doc in self._cache.all(USERS):
            user = User.from_dict(doc)
            if user.email and user.password and self._credential(user.email) is None:
                self._store_credential(user.email, user.id, user.password)
                created += 1
        if created:
            logger.info(f"Created {created} credentials for seeded users")
        return created

    def update_credentials(
        self,
        email: str,
        new_email: Optional[str] = None,
        new_password: Optional[str] = None,
    ) -> None:
        """Move the login to a new email and/or set a new password."""
        credential = self._credential(email)
        if credential is None:
            raise UserNotFoundError()

        new_email = (new_email or email).strip()
        if new_email.lower() != email.lower() and self._credential(new_email) is not None:
            raise EmailInUseError()

        if new_password:
            self._check_password_strength(new_password)
            password_hash = hash_password(new_password)
        else:
            password_hash = credential["password_hash"]

        if new_email.lower() != email.lower():
            self._cache.delete(CREDENTIALS, email.lower())
        self._cache.put(CREDENTIALS, new_email.lower(), {
            "id": new_email.lower(),
            "uid": credential["uid"],
            "password_hash": password_hash,
        })

    def _check_password_strength(self, password: str) -> None:
        minimum = self._settings.min_password_length
        if len(password) < minimum:
            raise WeakPasswordError(f"Password must be at least {minimum} characters.")

    # ── Throttling ─────────────────────────────────────────────────

    def _window_start(self) -> float:
        return self._clock() - self._settings.login_lockout_seconds

    def _prune_failures(self) -> None:
        """Forget emails whose last failure is outside the lockout window."""
        window_start = self._window_start()
        expired = [email for email, times in self._failures.items() if times[-1] < window_start]
        for email in expired:
            del self._failures[email]

    def _recent_failures(self, email: str) -> List[float]:
        window_start = self._window_start()
        recent = [t for t in self._failures.get(email, []) if t >= window_start]
        if recent:
            self._failures[email] = recent
        else:
            self._failures.pop(email, None)
        return recent

    def _record_failure(self, email: str) -> None:
        self._failures.setdefault(email, []).append(self._clock())

    # ── Flows ──────────────────────────────────────────────────────

    async def register(
        self,
        username: str,
        email: str,
        password: str,
        session: Optional[SessionContext] = None,
    ) -> User:
        email = email.strip()
        if not username.strip() or not email or not password:
            raise AuthError("Please fill in all fields.")
        self._check_password_strength(password)
        if self._credential(email) is not None:
            raise EmailInUseError()

        uid = generate_uid()
        self._store_credential(email, uid, password)
        user = await self._data.create_user(username.strip(), email, hash_password(password), uid)

        if session is not None:
            session.start(user)
        logger.info(f"Registered {email} as {uid}")
        return user

    async def login(
        self,
        email: str,
        password: str,
        session: Optional[SessionContext] = None,
    ) -> User:
        email = email.strip()
        if not email or not password:
            raise AuthError("Please fill in all fields.")

        self._prune_failures()
        key = email.lower()
        if len(self._recent_failures(key)) >= self._settings.max_login_attempts:
            logger.warning(f"Login throttled for {email}")
            raise TooManyAttemptsError()

        credential = self._credential(email)
        if credential is None:
            self._record_failure(key)
            raise UserNotFoundError()
        if credential["password_hash"] != hash_password(password):
            self._record_failure(key)
            raise InvalidCredentialError()

        self._failures.pop(key, None)
        uid = credential["uid"]

        # Profile: local by email, then by uid (remote fallback), then rebuild
        user = await self._data.find_user_by_email(email)
        if user is None:
            user = await self._data.get_user_profile(uid)
        if user is None:
            logger.warning("User authenticated but profile not found. Creating fallback profile.")
            user = await self._data.create_user(email.split("@")[0], email, "", uid)

        if session is not None:
            session.start(user)
        return user

    def logout(self, session: SessionContext) -> None:
        session.clear()

    # ── Password reset ─────────────────────────────────────────────

    @staticmethod
    def _reset_key(token: str) -> str:
        # Stored by digest only
        return RESET_PREFIX + hashlib.sha256(token.encode()).hexdigest()

    def request_password_reset(self, email: str) -> str:
        """
        Issue a one-time reset token for an existing login.
        Delivering it to the user is up to the caller.
        """
        email = email.strip()
        if not email:
            raise AuthError("Please enter your email address first to reset password.")
        if self._credential(email) is None:
            raise AuthError("Failed to send reset email. Verify the email is correct.")

        token = secrets.token_urlsafe(32)
        expires = datetime.now(timezone.utc) + timedelta(seconds=self._settings.password_reset_ttl_seconds)
        self._cache.set_value(self._reset_key(token), {
            "email": email.lower(),
            "expires_at": expires.isoformat(),
        })
        logger.info(f"Password reset requested for {email}")
        return token

    async def reset_password(self, token: str, new_password: str) -> User:
        """Set a new password with a token from request_password_reset."""
        key = self._reset_key(token or "")
        record = self._cache.get_value(key)
        if not record:
            raise InvalidResetTokenError()
        if parse_iso(record["expires_at"]) < datetime.now(timezone.utc):
            self._cache.delete_value(key)
            raise InvalidResetTokenError()

        self._check_password_strength(new_password)
        email = record["email"]
        self.update_credentials(email, new_password=new_password)
        self._cache.delete_value(key)
        self._failures.pop(email, None)

        credential = self._credential(email)
        user = await self._data.find_user_by_email(email) or await self._data.get_user_profile(credential["uid"])
        if user is None:
            raise UserNotFoundError()
        user.password = hash_password(new_password)
        user = await self._data.update_user(user)
        logger.info(f"Password reset for {email}")
        return user
