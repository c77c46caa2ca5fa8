"""
Session Context
===============

One session per client. Each session is identified by an opaque token
(handed to the browser as a cookie) and its user copy is persisted in the
local cache under ``session_<token>``, so a restart picks it back up.

Lifecycle:
    sessions = SessionManager(cache)
    session = sessions.open()          # new token, not yet persisted
    session.start(user)                # login / registration
    session = sessions.get(token)      # per request; None if unknown
    sessions.refresh_user(user)        # after a mutation of that user
    session.clear()                    # logout
"""

import logging
import secrets
from typing import Optional

from ..domain.models import User
from ..infrastructure.persistence import LocalCache

logger = logging.getLogger(__name__)

SESSION_PREFIX = "session_"
TOKEN_BYTES = 32


class SessionContext:
    """The signed-in user of one client."""

    def __init__(self, cache: LocalCache, token: str):
        self._cache = cache
        self.token = token
        self._user: Optional[User] = None

    @property
    def key(self) -> str:
        return SESSION_PREFIX + self.token

    @property
    def current(self) -> Optional[User]:
        return self._user

    @property
    def is_active(self) -> bool:
        return self._user is not None

    @property
    def is_admin(self) -> bool:
        return self._user is not None and self._user.is_admin

    def load(self) -> Optional[User]:
        """Restore the persisted session, if any."""
        data = self._cache.get_value(self.key)
        self._user = User.from_dict(data) if data else None
        return self._user

    def start(self, user: User) -> None:
        self._user = user
        self._cache.set_value(self.key, user.to_dict())
        logger.info(f"Session started for {user.email}")

    def refresh(self, user: User) -> bool:
        """Replace the session copy if it belongs to the same user."""
        if self._user is None or self._user.id != user.id:
            return False
        self._user = user
        self._cache.set_value(self.key, user.to_dict())
        return True

    def clear(self) -> None:
        if self._user:
            logger.info(f"Session cleared for {self._user.email}")
        self._user = None
        self._cache.delete_value(self.key)


class SessionManager:
    """Issues and resolves per-client sessions."""

    def __init__(self, cache: LocalCache):
        self._cache = cache

    def open(self) -> SessionContext:
        return SessionContext(self._cache, secrets.token_urlsafe(TOKEN_BYTES))

    def get(self, token: Optional[str]) -> Optional[SessionContext]:
        """Active session for a token, or None."""
        if not token:
            return None
        session = SessionContext(self._cache, token)
        return session if session.load() else None

    def refresh_user(self, user: User) -> int:
        """Update every session signed in as this user. Returns how many."""
        refreshed = 0
        for key, data in self._cache.values_with_prefix(SESSION_PREFIX):
            if data.get("id") != user.id:
                continue
            session = SessionContext(self._cache, key[len(SESSION_PREFIX):])
            session.load()
            if session.refresh(user):
                refreshed += 1
        return refreshed
