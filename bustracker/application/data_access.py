"""
Data Access Layer - Local Cache + Remote Document Store
=======================================================

Reads prefer the local cache and fall back to the remote store (hydrating
the cache). Writes go to both; a failing remote write is logged and the
operation carries on against the local cache only.

The only hard failure is NotFoundError for mutations of an unknown user,
which means the caller passed a bad id.

Remote and inference calls are blocking HTTP clients, so they run in
worker threads via asyncio.to_thread and never stall the event loop.
"""

import asyncio
import logging
from typing import Any, Callable, List, Optional, Tuple

from .errors import NotFoundError
from .session import SessionManager
from ..domain import review_codec
from ..domain.models import (
    Booking,
    Notification,
    Review,
    Sentiment,
    SentimentResult,
    User,
    UserRole,
    new_id,
    parse_iso,
    utc_now_iso,
)
from ..infrastructure.config import Settings, get_settings
from ..infrastructure.llm import InferenceError, InferenceService
from ..infrastructure.persistence import (
    LocalCache,
    USERS,
    REVIEWS,
    NOTIFICATIONS,
    BOOKINGS,
)
from ..infrastructure.remote import (
    DocumentStore,
    PermissionDeniedError,
    RemoteStoreError,
    RemoteTimestamp,
)

logger = logging.getLogger(__name__)

REMOTE_USERS = "users"
REMOTE_REVIEWS = "communityReviews"

SENTIMENT_CACHE_PREFIX = "sentiment_cache_"
REVIEW_REPLY_PREFIX = "review_reply_"


class DataAccessLayer:
    """
    Mediates between the local cache and the remote document store.

    Usage:
        dal = DataAccessLayer(cache, remote, inference, sessions)
        user = await dal.create_user("alice", "alice@x.com", "secret1", uid)
        reviews = await dal.get_reviews()
    """

    def __init__(
        self,
        cache: LocalCache,
        remote: DocumentStore,
        inference: InferenceService,
        sessions: SessionManager,
        settings: Optional[Settings] = None,
    ):
        self._cache = cache
        self._remote = remote
        self._inference = inference
        self._sessions = sessions
        self._settings = settings or get_settings()

    # ── Helpers ────────────────────────────────────────────────────

    async def _delay(self) -> None:
        """Simulated latency, 0 by default."""
        if self._settings.simulated_latency_ms > 0:
            await asyncio.sleep(self._settings.simulated_latency_ms / 1000)

    async def _try_remote(self, description: str, fn: Callable, *args, **kwargs) -> Tuple[bool, Any]:
        """
        Run a remote store call off the event loop.
        Returns (ok, result); failures are logged, never raised.
        """
        try:
            return True, await asyncio.to_thread(fn, *args, **kwargs)
        except PermissionDeniedError:
            logger.warning(f"Remote store: permission denied for {description}. Using local cache only.")
        except RemoteStoreError as e:
            logger.warning(f"Remote store: {description} failed: {e}")
        except Exception as e:
            logger.exception(f"Unexpected remote store error during {description}: {e}")
        return False, None

    def _load_user(self, user_id: str) -> User:
        data = self._cache.get(USERS, user_id)
        if data is None:
            raise NotFoundError("User not found")
        return User.from_dict(data)

    def _save_user(self, user: User) -> User:
        self._cache.put(USERS, user.id, user.to_dict())
        self._sessions.refresh_user(user)
        return user

    # ── Users ──────────────────────────────────────────────────────

    def get_user(self, user_id: str) -> Optional[User]:
        data = self._cache.get(USERS, user_id)
        return User.from_dict(data) if data else None

    async def get_user_profile(self, uid: str) -> Optional[User]:
        """
        Profile by identity-provider uid: local cache first, then the
        remote store (hydrating the cache). None if neither has it.
        """
        local = self.get_user(uid)
        if local:
            return local

        logger.info(f"Fetching user profile from remote store: {uid}")
        ok, data = await self._try_remote("profile fetch", self._remote.get, REMOTE_USERS, uid)
        if not ok or not data:
            return None

        try:
            role = UserRole(data.get("role") or UserRole.USER.value)
        except ValueError:
            role = UserRole.USER

        user = User(
            id=uid,
            username=data.get("username") or "User",
            email=data.get("email") or "",
            password="",  # credentials live with the identity provider
            role=role,
            frequent_routes=list(data.get("frequentRoutes") or []),
            read_notification_ids=[],
        )
        self._cache.put(USERS, uid, user.to_dict())
        return user

    async def find_user_by_email(self, email: str) -> Optional[User]:
        await self._delay()
        data = self._cache.find(USERS, "email", email)
        return User.from_dict(data) if data else None

    async def get_known_emails(self) -> List[str]:
        await self._delay()
        return [doc.get("email", "") for doc in self._cache.all(USERS)]

    async def create_user(
        self,
        username: str,
        email: str,
        password: str,
        uid: Optional[str] = None,
    ) -> User:
        """
        Register a profile. The remote write is best-effort; the local
        record is upserted by email.
        """
        await self._delay()

        if uid:
            ok, _ = await self._try_remote(
                "user write",
                self._remote.set,
                REMOTE_USERS,
                uid,
                {
                    "username": username,
                    "email": email,
                    "role": UserRole.USER.value,
                    "createdAt": utc_now_iso(),
                },
            )
            if ok:
                logger.info(f"User {uid} written to remote store")

        existing = self._cache.find(USERS, "email", email)
        if existing:
            user = User.from_dict(existing)
            old_id = user.id
            user.id = uid or old_id
            user.username = username or user.username
            user.password = password
            if user.id != old_id:
                self._cache.delete(USERS, old_id)
            self._cache.put(USERS, user.id, user.to_dict())
            return user

        user = User(
            id=uid or new_id(),
            username=username,
            email=email,
            password=password,
            role=UserRole.USER,
        )
        self._cache.put(USERS, user.id, user.to_dict())
        return user

    async def update_user(self, user: User) -> User:
        """Merge a user's fields into the local record. NotFoundError if absent."""
        await self._delay()

        existing = self._cache.get(USERS, user.id)
        if existing is None:
            raise NotFoundError("User not found")

        merged = User.from_dict({**existing, **user.to_dict()})
        self._save_user(merged)

        # Seeded local ids are short; identity-provider uids are not
        if len(merged.id) > self._settings.server_id_min_length:
            await self._try_remote(
                "user merge",
                self._remote.set,
                REMOTE_USERS,
                merged.id,
                {
                    "username": merged.username,
                    "email": merged.email,
                    "updatedAt": utc_now_iso(),
                },
                merge=True,
            )
        return merged

    async def add_frequent_route(self, user_id: str, route_id: str) -> Optional[User]:
        """Record a viewed route (local only). No-op for unknown users."""
        user = self.get_user(user_id)
        if user is None:
            return None
        if route_id not in user.frequent_routes:
            user.frequent_routes = [*user.frequent_routes, route_id]
            self._save_user(user)
        return user

    async def remove_frequent_route(self, user_id: str, route_id: str) -> Optional[User]:
        user = self.get_user(user_id)
        if user is None:
            return None
        if route_id in user.frequent_routes:
            user.frequent_routes = [r for r in user.frequent_routes if r != route_id]
            self._save_user(user)
        return user

    # ── Notifications ──────────────────────────────────────────────

    async def get_notifications(self) -> List[Notification]:
        """All notifications, newest first."""
        await self._delay()
        return [Notification.from_dict(d) for d in self._cache.all(NOTIFICATIONS, newest_first=True)]

    async def add_notification(self, notification: Notification) -> Notification:
        await self._delay()
        self._cache.put(NOTIFICATIONS, notification.id, notification.to_dict())
        logger.info(f"Notification posted: {notification.title}")
        return notification

    async def mark_notification_read(self, user_id: str, notification_id: str) -> User:
        user = self._load_user(user_id)
        if notification_id not in user.read_notification_ids:
            user.read_notification_ids = [*user.read_notification_ids, notification_id]
            self._save_user(user)
        return user

    async def mark_all_notifications_read(self, user_id: str) -> User:
        user = self._load_user(user_id)
        all_ids = [d["id"] for d in self._cache.all(NOTIFICATIONS)]
        # Order-preserving union
        user.read_notification_ids = list(dict.fromkeys([*user.read_notification_ids, *all_ids]))
        return self._save_user(user)

    async def unread_count(self, user: User) -> int:
        notifications = await self.get_notifications()
        return sum(1 for n in notifications if not user.has_read(n.id))

    # ── Bookings ───────────────────────────────────────────────────

    async def create_booking(self, booking: Booking) -> Booking:
        await self._delay()
        self._cache.put(BOOKINGS, booking.id, booking.to_dict())
        return booking

    async def get_user_bookings(self, user_id: str) -> List[Booking]:
        """A user's bookings, newest first."""
        await self._delay()
        bookings = [Booking.from_dict(d) for d in self._cache.all(BOOKINGS) if d.get("user_id") == user_id]
        return sorted(bookings, key=lambda b: parse_iso(b.created_at), reverse=True)

    # ── Reviews ────────────────────────────────────────────────────

    async def add_review(self, review: Review) -> Review:
        """
        Store locally first so the author sees it immediately, then push
        the three-field record (username, review, time) to the remote store.
        """
        await self._delay()
        self._cache.put(REVIEWS, review.id, review.to_dict())

        encoded = review_codec.encode(review.text, review.sentiment_result, self._settings.review_encoding)
        ok, _ = await self._try_remote(
            "review write",
            self._remote.set,
            REMOTE_REVIEWS,
            review.id,
            {
                "username": review.username,
                "review": encoded,
                "time": RemoteTimestamp,
            },
        )
        if ok:
            logger.info(f"Review {review.id} written to remote store")
        return review

    async def get_reviews(self) -> List[Review]:
        """
        Reviews from the remote store (newest first), decoding the packed
        sentiment. Legacy plain-text records are analysed on demand and the
        result is memoised locally. Falls back to the local list if the
        remote read fails or returns nothing.
        """
        ok, docs = await self._try_remote(
            "review read", self._remote.list, REMOTE_REVIEWS, order_by="time", descending=True
        )

        if ok and docs:
            reviews = await asyncio.gather(*(self._review_from_remote(doc_id, data) for doc_id, data in docs))
            return list(reviews)

        return self._local_reviews()

    def _local_reviews(self) -> List[Review]:
        return [Review.from_dict(d) for d in self._cache.all(REVIEWS, newest_first=True)]

    async def _review_from_remote(self, doc_id: str, data: dict) -> Review:
        time_value = data.get("time")
        if hasattr(time_value, "isoformat"):
            created_at = time_value.isoformat()
        else:
            created_at = str(time_value) if time_value else utc_now_iso()

        decoded = review_codec.decode(data.get("review"))
        if decoded.result is not None:
            result = decoded.result
        elif decoded.text:
            result = await self._legacy_sentiment(doc_id, decoded.text)
        else:
            result = SentimentResult.neutral()

        review = Review(
            id=doc_id,
            user_id="unknown",
            username=data.get("username") or "",
            text=decoded.text,
            sentiment=result.sentiment,
            sentiment_score=result.score,
            created_at=created_at,
        )

        local = self._cache.get(REVIEWS, doc_id)
        if local:
            review.user_id = local.get("user_id") or review.user_id

        reply = self._cache.get_value(REVIEW_REPLY_PREFIX + doc_id)
        if reply:
            review.admin_reply = reply.get("admin_reply")
            review.reply_created_at = reply.get("reply_created_at")
        return review

    async def _legacy_sentiment(self, doc_id: str, text: str) -> SentimentResult:
        """Sentiment for an undelimited record, memoised per review id."""
        cache_key = SENTIMENT_CACHE_PREFIX + doc_id
        cached = self._cache.get_value(cache_key)
        if cached:
            return SentimentResult(Sentiment.parse(cached.get("sentiment")), float(cached.get("score", 0.5)))

        logger.info(f"Analyzing legacy review {doc_id} on the fly...")
        try:
            result = await asyncio.to_thread(self._inference.classify_sentiment, text)
        except InferenceError as e:
            logger.warning(f"Failed to analyze legacy review {doc_id}: {e}")
            return SentimentResult.neutral()
        except Exception as e:
            logger.exception(f"Unexpected error analyzing legacy review {doc_id}: {e}")
            return SentimentResult.neutral()

        self._cache.set_value(cache_key, {"sentiment": result.sentiment.value, "score": result.score})
        return result

    async def reply_to_review(self, review_id: str, reply_text: str) -> dict:
        """
        Attach an admin reply (local only; the remote schema has no room
        for it). Works for reviews that only exist remotely too.
        """
        await self._delay()
        reply = {"admin_reply": reply_text, "reply_created_at": utc_now_iso()}
        self._cache.set_value(REVIEW_REPLY_PREFIX + review_id, reply)

        local = self._cache.get(REVIEWS, review_id)
        if local:
            local.update(reply)
            self._cache.put(REVIEWS, review_id, local)
        return reply
