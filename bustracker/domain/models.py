"""
Domain Models
=============

Plain dataclasses for everything the app stores or passes around.
Persisted entities round-trip through ``to_dict()`` / ``from_dict()`` so the
local cache can keep them as JSON documents.
"""

import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


def utc_now_iso() -> str:
    """Current time as an ISO-8601 UTC string."""
    return datetime.now(timezone.utc).isoformat()


def parse_iso(value: str) -> datetime:
    """Parse an ISO-8601 string; naive values are taken as UTC."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def new_id() -> str:
    return str(uuid.uuid4())


class UserRole(Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class Sentiment(Enum):
    """
    Sentiment classification result.

    DESIGN: Using Enum ensures type safety and prevents
    typos/inconsistencies in sentiment values.
    """
    POSITIVE = "Positive"
    NEGATIVE = "Negative"
    NEUTRAL = "Neutral"

    @classmethod
    def parse(cls, value: Optional[str]) -> "Sentiment":
        """Case-insensitive lookup, Neutral for anything unrecognised."""
        if value:
            normalized = str(value).strip().capitalize()
            for member in cls:
                if member.value == normalized:
                    return member
        return cls.NEUTRAL


class NotificationType(Enum):
    DELAY = "Delay"
    SCHEDULE_CHANGE = "Schedule Change"
    GENERAL = "General"


class BusStatus(Enum):
    ON_TIME = "On Time"
    DELAYED = "Delayed"
    STOPPED = "Stopped"


@dataclass(frozen=True)
class SentimentResult:
    """Label plus confidence in [0, 1]."""
    sentiment: Sentiment
    score: float

    @classmethod
    def neutral(cls) -> "SentimentResult":
        return cls(Sentiment.NEUTRAL, 0.5)


@dataclass
class User:
    """Commuter or admin profile."""
    id: str
    username: str
    email: str
    password: str = ""
    role: UserRole = UserRole.USER
    frequent_routes: list[str] = field(default_factory=list)
    read_notification_ids: list[str] = field(default_factory=list)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def has_read(self, notification_id: str) -> bool:
        return notification_id in self.read_notification_ids

    def to_dict(self) -> dict:
        data = asdict(self)
        data["role"] = self.role.value
        return data

    def to_public_dict(self) -> dict:
        data = self.to_dict()
        data.pop("password", None)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "User":
        try:
            role = UserRole(data.get("role") or UserRole.USER.value)
        except ValueError:
            role = UserRole.USER
        return cls(
            id=data["id"],
            username=data.get("username", ""),
            email=data.get("email", ""),
            password=data.get("password") or "",
            role=role,
            frequent_routes=list(data.get("frequent_routes") or []),
            read_notification_ids=list(data.get("read_notification_ids") or []),
        )


@dataclass
class Review:
    """Community review with its derived sentiment."""
    id: str
    user_id: str
    username: str
    text: str
    sentiment: Sentiment = Sentiment.NEUTRAL
    sentiment_score: float = 0.5
    created_at: str = field(default_factory=utc_now_iso)
    admin_reply: Optional[str] = None
    reply_created_at: Optional[str] = None

    @property
    def sentiment_result(self) -> SentimentResult:
        return SentimentResult(self.sentiment, self.sentiment_score)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["sentiment"] = self.sentiment.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Review":
        return cls(
            id=data["id"],
            user_id=data.get("user_id", "unknown"),
            username=data.get("username", ""),
            text=data.get("text", ""),
            sentiment=Sentiment.parse(data.get("sentiment")),
            sentiment_score=float(data.get("sentiment_score", 0.5)),
            created_at=data.get("created_at") or utc_now_iso(),
            admin_reply=data.get("admin_reply"),
            reply_created_at=data.get("reply_created_at"),
        )


@dataclass
class Notification:
    """Service alert posted by an admin. Read state lives on the User."""
    id: str
    title: str
    message: str
    type: NotificationType = NotificationType.GENERAL
    created_at: str = field(default_factory=utc_now_iso)
    author: str = "Admin"

    def to_dict(self) -> dict:
        data = asdict(self)
        data["type"] = self.type.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Notification":
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            message=data.get("message", ""),
            type=NotificationType(data.get("type", NotificationType.GENERAL.value)),
            created_at=data.get("created_at") or utc_now_iso(),
            author=data.get("author", "Admin"),
        )


@dataclass
class Booking:
    """Seat booking for a scheduled departure. Append-only."""
    id: str
    user_id: str
    route_id: str
    route_name: str
    stop_name: str
    time: str
    created_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Booking":
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            route_id=data.get("route_id", ""),
            route_name=data.get("route_name", ""),
            stop_name=data.get("stop_name", ""),
            time=data.get("time", ""),
            created_at=data.get("created_at") or utc_now_iso(),
        )


# ── Reference data (not persisted) ─────────────────────────────────

@dataclass(frozen=True)
class Route:
    id: str
    label: str


@dataclass(frozen=True)
class ScheduleItem:
    id: str
    route_id: str
    stop_name: str
    arrival_time: str
    departure_time: str


@dataclass
class Bus:
    id: str
    route_id: str
    route_name: str
    latitude: float
    longitude: float
    status: BusStatus
    occupancy: int  # percentage
    next_stop: str

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class ChatMessage:
    """One turn of the assistant conversation."""
    role: str  # "user" or "model"
    text: str
    id: str = field(default_factory=new_id)
    timestamp: str = field(default_factory=utc_now_iso)
    is_audio: bool = False
