from .models import (
    User,
    UserRole,
    Review,
    Sentiment,
    SentimentResult,
    Notification,
    NotificationType,
    Booking,
    Bus,
    BusStatus,
    Route,
    ScheduleItem,
    ChatMessage,
    new_id,
    parse_iso,
    utc_now_iso,
)

__all__ = [
    "User",
    "UserRole",
    "Review",
    "Sentiment",
    "SentimentResult",
    "Notification",
    "NotificationType",
    "Booking",
    "Bus",
    "BusStatus",
    "Route",
    "ScheduleItem",
    "ChatMessage",
    "new_id",
    "parse_iso",
    "utc_now_iso",
]
