from .local_cache import (
    LocalCache,
    init_with_seed_data,
    USERS,
    REVIEWS,
    NOTIFICATIONS,
    BOOKINGS,
    CREDENTIALS,
)

__all__ = [
    "LocalCache",
    "init_with_seed_data",
    "USERS",
    "REVIEWS",
    "NOTIFICATIONS",
    "BOOKINGS",
    "CREDENTIALS",
]
