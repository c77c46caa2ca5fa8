from .errors import (
    NotFoundError,
    AuthError,
    InvalidCredentialError,
    UserNotFoundError,
    TooManyAttemptsError,
    EmailInUseError,
    WeakPasswordError,
    InvalidResetTokenError,
)
from .session import SessionContext, SessionManager
from .data_access import DataAccessLayer
from .auth import AuthService

__all__ = [
    "NotFoundError",
    "AuthError",
    "InvalidCredentialError",
    "UserNotFoundError",
    "TooManyAttemptsError",
    "EmailInUseError",
    "WeakPasswordError",
    "InvalidResetTokenError",
    "SessionContext",
    "SessionManager",
    "DataAccessLayer",
    "AuthService",
]
