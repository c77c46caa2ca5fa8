"""Application-level exceptions."""


class NotFoundError(Exception):
    """A mutation referenced a record that does not exist locally."""
    pass


class AuthError(Exception):
    """Base class for sign-in/sign-up failures. The message is user-facing."""

    default_message = "Authentication failed."

    def __init__(self, message: str = ""):
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class InvalidCredentialError(AuthError):
    default_message = (
        "Invalid email or password. If you haven't registered yet, "
        "please create an account below."
    )


class UserNotFoundError(InvalidCredentialError):
    pass


class TooManyAttemptsError(AuthError):
    default_message = "Too many failed attempts. Please try again later."


class EmailInUseError(AuthError):
    default_message = "Email already in use. Please login."


class WeakPasswordError(AuthError):
    default_message = "Password must be at least 6 characters."


class InvalidResetTokenError(AuthError):
    default_message = "This reset link is invalid or has expired."
