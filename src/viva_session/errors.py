"""Exception hierarchy for the Viva session and request pipeline."""

from __future__ import annotations

from typing import Any


class VivaClientError(Exception):
    """Base exception for all client-side failures."""

    code = "CLIENT_ERROR"
    friendly_message: str | None = None

    def __init__(self, message: str, code: str | None = None):
        self.message = message
        if code is not None:
            self.code = code
        super().__init__(self.message)

    @property
    def user_friendly_message(self) -> str:
        """Message suitable for showing to the user."""
        return self.friendly_message or self.message


class NotLoggedInError(VivaClientError):
    code = "NOT_LOGGED_IN"


# Sign-in errors
class InvalidCredentialsError(VivaClientError):
    """Bad email or password. Reported to the user verbatim, never retried."""

    code = "INVALID_LOGIN_CREDENTIALS"


class LoginError(VivaClientError):
    code = "LOGIN_ERROR"


class SignUpError(VivaClientError):
    code = "SIGN_UP_ERROR"


# Refresh errors
class RefreshError(VivaClientError):
    """A token refresh wave failed; the session has been logged out or replaced."""

    code = "REFRESH_ERROR"


class NoRefreshTokenError(RefreshError):
    code = "NO_REFRESH_TOKEN"


class RefreshFailedError(RefreshError):
    code = "REFRESH_FAILED"


# Request pipeline errors
class AuthenticationError(VivaClientError):
    code = "AUTHENTICATION_ERROR"
    friendly_message = "Your session has expired. Please log in again"


class APIConnectionError(VivaClientError):
    """No HTTP response was obtained, even after the backoff retry."""

    code = "CONNECTION_ERROR"
    friendly_message = "Unable to connect to the internet"


class DecodingError(VivaClientError):
    code = "DECODING_ERROR"

    def __init__(self, message: str, body: str = ""):
        self.body = body
        super().__init__(message)


class ResponseError(VivaClientError):
    """Error status whose body did not match a structured error shape."""

    code = "RESPONSE_ERROR"

    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"HTTP {status_code}: {body}")

    @property
    def user_friendly_message(self) -> str:
        if self.status_code >= 500:
            return "Server error occurred. Our team has been notified"
        return self.message


class APIErrorResponse(VivaClientError):
    """Error status carrying a decoded, structured error payload."""

    code = "REQUEST_ERROR"

    def __init__(self, status_code: int, error: Any):
        self.status_code = status_code
        self.error = error
        message = getattr(error, "message", None) or str(error)
        super().__init__(message)
