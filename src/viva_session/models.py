"""Pydantic models for the Viva identity and session API payloads."""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model accepting the backend's camelCase keys or snake_case names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Identity models
class AuthRequest(CamelModel):
    """Email/password exchange request for the identity endpoint."""

    email: str
    password: str
    return_secure_token: bool = True


class AuthResponse(CamelModel):
    """Identity endpoint response carrying the identity token."""

    kind: str | None = None
    local_id: str
    email: str
    display_name: str | None = None  # Absent in sign-up responses
    id_token: str
    registered: bool | None = None  # Only present in sign-in responses
    refresh_token: str
    expires_in: str | None = None


class PasswordResetRequest(CamelModel):
    """Password reset email request."""

    email: str
    request_type: str = "PASSWORD_RESET"


class PasswordResetResponse(CamelModel):
    """Password reset confirmation."""

    kind: str | None = None
    email: str


class AuthErrorInfo(BaseModel):
    """Single entry of the identity endpoint's error list."""

    message: str
    domain: str | None = None
    reason: str | None = None


class AuthErrorDetails(BaseModel):
    """Body of an identity endpoint error."""

    code: int
    message: str
    errors: list[AuthErrorInfo] = []


class AuthErrorResponse(BaseModel):
    """Structured error returned by the identity endpoint."""

    error: AuthErrorDetails


# Session models
class UserProfile(CamelModel):
    """Identity of the logged-in user."""

    id: str
    display_name: str
    email_address: str
    image_url: str | None = None
    reward_points: int = 0


class CreateSessionRequest(CamelModel):
    """Exchange an identity token for a backend session."""

    id_token: str


class SessionResponse(CamelModel):
    """Backend session issued for an identity token."""

    access_token: str
    refresh_token: str
    user_profile: UserProfile


class RefreshSessionRequest(CamelModel):
    """Exchange a refresh token for a renewed token pair."""

    refresh_token: str


class TokenPair(CamelModel):
    """Renewed credentials; the backend may omit a new refresh token."""

    access_token: str
    refresh_token: str | None = None


class ErrorResponse(CamelModel):
    """Structured error returned by the Viva backend."""

    code: str | None = None
    message: str


class PingResponse(BaseModel):
    """Health endpoint response."""

    response: str
