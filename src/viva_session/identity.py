"""Email/password identity exchange."""

from __future__ import annotations

from typing import TypeVar

from pydantic import BaseModel

from .client import APIClient
from .errors import (
    APIErrorResponse,
    InvalidCredentialsError,
    LoginError,
    SignUpError,
    VivaClientError,
)
from .models import (
    AuthErrorResponse,
    AuthRequest,
    AuthResponse,
    PasswordResetRequest,
    PasswordResetResponse,
)

T = TypeVar("T", bound=BaseModel)

INVALID_CREDENTIAL_MESSAGES = {"INVALID_EMAIL", "INVALID_LOGIN_CREDENTIALS", "INVALID_PASSWORD"}


class IdentityClient:
    """Exchanges credentials for an identity token.

    ``client`` must be an anonymous APIClient pointed at the identity
    endpoint (``.../v1``); its requests carry no bearer token.
    """

    def __init__(self, client: APIClient, api_key: str) -> None:
        self.client = client
        self.api_key = api_key

    async def _accounts_post(self, action: str, body: BaseModel, response_model: type[T]) -> T:
        return await self.client.post(
            f"/accounts:{action}",
            response_model,
            body=body,
            params={"key": self.api_key},
            error_model=AuthErrorResponse,
        )

    async def sign_in(self, email: str, password: str) -> AuthResponse:
        """Sign in with email and password.

        Raises:
            InvalidCredentialsError: If the email or password is wrong
            LoginError: For any other failure
        """
        try:
            return await self._accounts_post(
                "signInWithPassword",
                AuthRequest(email=email, password=password),
                AuthResponse,
            )
        except APIErrorResponse as e:
            if _error_message(e) in INVALID_CREDENTIAL_MESSAGES:
                raise InvalidCredentialsError("Invalid email or password.") from e
            raise LoginError("Error logging in. Please try again.") from e
        except VivaClientError as e:
            raise LoginError("Error logging in. Please try again.") from e

    async def sign_up(self, email: str, password: str) -> AuthResponse:
        """Register a new account.

        Raises:
            SignUpError: If the account could not be created
        """
        try:
            return await self._accounts_post(
                "signUp",
                AuthRequest(email=email, password=password),
                AuthResponse,
            )
        except APIErrorResponse as e:
            message = _error_message(e)
            if message == "EMAIL_EXISTS":
                raise SignUpError("An account with this email already exists.") from e
            raise SignUpError("Error creating account. Please try again.") from e
        except VivaClientError as e:
            raise SignUpError("Error creating account. Please try again.") from e

    async def reset_password(self, email: str) -> PasswordResetResponse:
        """Send a password reset email."""
        return await self._accounts_post(
            "sendOobCode",
            PasswordResetRequest(email=email),
            PasswordResetResponse,
        )


def _error_message(error: APIErrorResponse) -> str:
    payload = error.error
    if isinstance(payload, AuthErrorResponse):
        # Messages may carry a suffix such as "WEAK_PASSWORD : Password should be..."
        return payload.error.message.split(" ", 1)[0]
    return ""
