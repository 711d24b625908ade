"""Sign-in, sign-up and sign-out flows on top of the session."""

from __future__ import annotations

import structlog

from .identity import IdentityClient
from .models import PasswordResetResponse
from .session import UserSession
from .session_client import SessionClient

logger = structlog.get_logger(__name__)


class AuthenticationManager:
    """Turns credentials into a logged-in ``UserSession``.

    Federated providers (Google, Apple) are handled outside this package;
    they end by passing their identity token to ``create_session``.
    """

    def __init__(
        self,
        session: UserSession,
        identity_client: IdentityClient,
        session_client: SessionClient,
    ) -> None:
        self.session = session
        self.identity_client = identity_client
        self.session_client = session_client

    async def sign_in(self, email: str, password: str) -> None:
        """Sign in with email and password and log the session in."""
        logger.info("sign_in_started", email=email)
        try:
            auth_response = await self.identity_client.sign_in(email, password)
            logger.debug("sign_in_authenticated")
            await self.create_session(auth_response.id_token)
        except Exception as e:
            logger.error("sign_in_failed", error=str(e))
            raise
        logger.info("sign_in_succeeded")

    async def sign_up(self, email: str, password: str) -> None:
        """Register a new account and log the session in."""
        logger.info("sign_up_started", email=email)
        try:
            auth_response = await self.identity_client.sign_up(email, password)
            logger.debug("sign_up_registered")
            await self.create_session(auth_response.id_token)
        except Exception as e:
            logger.error("sign_up_failed", error=str(e))
            raise
        logger.info("sign_up_succeeded")

    async def create_session(self, id_token: str) -> None:
        """Exchange an identity token for a backend session."""
        logger.debug("session_create_started")
        response = await self.session_client.create_session(id_token)
        self.session.log_in(response.user_profile, response.access_token, response.refresh_token)

    async def sign_out(self) -> None:
        logger.info("sign_out")
        self.session.log_out()

    async def reset_password(self, email: str) -> PasswordResetResponse:
        """Send a password reset email."""
        logger.info("password_reset_requested", email=email)
        try:
            response = await self.identity_client.reset_password(email)
        except Exception as e:
            logger.error("password_reset_failed", error=str(e))
            raise
        logger.info("password_reset_sent", email=response.email)
        return response
