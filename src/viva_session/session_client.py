"""Backend session creation and renewal."""

from __future__ import annotations

from .client import APIClient
from .models import CreateSessionRequest, RefreshSessionRequest, SessionResponse, TokenPair


class SessionClient:
    """Exchanges identity and refresh tokens for backend sessions.

    Must be given an APIClient without a refresh coordinator, so that a 401
    from the refresh endpoint cannot trigger another refresh.
    """

    CREATE_PATH = "/viva/session"
    REFRESH_PATH = "/viva/session/refresh"

    def __init__(self, client: APIClient) -> None:
        self.client = client

    async def create_session(self, id_token: str) -> SessionResponse:
        """Create a session (tokens and profile) for an identity token."""
        return await self.client.post(
            self.CREATE_PATH,
            SessionResponse,
            body=CreateSessionRequest(id_token=id_token),
        )

    async def refresh_session(self, refresh_token: str) -> TokenPair:
        """Renew the access token; the response may omit a new refresh token."""
        return await self.client.post(
            self.REFRESH_PATH,
            TokenPair,
            body=RefreshSessionRequest(refresh_token=refresh_token),
        )
