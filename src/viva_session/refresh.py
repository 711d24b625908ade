"""Coalesced access-token refresh.

Any number of requests may discover an expired access token at the same
time. ``TokenRefreshCoordinator`` makes sure they share a single call to the
refresh endpoint: the first caller starts a refresh task, later callers
await the same task, and all of them see the same outcome.
"""

from __future__ import annotations

import asyncio
from typing import Protocol

import structlog

from .errors import NoRefreshTokenError, RefreshFailedError
from .models import TokenPair
from .session import UserSession

logger = structlog.get_logger(__name__)


class TokenRefresher(Protocol):
    """Exchanges a refresh token for a renewed token pair."""

    async def refresh_session(self, refresh_token: str) -> TokenPair: ...


class TokenRefreshCoordinator:
    """Ensures at most one refresh is in flight.

    States are Idle (no task) and Refreshing (a task is stored). Each wave
    is independent: a failed refresh returns to Idle so that a later 401 can
    try again.
    """

    def __init__(self, session: UserSession, refresher: TokenRefresher) -> None:
        self._session = session
        self._refresher = refresher
        self._refresh_task: asyncio.Task[TokenPair] | None = None

    @property
    def is_refreshing(self) -> bool:
        return self._refresh_task is not None

    async def handle_unauthorized(self) -> TokenPair:
        """Refresh the session's tokens, or join the refresh already running.

        Returns:
            The renewed tokens, as stored in the session

        Raises:
            NoRefreshTokenError: If the session holds no refresh token
            RefreshFailedError: If the refresh endpoint rejected the token or was
                unreachable, or the session was logged out or replaced meanwhile
        """
        # No await between the check and the assignment: atomic on the event loop
        task = self._refresh_task
        if task is None:
            task = asyncio.create_task(self._refresh())
            self._refresh_task = task
            task.add_done_callback(_consume_exception)
        else:
            logger.debug("token_refresh_joined")

        # A waiter giving up must not cancel the refresh for everyone else
        return await asyncio.shield(task)

    async def _refresh(self) -> TokenPair:
        try:
            logger.info("token_refresh_started")

            refresh_token = self._session.refresh_token
            if not refresh_token:
                logger.error("token_refresh_failed", reason="no_refresh_token")
                self._session.log_out()
                raise NoRefreshTokenError("No refresh token available")

            try:
                tokens = await self._refresher.refresh_session(refresh_token)
            except Exception as e:
                logger.error("token_refresh_failed", reason="refresh_rejected", error=str(e))
                # A session replaced during the refresh is not ours to log out
                self._session.log_out(expected_refresh_token=refresh_token)
                raise RefreshFailedError(f"Token refresh failed: {e}") from e

            if not self._session.update_tokens(
                tokens.access_token,
                tokens.refresh_token,
                expected_refresh_token=refresh_token,
            ):
                logger.warning("token_refresh_failed", reason="session_changed")
                raise RefreshFailedError("Session changed during token refresh")
            logger.info("token_refresh_succeeded")
            return TokenPair(
                access_token=tokens.access_token,
                refresh_token=self._session.refresh_token,
            )
        finally:
            self._refresh_task = None


def _consume_exception(task: asyncio.Task[TokenPair]) -> None:
    """Mark the outcome as retrieved even if every waiter was cancelled."""
    if not task.cancelled():
        task.exception()
