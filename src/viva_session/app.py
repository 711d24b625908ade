"""Wiring of the session subsystem."""

from __future__ import annotations

import types
from contextlib import AsyncExitStack

from .auth_manager import AuthenticationManager
from .client import APIClient
from .config import VivaSettings
from .error_manager import ErrorManager
from .health import HealthClient
from .identity import IdentityClient
from .models import ErrorResponse
from .refresh import TokenRefreshCoordinator
from .secure_store import DotenvSecureStore, SecureStore
from .session import UserSession
from .session_client import SessionClient


class VivaApp:
    """Owns the single session and every client that shares it.

    Use as an async context manager: entering opens the HTTP clients,
    exiting closes them and stops background connectivity checks.
    """

    def __init__(self, settings: VivaSettings, store: SecureStore | None = None) -> None:
        self.settings = settings
        self.store: SecureStore = store or DotenvSecureStore(settings.secure_store_path)

        self.session = UserSession(self.store)
        self.session.restore()

        self.error_manager = ErrorManager()

        # Anonymous clients: identity exchange and session create/refresh
        self.identity_api = APIClient(
            settings.auth_base_url,
            referer=settings.referer,
            timeout=settings.timeout,
            log_bodies=settings.log_bodies,
        )
        self.session_api = APIClient(
            settings.base_url,
            referer=settings.referer,
            error_model=ErrorResponse,
            error_reporter=self.error_manager,
            timeout=settings.timeout,
            log_bodies=settings.log_bodies,
        )

        self.session_client = SessionClient(self.session_api)
        self.refresh_coordinator = TokenRefreshCoordinator(self.session, self.session_client)

        # Authenticated client for every domain request
        self.api = APIClient(
            settings.base_url,
            referer=settings.referer,
            session=self.session,
            refresh_coordinator=self.refresh_coordinator,
            error_reporter=self.error_manager,
            error_model=ErrorResponse,
            timeout=settings.timeout,
            log_bodies=settings.log_bodies,
        )

        self.identity_client = IdentityClient(self.identity_api, settings.auth_api_key)
        self.health_client = HealthClient(self.api)
        self.error_manager.set_ping(self.health_client.ping)
        self.auth = AuthenticationManager(self.session, self.identity_client, self.session_client)

        self._stack: AsyncExitStack | None = None

    async def __aenter__(self) -> VivaApp:
        stack = AsyncExitStack()
        await stack.__aenter__()
        try:
            for client in (self.identity_api, self.session_api, self.api):
                await stack.enter_async_context(client)
        except BaseException:
            await stack.aclose()
            raise
        self._stack = stack
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: types.TracebackType | None,
    ) -> None:
        await self.error_manager.aclose()
        if self._stack is not None:
            await self._stack.aclose()
            self._stack = None


def create_app(settings: VivaSettings, store: SecureStore | None = None) -> VivaApp:
    """Build the session subsystem, restoring any persisted session."""
    return VivaApp(settings, store)
