"""Session persistence and authenticated requests for the Viva client."""

from .app import VivaApp, create_app
from .auth_manager import AuthenticationManager
from .client import APIClient, AuthenticatedRequest
from .config import VivaSettings, load_settings
from .refresh import TokenRefreshCoordinator
from .session import SessionEvent, SessionState, UserSession

__all__ = [
    "APIClient",
    "AuthenticatedRequest",
    "AuthenticationManager",
    "SessionEvent",
    "SessionState",
    "TokenRefreshCoordinator",
    "UserSession",
    "VivaApp",
    "VivaSettings",
    "create_app",
    "load_settings",
]
