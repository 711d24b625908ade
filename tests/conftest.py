"""Pytest configuration and shared fixtures."""

import asyncio

import pytest
import respx

from tests.fixtures.session_fixtures import API_BASE_URL, REFERER, USER_PROFILE
from tests.stubs.viva_api_stub import VivaAPIStubber


@pytest.fixture
def memory_store():
    """Provide an empty in-memory secure store."""
    from viva_session.secure_store import MemorySecureStore

    return MemorySecureStore()


@pytest.fixture
def session(memory_store):
    """Provide a logged-out session backed by the memory store."""
    from viva_session.session import UserSession

    return UserSession(memory_store)


@pytest.fixture
def profile():
    """Provide the logged-in user's profile."""
    from viva_session.models import UserProfile

    return UserProfile.model_validate(USER_PROFILE)


@pytest.fixture
def logged_in_session(session, profile):
    """Provide a session logged in with access token A1 and refresh token R1."""
    session.log_in(profile, "A1", "R1")
    return session


@pytest.fixture
def error_manager():
    """Provide an error manager without connectivity polling."""
    from viva_session.error_manager import ErrorManager

    return ErrorManager()


@pytest.fixture
def respx_mock():
    """Provide a respx mock router for HTTP requests."""
    with respx.mock(assert_all_called=False) as respx_mock:
        yield respx_mock


@pytest.fixture
def stub_api(respx_mock):
    """Provide a Viva API stubber."""
    return VivaAPIStubber(respx_mock)


@pytest.fixture
def recorded_sleeps(monkeypatch):
    """Replace the pipeline's backoff sleep, recording requested delays."""
    delays = []
    real_sleep = asyncio.sleep

    async def fake_sleep(delay, *args, **kwargs):
        if delay:
            delays.append(delay)
        await real_sleep(0)

    monkeypatch.setattr("viva_session.client.asyncio.sleep", fake_sleep)
    return delays


@pytest.fixture
def make_client(error_manager):
    """Factory for API clients pointed at the stubbed backend."""
    from viva_session.client import APIClient
    from viva_session.models import ErrorResponse

    def factory(session=None, refresh_coordinator=None, error_model=ErrorResponse):
        return APIClient(
            API_BASE_URL,
            referer=REFERER,
            session=session,
            refresh_coordinator=refresh_coordinator,
            error_reporter=error_manager,
            error_model=error_model,
        )

    return factory
