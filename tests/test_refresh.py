"""Tests for coalesced token refresh."""

import asyncio

import pytest

from tests.stubs.viva_api_stub import GatedRefresher
from viva_session.errors import NoRefreshTokenError, RefreshError, RefreshFailedError, ResponseError
from viva_session.refresh import TokenRefreshCoordinator


async def _start_wave(coordinator, count):
    """Start count concurrent handle_unauthorized calls and let them attach."""
    tasks = [asyncio.create_task(coordinator.handle_unauthorized()) for _ in range(count)]
    await asyncio.sleep(0)
    return tasks


class TestCoalescing:
    """Test that concurrent 401s share one refresh."""

    async def test_concurrent_calls_share_one_refresh(self, logged_in_session):
        """Test N concurrent calls make exactly one refresh call."""
        refresher = GatedRefresher()
        coordinator = TokenRefreshCoordinator(logged_in_session, refresher)

        tasks = await _start_wave(coordinator, 5)
        assert coordinator.is_refreshing is True

        refresher.release()
        results = await asyncio.gather(*tasks)

        assert refresher.calls == ["R1"]
        assert all(result == results[0] for result in results)
        assert results[0].access_token == "A2"
        assert results[0].refresh_token == "R2"
        assert coordinator.is_refreshing is False

    async def test_success_updates_session(self, logged_in_session):
        """Test the renewed tokens land in the session."""
        refresher = GatedRefresher()
        refresher.release()
        coordinator = TokenRefreshCoordinator(logged_in_session, refresher)

        await coordinator.handle_unauthorized()

        assert logged_in_session.access_token == "A2"
        assert logged_in_session.refresh_token == "R2"
        assert logged_in_session.is_logged_in is True

    async def test_refresh_without_new_refresh_token(self, logged_in_session):
        """Test the prior refresh token is kept when the response omits one."""
        refresher = GatedRefresher(refresh_token=None)
        refresher.release()
        coordinator = TokenRefreshCoordinator(logged_in_session, refresher)

        tokens = await coordinator.handle_unauthorized()

        assert tokens.access_token == "A2"
        assert tokens.refresh_token == "R1"
        assert logged_in_session.refresh_token == "R1"

    async def test_concurrent_failure_shared(self, logged_in_session):
        """Test all waiters receive the same failure."""
        refresher = GatedRefresher(error=ResponseError(401, "refresh token revoked"))
        coordinator = TokenRefreshCoordinator(logged_in_session, refresher)

        tasks = await _start_wave(coordinator, 3)
        refresher.release()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert refresher.calls == ["R1"]
        assert all(isinstance(result, RefreshFailedError) for result in results)
        assert all(result is results[0] for result in results)
        assert isinstance(results[0].__cause__, ResponseError)

    async def test_failure_logs_out(self, logged_in_session):
        """Test a failed refresh leaves the session logged out."""
        refresher = GatedRefresher(error=ResponseError(500, "boom"))
        refresher.release()
        coordinator = TokenRefreshCoordinator(logged_in_session, refresher)

        with pytest.raises(RefreshFailedError):
            await coordinator.handle_unauthorized()

        assert logged_in_session.is_logged_in is False
        assert logged_in_session.access_token is None
        assert coordinator.is_refreshing is False

    async def test_new_wave_after_resolution(self, logged_in_session):
        """Test a 401 after a wave resolved starts a fresh refresh."""
        refresher = GatedRefresher()
        refresher.release()
        coordinator = TokenRefreshCoordinator(logged_in_session, refresher)

        await coordinator.handle_unauthorized()
        refresher.access_token, refresher.refresh_token = "A3", "R3"
        await coordinator.handle_unauthorized()

        assert refresher.calls == ["R1", "R2"]
        assert logged_in_session.access_token == "A3"

    async def test_new_wave_after_failure(self, logged_in_session, profile):
        """Test a failed wave returns to idle so a later call can try again."""
        refresher = GatedRefresher(error=ResponseError(503, "unavailable"))
        refresher.release()
        coordinator = TokenRefreshCoordinator(logged_in_session, refresher)

        with pytest.raises(RefreshError):
            await coordinator.handle_unauthorized()

        logged_in_session.log_in(profile, "A5", "R5")
        refresher.error = None
        tokens = await coordinator.handle_unauthorized()

        assert refresher.calls == ["R1", "R5"]
        assert tokens.access_token == "A2"


class TestNoRefreshToken:
    """Test refresh with no refresh token."""

    async def test_missing_refresh_token(self, session):
        """Test the coordinator fails immediately without calling the endpoint."""
        refresher = GatedRefresher()
        coordinator = TokenRefreshCoordinator(session, refresher)

        with pytest.raises(NoRefreshTokenError):
            await coordinator.handle_unauthorized()

        assert refresher.calls == []
        assert session.is_logged_in is False
        assert coordinator.is_refreshing is False

    async def test_missing_refresh_token_shared_by_waiters(self, session):
        """Test every waiter of the wave sees NoRefreshTokenError."""
        coordinator = TokenRefreshCoordinator(session, GatedRefresher())

        tasks = [asyncio.create_task(coordinator.handle_unauthorized()) for _ in range(3)]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert all(isinstance(result, NoRefreshTokenError) for result in results)


class TestCancellation:
    """Test that waiters giving up do not stop the refresh."""

    async def test_cancelled_waiter_does_not_cancel_refresh(self, logged_in_session):
        """Test the refresh completes for the remaining waiters."""
        refresher = GatedRefresher()
        coordinator = TokenRefreshCoordinator(logged_in_session, refresher)

        first, second = await _start_wave(coordinator, 2)
        first.cancel()
        await asyncio.sleep(0)
        refresher.release()

        tokens = await second
        assert tokens.access_token == "A2"
        assert first.cancelled() is True
        assert logged_in_session.access_token == "A2"

    async def test_refresh_completes_when_all_waiters_cancelled(self, logged_in_session):
        """Test the session is still updated when nobody waits any more."""
        refresher = GatedRefresher()
        coordinator = TokenRefreshCoordinator(logged_in_session, refresher)

        (only,) = await _start_wave(coordinator, 1)
        only.cancel()
        await asyncio.sleep(0)
        refresher.release()
        for _ in range(5):
            await asyncio.sleep(0)

        assert logged_in_session.access_token == "A2"
        assert coordinator.is_refreshing is False


async def _wait_for_refresh_call(refresher, attempts=100):
    for _ in range(attempts):
        if refresher.calls:
            return
        await asyncio.sleep(0)


class TestSessionChangesDuringRefresh:
    """Test sign-out and sign-in landing while a refresh is in flight."""

    async def test_log_out_during_refresh(self, logged_in_session, memory_store):
        """Test tokens renewed for a logged-out session are discarded."""
        refresher = GatedRefresher()
        coordinator = TokenRefreshCoordinator(logged_in_session, refresher)

        waiter = asyncio.create_task(coordinator.handle_unauthorized())
        await _wait_for_refresh_call(refresher)
        assert refresher.calls == ["R1"]

        logged_in_session.log_out()
        refresher.release()

        with pytest.raises(RefreshFailedError, match="Session changed"):
            await waiter

        assert logged_in_session.is_logged_in is False
        assert logged_in_session.access_token is None
        assert logged_in_session.refresh_token is None
        assert logged_in_session.profile is None
        assert memory_store.get("session") is None
        assert coordinator.is_refreshing is False

    async def test_log_in_during_refresh(self, logged_in_session, profile):
        """Test a new sign-in is not overwritten by the previous session's tokens."""
        refresher = GatedRefresher()
        coordinator = TokenRefreshCoordinator(logged_in_session, refresher)

        waiter = asyncio.create_task(coordinator.handle_unauthorized())
        await _wait_for_refresh_call(refresher)

        logged_in_session.log_in(profile, "B1", "S1")
        refresher.release()

        with pytest.raises(RefreshFailedError):
            await waiter

        assert logged_in_session.is_logged_in is True
        assert logged_in_session.access_token == "B1"
        assert logged_in_session.refresh_token == "S1"

    async def test_failed_refresh_keeps_new_sign_in(self, logged_in_session, profile):
        """Test a failing refresh of the previous session does not log the new one out."""
        refresher = GatedRefresher(error=ResponseError(401, "refresh token revoked"))
        coordinator = TokenRefreshCoordinator(logged_in_session, refresher)

        waiter = asyncio.create_task(coordinator.handle_unauthorized())
        await _wait_for_refresh_call(refresher)

        logged_in_session.log_in(profile, "B1", "S1")
        refresher.release()

        with pytest.raises(RefreshFailedError):
            await waiter

        assert logged_in_session.is_logged_in is True
        assert logged_in_session.access_token == "B1"

    async def test_next_wave_uses_new_session(self, logged_in_session, profile):
        """Test the wave after a discarded one refreshes the new session's token."""
        refresher = GatedRefresher()
        coordinator = TokenRefreshCoordinator(logged_in_session, refresher)

        waiter = asyncio.create_task(coordinator.handle_unauthorized())
        await _wait_for_refresh_call(refresher)
        logged_in_session.log_in(profile, "B1", "S1")
        refresher.release()
        with pytest.raises(RefreshFailedError):
            await waiter

        tokens = await coordinator.handle_unauthorized()

        assert refresher.calls == ["R1", "S1"]
        assert tokens.access_token == "A2"
        assert logged_in_session.refresh_token == "R2"
