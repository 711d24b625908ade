"""Authoritative holder of the logged-in user's credentials.

``UserSession`` keeps an immutable ``SessionState`` snapshot and replaces it
wholesale on every change, so readers always observe either the complete
old state or the complete new one. Every change is persisted as a single
record in the ``SecureStore``; an unreadable record restores as "logged out".
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum

import structlog
from pydantic import ValidationError

from .errors import NotLoggedInError
from .models import CamelModel, UserProfile
from .secure_store import SecureStore

logger = structlog.get_logger(__name__)

SESSION_STORE_KEY = "session"


class SessionEvent(StrEnum):
    """Kinds of session change delivered to listeners."""

    LOGGED_IN = "logged_in"
    TOKENS_UPDATED = "tokens_updated"
    PROFILE_UPDATED = "profile_updated"
    LOGGED_OUT = "logged_out"


@dataclass(frozen=True)
class SessionState:
    """Point-in-time view of the session."""

    is_logged_in: bool = False
    access_token: str | None = None
    refresh_token: str | None = None
    profile: UserProfile | None = None

    @property
    def is_usable(self) -> bool:
        """True when the session can authenticate requests."""
        return self.is_logged_in and bool(self.access_token) and bool(self.refresh_token)


SessionListener = Callable[[SessionEvent, SessionState], None]


class SessionRecord(CamelModel):
    """Persisted form of the session. Device-local, not a stable format."""

    access_token: str | None = None
    refresh_token: str | None = None
    is_logged_in: bool = False
    profile_blob: str


class UserSession:
    """Single shared session instance, injected into every collaborator."""

    def __init__(self, store: SecureStore, store_key: str = SESSION_STORE_KEY) -> None:
        self._store = store
        self._store_key = store_key
        self._state = SessionState()
        self._write_lock = threading.Lock()
        self._listeners: list[SessionListener] = []

    # Read accessors

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_logged_in(self) -> bool:
        return self._state.is_logged_in

    @property
    def access_token(self) -> str | None:
        return self._state.access_token

    @property
    def refresh_token(self) -> str | None:
        return self._state.refresh_token

    @property
    def profile(self) -> UserProfile | None:
        return self._state.profile

    @property
    def user_id(self) -> str:
        """ID of the logged-in user.

        Raises:
            NotLoggedInError: If no user is logged in
        """
        profile = self._state.profile
        if profile is None:
            raise NotLoggedInError("No user is logged in")
        return profile.id

    def current_access_token(self) -> str | None:
        """Access token to attach to outbound requests. Never blocks."""
        return self._state.access_token

    # Listeners

    def add_listener(self, listener: SessionListener) -> Callable[[], None]:
        """Register a callback for session changes.

        Returns:
            A function that removes the listener again
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _notify(self, event: SessionEvent, state: SessionState) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, state)
            except Exception:
                logger.exception("session_listener_failed", session_event=str(event))

    # Mutations

    def restore(self) -> bool:
        """Restore the persisted session.

        Missing or undecodable storage leaves the session logged out; this
        never raises and never notifies listeners.

        Returns:
            True if a logged-in session was restored
        """
        try:
            blob = self._store.get(self._store_key)
        except OSError as e:
            logger.warning("session_restore_failed", reason="store_unreadable", error=str(e))
            return False

        if blob is None:
            logger.info("session_restore_skipped", reason="no_session")
            return False

        try:
            record = SessionRecord.model_validate_json(blob)
            profile = UserProfile.model_validate_json(record.profile_blob)
        except (ValidationError, ValueError):
            logger.warning("session_restore_failed", reason="corrupt_record")
            return False

        if not record.is_logged_in:
            logger.info("session_restore_skipped", reason="not_logged_in")
            return False

        with self._write_lock:
            self._state = SessionState(
                is_logged_in=True,
                access_token=record.access_token,
                refresh_token=record.refresh_token,
                profile=profile,
            )
        logger.info("session_restored", user_id=profile.id)
        return True

    def log_in(self, profile: UserProfile, access_token: str, refresh_token: str) -> None:
        """Replace the whole session with a freshly authenticated one."""
        state = SessionState(
            is_logged_in=True,
            access_token=access_token,
            refresh_token=refresh_token,
            profile=profile,
        )
        with self._write_lock:
            self._state = state
            self._persist(state)
        logger.info("session_logged_in", user_id=profile.id)
        self._notify(SessionEvent.LOGGED_IN, state)

    def update_tokens(
        self,
        access_token: str,
        refresh_token: str | None = None,
        expected_refresh_token: str | None = None,
    ) -> bool:
        """Swap in renewed tokens, keeping the current refresh token if none is given.

        Tokens are only written into a logged-in session. With
        ``expected_refresh_token`` the update also requires the session to still
        hold that refresh token, so tokens renewed for a session that was
        logged out or replaced in the meantime are dropped.

        Returns:
            True if the tokens were stored
        """
        with self._write_lock:
            current = self._state
            if not current.is_logged_in or (
                expected_refresh_token is not None
                and current.refresh_token != expected_refresh_token
            ):
                logger.warning("session_token_update_discarded")
                return False
            state = SessionState(
                is_logged_in=current.is_logged_in,
                access_token=access_token,
                refresh_token=refresh_token if refresh_token is not None else current.refresh_token,
                profile=current.profile,
            )
            self._state = state
            self._persist(state)
        logger.debug("session_tokens_updated", refresh_token_rotated=refresh_token is not None)
        self._notify(SessionEvent.TOKENS_UPDATED, state)
        return True

    def update_profile(self, profile: UserProfile) -> None:
        """Replace the profile of the logged-in user.

        Raises:
            NotLoggedInError: If no user is logged in
        """
        with self._write_lock:
            current = self._state
            if not current.is_logged_in:
                raise NotLoggedInError("Cannot update the profile of a logged-out session")
            state = SessionState(
                is_logged_in=True,
                access_token=current.access_token,
                refresh_token=current.refresh_token,
                profile=profile,
            )
            self._state = state
            self._persist(state)
        self._notify(SessionEvent.PROFILE_UPDATED, state)

    def log_out(self, expected_refresh_token: str | None = None) -> None:
        """Clear the session and delete the persisted record. Safe to repeat.

        With ``expected_refresh_token`` the session is only cleared while it
        still holds that refresh token.
        """
        with self._write_lock:
            previous = self._state
            if (
                expected_refresh_token is not None
                and previous.refresh_token != expected_refresh_token
            ):
                return
            state = SessionState()
            self._state = state
            try:
                self._store.delete(self._store_key)
            except OSError as e:
                logger.error("session_delete_failed", error=str(e))

        if previous == state:
            return
        logger.info("session_logged_out")
        self._notify(SessionEvent.LOGGED_OUT, state)

    def _persist(self, state: SessionState) -> None:
        """Write the snapshot; must be called with the write lock held."""
        if state.profile is None:
            # A record without a profile can never be restored
            return
        record = SessionRecord(
            access_token=state.access_token,
            refresh_token=state.refresh_token,
            is_logged_in=state.is_logged_in,
            profile_blob=state.profile.model_dump_json(by_alias=True),
        )
        try:
            self._store.put(self._store_key, record.model_dump_json(by_alias=True).encode("utf-8"))
        except OSError as e:
            logger.error("session_persist_failed", error=str(e))
