"""
Session state machine.

    loading ──probe ok──▶ authenticated(user)
       │                     │      ▲
       └──probe failed──▶ unauthenticated ◀── logout / any 401

One SessionStore lives for the whole process. Listeners (the sync engine
first of all) are told about every transition so nothing polls while the
session is not authenticated.
"""

from __future__ import annotations

import inspect
import logging
from typing import Awaitable, Callable, List, Optional, Union

from jobdash.core.exceptions import AppException, RedirectToLogin
from jobdash.auth.models import SessionState, SessionStatus, User
from jobdash.auth.service import AuthService

logger = logging.getLogger(__name__)

SessionListener = Callable[[SessionState, SessionState], Union[Awaitable[None], None]]


class SessionStore:
    """Owns the current SessionState and drives its transitions."""

    def __init__(self, auth: AuthService):
        self.auth = auth
        self._state = SessionState.loading()
        self._listeners: List[SessionListener] = []

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def status(self) -> SessionStatus:
        return self._state.status

    @property
    def user(self) -> Optional[User]:
        return self._state.user

    @property
    def is_authenticated(self) -> bool:
        return self._state.is_authenticated

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register a transition listener. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ==================== Transitions ====================

    async def initialize(self) -> SessionState:
        """Probe the backend for an existing session."""
        try:
            user = await self.auth.me()
        except AppException as e:
            logger.info(f"No active session: {e.detail}")
            await self._transition(SessionState.unauthenticated())
        else:
            await self._transition(SessionState.authenticated(user))
        return self._state

    async def login(self, username: str, password: str) -> User:
        """Log in. On failure the server's message is re-raised unchanged."""
        try:
            user = await self.auth.login(username, password)
        except AppException as e:
            logger.info(f"Login failed for {username!r}: {e.detail}")
            await self._transition(SessionState.unauthenticated())
            raise
        await self._transition(SessionState.authenticated(user))
        return user

    async def logout(self) -> None:
        """End the session and always raise RedirectToLogin."""
        try:
            await self.auth.logout()
        except AppException as e:
            logger.warning(f"Server-side logout failed: {e.detail}")
        await self._transition(SessionState.unauthenticated())
        raise RedirectToLogin()

    async def handle_unauthorized(self) -> None:
        """A call came back 401: the session is gone."""
        if self._state.status != SessionStatus.UNAUTHENTICATED:
            logger.info("Received 401, dropping session")
            await self._transition(SessionState.unauthenticated())

    async def _transition(self, new: SessionState) -> None:
        old = self._state
        if old == new:
            return
        self._state = new
        who = f" as {new.user.username}" if new.user else ""
        logger.info(f"Session {old.status.value} -> {new.status.value}{who}")

        for listener in list(self._listeners):
            result = listener(old, new)
            if inspect.isawaitable(result):
                await result
