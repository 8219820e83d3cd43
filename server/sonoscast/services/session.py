"""Runs data operations with the stored token, refreshing it when needed.

A call that fails with a refreshable auth error gets exactly one refresh and
one retry. The refreshed TokenState is saved before the retry so a crash
between the two never loses the new tokens.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, TypeVar

from ..errors import NotAuthenticated
from ..models import TokenState
from .auth import AuthenticationManager
from .classifier import should_refresh
from .tokens import TokenStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CastSession:
    def __init__(
        self,
        auth: AuthenticationManager,
        store: TokenStore,
        refresh_skew: int = 60,
    ):
        self.auth = auth
        self.store = store
        self.refresh_skew = refresh_skew

    def current_state(self) -> TokenState:
        state = self.store.load()
        if state is None or not state.access_token:
            raise NotAuthenticated("Please authenticate first.")
        return state

    async def refresh(self, state: TokenState | None = None) -> TokenState:
        """Refresh and persist the token state."""
        state = state or self.current_state()
        new_state = await self.auth.refresh(state)
        self.store.save(new_state)
        return new_state

    async def run(self, operation: Callable[[str], Awaitable[T]]) -> T:
        """Call `operation(access_token)`, handling refresh-and-retry-once."""
        state = self.current_state()
        refreshed = False

        if state.refresh_token and state.is_expired(self.refresh_skew):
            logger.info(f"Access token expired at {state.expires_at}, refreshing before call")
            state = await self.refresh(state)
            refreshed = True

        try:
            return await operation(state.access_token)
        except Exception as e:
            # At most one refresh per call
            if refreshed or not should_refresh(e):
                raise
            logger.info("Access token rejected, refreshing and retrying once")

        state = await self.refresh(state)
        return await operation(state.access_token)
