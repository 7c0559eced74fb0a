"""Single-writer container for the process-wide auth state."""

import logging
from collections.abc import Callable
from dataclasses import replace

from agrilink.domain.auth import AuthState

logger = logging.getLogger(__name__)

AuthStateListener = Callable[[AuthState], None]


class AuthStateStore:
    """Holds the current AuthState snapshot and notifies subscribers.

    Readers get immutable snapshots. Only the auth service calls ``apply``;
    everything else subscribes.
    """

    def __init__(self, initial: AuthState | None = None) -> None:
        self._state = initial or AuthState()
        self._listeners: list[AuthStateListener] = []

    @property
    def state(self) -> AuthState:
        return self._state

    def subscribe(self, listener: AuthStateListener) -> Callable[[], None]:
        """Register a listener and return a callable that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def apply(self, **changes: object) -> AuthState:
        """Replace fields of the current snapshot and notify listeners."""
        updated = replace(self._state, **changes)
        if updated == self._state:
            return self._state
        self._state = updated
        for listener in list(self._listeners):
            try:
                listener(updated)
            except Exception:
                logger.exception("Auth state listener failed")
        return updated
