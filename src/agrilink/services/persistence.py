"""Persist the durable subset of AuthState across restarts."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from agrilink.domain.auth import AuthState, AuthUser, Session
from agrilink.services.auth_state import AuthStateStore
from agrilink.services.storage import KeyValueStore

logger = logging.getLogger(__name__)

STORAGE_KEY = "agrilink-auth"


class PersistedSession(BaseModel):
    """Serialized session tokens."""

    user_id: str
    phone: str | None = None
    access_token: str
    refresh_token: str
    expires_at: int

    @classmethod
    def from_session(cls, session: Session) -> "PersistedSession":
        return cls(
            user_id=session.user_id,
            phone=session.phone,
            access_token=session.access_token,
            refresh_token=session.refresh_token,
            expires_at=session.expires_at,
        )

    def to_session(self) -> Session:
        return Session(
            user=AuthUser(id=self.user_id, phone=self.phone),
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            expires_at=self.expires_at,
        )


class PersistedAuthState(BaseModel):
    """The part of AuthState that survives a restart."""

    version: int = 1
    session: PersistedSession | None = None
    saved_phone_number: str | None = None
    resend_count: int = Field(default=0, ge=0)
    otp_cooldown_until: float = Field(default=0, ge=0)

    @classmethod
    def from_state(cls, state: AuthState) -> "PersistedAuthState":
        return cls(
            session=(
                PersistedSession.from_session(state.session)
                if state.session
                else None
            ),
            saved_phone_number=state.saved_phone_number,
            resend_count=state.resend_count,
            otp_cooldown_until=state.otp_cooldown_until,
        )

    def state_fields(self) -> dict[str, object]:
        """Return the AuthState fields this snapshot restores."""
        return {
            "session": self.session.to_session() if self.session else None,
            "saved_phone_number": self.saved_phone_number,
            "resend_count": self.resend_count,
            "otp_cooldown_until": self.otp_cooldown_until,
        }


@dataclass
class AuthStatePersister:
    """Writes the persisted subset whenever it changes.

    Saves are scheduled as background tasks and coalesce to the latest
    snapshot, so a state transition never waits on storage.
    """

    store: KeyValueStore
    key: str = STORAGE_KEY
    _last_written: PersistedAuthState | None = field(default=None, init=False)
    _pending: PersistedAuthState | None = field(default=None, init=False)
    _task: asyncio.Task | None = field(default=None, init=False)

    def attach(self, state_store: AuthStateStore) -> Callable[[], None]:
        """Subscribe to the state store; returns the unsubscribe callable."""
        return state_store.subscribe(self.schedule_save)

    async def load(self) -> PersistedAuthState:
        """Read the persisted snapshot, falling back to defaults."""
        raw = await self.store.get(self.key)
        if raw is None:
            snapshot = PersistedAuthState()
        else:
            try:
                snapshot = PersistedAuthState.model_validate_json(raw)
            except PydanticValidationError:
                logger.warning("Discarding unreadable persisted auth state")
                snapshot = PersistedAuthState()
        self._last_written = snapshot
        return snapshot

    async def save(self, state: AuthState) -> None:
        """Write the persisted subset of ``state`` immediately."""
        await self._write(PersistedAuthState.from_state(state))

    def schedule_save(self, state: AuthState) -> None:
        """Queue a background write if the persisted subset changed."""
        snapshot = PersistedAuthState.from_state(state)
        if snapshot == self._last_written and self._pending is None:
            return
        self._pending = snapshot
        if self._task is not None and not self._task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, deferring auth state save")
            return
        self._task = loop.create_task(self._drain())

    async def flush(self) -> None:
        """Wait for queued writes to land."""
        if self._task is not None and not self._task.done():
            await self._task
        if self._pending is not None:
            await self._drain()

    async def _drain(self) -> None:
        while self._pending is not None:
            snapshot = self._pending
            self._pending = None
            if snapshot == self._last_written:
                continue
            try:
                await self._write(snapshot)
            except Exception:
                logger.exception("Failed to persist auth state")

    async def _write(self, snapshot: PersistedAuthState) -> None:
        await self.store.set(self.key, snapshot.model_dump_json())
        self._last_written = snapshot
