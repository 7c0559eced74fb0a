"""Phone OTP sign-in state machine."""

import asyncio
import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol

from agrilink.domain.auth import AuthEvent, AuthResult, AuthState, Session
from agrilink.domain.errors import (
    AgriLinkError,
    CooldownActiveError,
    OperationInProgressError,
    OperationSupersededError,
    ProviderError,
)
from agrilink.services.auth_state import AuthStateStore
from agrilink.services.persistence import AuthStatePersister

logger = logging.getLogger(__name__)

AuthChangeCallback = Callable[[AuthEvent, Session | None], None]

_OTP_LANE = "otp"


class AuthProvider(Protocol):
    """Remote service that issues and checks one-time passcodes."""

    async def request_otp(self, phone: str) -> None:
        """Send a one-time passcode by SMS."""

    async def verify_otp(self, phone: str, code: str) -> Session:
        """Exchange a passcode for a session."""

    async def sign_out(self) -> None:
        """Revoke the current session."""

    async def get_current_session(self) -> Session | None:
        """Return the live session, if any."""

    def on_auth_state_change(self, callback: AuthChangeCallback) -> Callable[[], None]:
        """Subscribe to auth events; returns the unsubscribe callable."""


@dataclass(frozen=True)
class CooldownPolicy:
    """Resend throttle applied after each successful code send."""

    first_cooldown_seconds: int = 60
    resend_cooldown_seconds: int = 6 * 60 * 60

    def duration_for(self, resend_count: int) -> int:
        if resend_count == 0:
            return self.first_cooldown_seconds
        return self.resend_cooldown_seconds


@dataclass
class AuthService:
    """Owns every write to AuthState.

    Operations return an AuthResult instead of raising; the failure message
    is also stored on ``AuthState.error`` for reactive readers. A code send
    overtaken by a newer OTP action only updates the resend throttle; a
    successful verification is always adopted.
    """

    provider: AuthProvider
    state_store: AuthStateStore
    persister: AuthStatePersister | None = None
    cooldown_policy: CooldownPolicy = field(default_factory=CooldownPolicy)
    clock: Callable[[], float] = time.time
    _epochs: dict[str, int] = field(default_factory=dict, init=False)
    _in_flight: set[str] = field(default_factory=set, init=False)
    _loading_owners: set[str] = field(default_factory=set, init=False)
    _unsubscribe: Callable[[], None] | None = field(default=None, init=False)
    _initializing: asyncio.Task | None = field(default=None, init=False)
    _verified_count: int = field(default=0, init=False)

    @property
    def state(self) -> AuthState:
        """Current auth snapshot."""
        return self.state_store.state

    async def ensure_initialized(self) -> AuthResult:
        """Run ``initialize`` once; later and concurrent callers share it."""
        if self.state.initialized:
            return AuthResult.success()
        if self._initializing is None or self._initializing.done():
            self._initializing = asyncio.ensure_future(self.initialize())
        return await self._initializing

    async def initialize(self) -> AuthResult:
        """Restore persisted state, load the live session and listen for changes."""
        logger.info("Initializing auth")
        self._detach_listener()
        self._hold_loading("initialize")
        error: AgriLinkError | None = None

        restored_session: Session | None = None
        if self.persister is not None:
            try:
                snapshot = await self.persister.load()
            except Exception:
                logger.exception("Failed to restore persisted auth state")
            else:
                fields = snapshot.state_fields()
                restored_session = fields.pop("session")
                if restored_session is not None and restored_session.is_expired(
                    self.clock()
                ):
                    logger.info("Discarding expired persisted session")
                    restored_session = None
                self.state_store.apply(session=restored_session, **fields)

        try:
            live_session = await self.provider.get_current_session()
        except Exception as exc:
            error = _provider_error(exc, "Failed to initialize auth")
            logger.warning("Could not load session: %s", error.message)
        else:
            self.state_store.apply(session=live_session)
            logger.info(
                "Initial session: %s",
                _mask_phone(live_session.phone) if live_session else "no user",
            )

        try:
            self._unsubscribe = self.provider.on_auth_state_change(
                self._handle_auth_event
            )
        except Exception as exc:
            logger.exception("Failed to subscribe to auth changes")
            error = error or _provider_error(exc, "Failed to initialize auth")

        self.state_store.apply(
            loading=self._release_loading("initialize"),
            initialized=True,
            error=error.message if error else None,
        )
        return AuthResult.failure(error) if error else AuthResult.success()

    async def request_otp(self, phone: str) -> AuthResult:
        """Send a code to ``phone`` unless the resend cooldown is running."""
        now = self.clock()
        state = self.state
        if state.cooldown_active(now):
            cooldown = CooldownActiveError(math.ceil(state.otp_cooldown_until - now))
            logger.info(
                "OTP request blocked by cooldown (%ss left)",
                cooldown.remaining_seconds,
            )
            self.state_store.apply(error=cooldown.message)
            return AuthResult.failure(cooldown)
        if "request_otp" in self._in_flight:
            return AuthResult.failure(
                OperationInProgressError("A code is already being sent")
            )

        epoch = self._begin(_OTP_LANE)
        verified_before = self._verified_count
        self._in_flight.add("request_otp")
        self._hold_loading("request_otp")
        self.state_store.apply(error=None)
        logger.info("Requesting OTP for %s", _mask_phone(phone))
        try:
            await self.provider.request_otp(phone)
        except Exception as exc:
            error = _provider_error(exc, "Authentication failed")
            logger.warning("OTP send failed: %s", error.message)
            changes: dict[str, object] = {
                "loading": self._release_loading("request_otp")
            }
            if self._is_current(_OTP_LANE, epoch):
                changes.update(error=error.message, otp_sent=False)
            self.state_store.apply(**changes)
            return AuthResult.failure(error)
        finally:
            self._in_flight.discard("request_otp")

        changes = {"loading": self._release_loading("request_otp")}
        if self._verified_count == verified_before:
            # A delivered code always counts toward the resend throttle.
            completed_at = self.clock()
            resend_count = self.state.resend_count
            cooldown_seconds = self.cooldown_policy.duration_for(resend_count)
            changes.update(
                otp_cooldown_until=completed_at + cooldown_seconds,
                resend_count=resend_count + 1,
            )
            logger.info("OTP sent; next send allowed in %ss", cooldown_seconds)
        if not self._is_current(_OTP_LANE, epoch):
            logger.info("OTP send result superseded; keeping only the throttle")
            self.state_store.apply(**changes)
            return AuthResult.failure(
                OperationSupersededError("Code request was replaced by a newer action")
            )

        self.state_store.apply(
            **changes, otp_sent=True, error=None, saved_phone_number=phone
        )
        return AuthResult.success()

    async def verify_otp(self, phone: str, code: str) -> AuthResult:
        """Check ``code`` and adopt the resulting session."""
        if "verify_otp" in self._in_flight:
            return AuthResult.failure(
                OperationInProgressError("Verification already in progress")
            )

        epoch = self._begin(_OTP_LANE)
        self._in_flight.add("verify_otp")
        self.state_store.apply(verifying_otp=True, error=None)
        logger.info("Verifying OTP for %s", _mask_phone(phone))
        try:
            session = await self.provider.verify_otp(phone, code)
        except Exception as exc:
            error = _provider_error(exc, "Invalid OTP code")
            logger.warning("OTP verification failed: %s", error.message)
            if self._is_current(_OTP_LANE, epoch):
                self.state_store.apply(verifying_otp=False, error=error.message)
            else:
                self.state_store.apply(verifying_otp=False)
            return AuthResult.failure(error)
        finally:
            self._in_flight.discard("verify_otp")

        # The provider now holds this session, so it is adopted even when a
        # newer OTP action started; that action becomes the stale one.
        self._verified_count += 1
        self._begin(_OTP_LANE)
        self.state_store.apply(
            session=session,
            verifying_otp=False,
            otp_sent=False,
            error=None,
            saved_phone_number=phone,
            resend_count=0,
            otp_cooldown_until=0,
        )
        logger.info("OTP verified for user %s", session.user_id)
        return AuthResult.success()

    async def sign_out(self) -> AuthResult:
        """Clear the local session and revoke it remotely.

        The local sign-out always happens. A provider failure is reported in
        the result and on ``AuthState.error`` but does not keep the session.
        """
        self._begin(_OTP_LANE)
        self._hold_loading("sign_out")
        self.state_store.apply(error=None)
        error: AgriLinkError | None = None
        try:
            await self.provider.sign_out()
        except Exception as exc:
            error = _provider_error(exc, "Sign out failed")
            logger.warning("Remote sign out failed: %s", error.message)

        self.state_store.apply(
            session=None,
            loading=self._release_loading("sign_out"),
            otp_sent=False,
            verifying_otp=False,
            saved_phone_number=None,
            resend_count=0,
            otp_cooldown_until=0,
            error=error.message if error else None,
        )
        logger.info("Signed out")
        return AuthResult.failure(error) if error else AuthResult.success()

    def can_resend_otp(self) -> bool:
        """Return True once the resend cooldown has elapsed."""
        return self.clock() >= self.state.otp_cooldown_until

    def resend_cooldown_remaining(self) -> float:
        """Seconds until another code may be requested."""
        return max(0.0, self.state.otp_cooldown_until - self.clock())

    def reset_otp_state(self) -> None:
        """Forget the OTP flow so the user can enter a different number."""
        self._begin(_OTP_LANE)
        self.state_store.apply(
            otp_sent=False,
            verifying_otp=False,
            resend_count=0,
            otp_cooldown_until=0,
            error=None,
        )

    def clear_error(self) -> None:
        """Dismiss the last error message."""
        self.state_store.apply(error=None)

    def set_saved_phone_number(self, phone: str | None) -> None:
        """Remember or forget the phone number used for sign-in."""
        self.state_store.apply(saved_phone_number=phone)

    def close(self) -> None:
        """Stop listening to provider auth events."""
        self._detach_listener()

    def _handle_auth_event(self, event: AuthEvent, session: Session | None) -> None:
        if event is AuthEvent.UNKNOWN:
            return
        logger.info(
            "Auth state changed: %s (%s)",
            event.value,
            _mask_phone(session.phone) if session else "no user",
        )
        changes: dict[str, object] = {"session": session, "error": None}
        if event is AuthEvent.SIGNED_IN and session and session.phone:
            changes["saved_phone_number"] = session.phone
        elif event is AuthEvent.SIGNED_OUT:
            changes["saved_phone_number"] = None
        self.state_store.apply(**changes)

    def _detach_listener(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _begin(self, lane: str) -> int:
        epoch = self._epochs.get(lane, 0) + 1
        self._epochs[lane] = epoch
        return epoch

    def _is_current(self, lane: str, epoch: int) -> bool:
        return self._epochs.get(lane, 0) == epoch

    def _hold_loading(self, owner: str) -> None:
        self._loading_owners.add(owner)
        self.state_store.apply(loading=True)

    def _release_loading(self, owner: str) -> bool:
        self._loading_owners.discard(owner)
        return bool(self._loading_owners)


def _provider_error(exc: Exception, fallback: str) -> AgriLinkError:
    if isinstance(exc, AgriLinkError):
        return exc
    return ProviderError(str(exc) or fallback)


def _mask_phone(phone: str | None) -> str:
    if not phone:
        return "unknown"
    return f"***{phone[-3:]}"
