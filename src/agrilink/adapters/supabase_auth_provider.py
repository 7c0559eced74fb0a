"""Supabase-backed phone OTP auth provider."""

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import httpx
from supabase import AsyncClient

from agrilink.domain.auth import AuthEvent, AuthUser, Session
from agrilink.domain.errors import ProviderError
from agrilink.services.auth import AuthChangeCallback, AuthProvider

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

NETWORK_ERROR_MESSAGE = "Network error. Check your connection and try again."


@dataclass
class SupabaseAuthProvider(AuthProvider):
    """Supabase implementation of SMS one-time passcode sign-in."""

    client: AsyncClient

    async def request_otp(self, phone: str) -> None:
        """Ask Supabase to text a passcode to ``phone``."""
        await _call(
            lambda: self.client.auth.sign_in_with_otp({"phone": phone}),
            "Failed to send OTP",
        )

    async def verify_otp(self, phone: str, code: str) -> Session:
        """Verify an SMS passcode and return the issued session."""
        response = await _call(
            lambda: self.client.auth.verify_otp(
                {"phone": phone, "token": code, "type": "sms"}
            ),
            "Invalid OTP code",
        )
        if response.session is None:
            raise ProviderError("Verification did not return a session")
        return to_session(response.session)

    async def sign_out(self) -> None:
        await _call(self.client.auth.sign_out, "Sign out failed")

    async def get_current_session(self) -> Session | None:
        session = await _call(self.client.auth.get_session, "Failed to get session")
        return to_session(session) if session else None

    def on_auth_state_change(self, callback: AuthChangeCallback) -> Callable[[], None]:
        """Forward Supabase auth events as domain events."""

        def forward(event: str, session: Any) -> None:
            callback(AuthEvent.parse(event), to_session(session) if session else None)

        subscription = self.client.auth.on_auth_state_change(forward)
        return subscription.unsubscribe


def to_session(raw: Any) -> Session:
    """Map a Supabase session object onto the domain Session."""
    expires_at = raw.expires_at
    if expires_at is None:
        expires_at = int(time.time()) + int(raw.expires_in or 0)
    return Session(
        user=AuthUser(id=str(raw.user.id), phone=_e164(raw.user.phone)),
        access_token=raw.access_token,
        refresh_token=raw.refresh_token,
        expires_at=int(expires_at),
    )


def _e164(phone: str | None) -> str | None:
    # Supabase stores phone numbers without the leading plus.
    if not phone:
        return None
    return phone if phone.startswith("+") else f"+{phone}"


async def _call(operation: Callable[[], Awaitable[_T]], fallback: str) -> _T:
    try:
        return await operation()
    except httpx.HTTPError as exc:
        logger.warning("Supabase auth request failed: %s", exc)
        raise ProviderError(NETWORK_ERROR_MESSAGE) from exc
    except Exception as exc:
        message = getattr(exc, "message", None) or str(exc) or fallback
        raise ProviderError(message) from exc
