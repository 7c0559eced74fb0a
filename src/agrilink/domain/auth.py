"""Domain models for phone OTP authentication."""

from dataclasses import dataclass
from enum import Enum

from agrilink.domain.errors import AgriLinkError


@dataclass(frozen=True)
class AuthUser:
    """The signed-in account as reported by the auth provider."""

    id: str
    phone: str | None = None


@dataclass(frozen=True)
class Session:
    """Tokens issued to a single user after a successful OTP check."""

    user: AuthUser
    access_token: str
    refresh_token: str
    expires_at: int

    @property
    def user_id(self) -> str:
        return self.user.id

    @property
    def phone(self) -> str | None:
        return self.user.phone

    def is_expired(self, now: float) -> bool:
        """Return True once the access token's expiry has passed."""
        return now >= self.expires_at


class AuthEvent(Enum):
    """Auth-change notifications emitted by the provider."""

    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"
    PASSWORD_RECOVERY = "PASSWORD_RECOVERY"
    MFA_CHALLENGE_VERIFIED = "MFA_CHALLENGE_VERIFIED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, raw: str) -> "AuthEvent":
        try:
            return cls(raw)
        except ValueError:
            return cls.UNKNOWN


class AuthPhase(Enum):
    """Coarse position in the sign-in flow, derived from AuthState."""

    UNAUTHENTICATED = "unauthenticated"
    OTP_REQUESTED = "otp_requested"
    VERIFYING = "verifying"
    AUTHENTICATED = "authenticated"


@dataclass(frozen=True)
class AuthState:
    """Immutable snapshot of the process-wide auth state."""

    session: Session | None = None
    loading: bool = False
    error: str | None = None
    initialized: bool = False
    otp_sent: bool = False
    verifying_otp: bool = False
    saved_phone_number: str | None = None
    otp_cooldown_until: float = 0
    resend_count: int = 0

    @property
    def user(self) -> AuthUser | None:
        return self.session.user if self.session else None

    @property
    def phase(self) -> AuthPhase:
        if self.session is not None:
            return AuthPhase.AUTHENTICATED
        if self.verifying_otp:
            return AuthPhase.VERIFYING
        if self.otp_sent:
            return AuthPhase.OTP_REQUESTED
        return AuthPhase.UNAUTHENTICATED

    def cooldown_active(self, now: float) -> bool:
        return now < self.otp_cooldown_until


@dataclass(frozen=True)
class AuthResult:
    """Outcome of an auth operation; failures never raise past the service."""

    ok: bool
    error: AgriLinkError | None = None

    @classmethod
    def success(cls) -> "AuthResult":
        return cls(ok=True)

    @classmethod
    def failure(cls, error: AgriLinkError) -> "AuthResult":
        return cls(ok=False, error=error)
