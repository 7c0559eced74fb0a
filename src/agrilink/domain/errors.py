"""Error types shared across the AgriLink client core."""


class AgriLinkError(Exception):
    """Base error carrying a user-facing message and a stable code."""

    code = "AGRILINK_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class CooldownActiveError(AgriLinkError):
    """Raised when a code is requested before the resend cooldown ends."""

    code = "COOLDOWN_ACTIVE"

    def __init__(self, remaining_seconds: int) -> None:
        super().__init__(
            f"Please wait {format_remaining(remaining_seconds)} "
            "before requesting another code"
        )
        self.remaining_seconds = remaining_seconds


class ProviderError(AgriLinkError):
    """Failure reported by the remote auth or profile backend."""

    code = "PROVIDER_ERROR"


class ValidationError(AgriLinkError):
    """Malformed user input caught before any remote call."""

    code = "VALIDATION_ERROR"


class ProfileFetchError(AgriLinkError):
    """Profile lookup failed."""

    code = "PROFILE_FETCH_ERROR"


class NotAuthenticatedError(AgriLinkError):
    """An operation needs a signed-in user and there is none."""

    code = "NOT_AUTHENTICATED"

    def __init__(self, message: str = "User must be authenticated") -> None:
        super().__init__(message)


class OperationInProgressError(AgriLinkError):
    """The same action is already running."""

    code = "OPERATION_IN_PROGRESS"


class OperationSupersededError(AgriLinkError):
    """A newer operation replaced this one and its result was dropped."""

    code = "OPERATION_SUPERSEDED"


def format_remaining(seconds: int) -> str:
    """Render a duration as ``Xm Ys`` or ``Ys``."""
    seconds = max(0, seconds)
    minutes, rest = divmod(seconds, 60)
    if minutes > 0:
        return f"{minutes}m {rest}s"
    return f"{rest}s"
