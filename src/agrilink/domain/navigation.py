"""Routes and screen groups used by the navigation gate."""

from dataclasses import dataclass
from enum import Enum

from agrilink.domain.profiles import ProfileCompletionStatus


class ScreenGroup(Enum):
    """Top-level route groups of the app."""

    ONBOARDING = "(onboarding)"
    TABS = "(tabs)"
    OTHER = "other"

    @classmethod
    def from_path(cls, path: str) -> "ScreenGroup":
        """Classify a route path by its first segment."""
        segments = [segment for segment in path.split("/") if segment]
        if not segments:
            return cls.OTHER
        for group in (cls.ONBOARDING, cls.TABS):
            if segments[0] == group.value:
                return group
        return cls.OTHER


class Route(Enum):
    """Screens the gate can redirect to."""

    WELCOME = "/(onboarding)"
    PHONE_ENTRY = "/(onboarding)/auth"
    PROFILE_SETUP = "/(onboarding)/profile-setup"
    SHOP_LOCATION = "/(onboarding)/shop-location"
    SHOP_DETAILS = "/(onboarding)/shop-details"
    TABS = "/(tabs)"
    AUTH_CALLBACK = "/auth/callback"

    @property
    def group(self) -> ScreenGroup:
        return ScreenGroup.from_path(self.value)


STATUS_ROUTES: dict[ProfileCompletionStatus, Route] = {
    ProfileCompletionStatus.NEEDS_NAME: Route.PROFILE_SETUP,
    ProfileCompletionStatus.NEEDS_SHOP_ADDRESS: Route.SHOP_LOCATION,
    ProfileCompletionStatus.NEEDS_SHOP_DETAILS: Route.SHOP_DETAILS,
    ProfileCompletionStatus.COMPLETE: Route.TABS,
}


@dataclass(frozen=True)
class GateView:
    """Everything the gate needs to pick a redirect."""

    initialized: bool
    loading: bool
    has_session: bool
    current_path: str
    status: ProfileCompletionStatus | None = None
