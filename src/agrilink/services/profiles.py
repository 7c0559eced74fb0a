"""Shop owner profiles and onboarding completion."""

import logging
from dataclasses import dataclass
from typing import Protocol

from agrilink.domain.errors import NotAuthenticatedError
from agrilink.domain.profiles import (
    PROFILE_FIELDS,
    ProfileCompletionStatus,
    UserProfile,
)

logger = logging.getLogger(__name__)


class ProfileRepository(Protocol):
    """Persistence interface for user profiles."""

    async def get_profile(self, user_id: str) -> UserProfile | None:
        """Return the profile row for a user, if present."""

    async def upsert_profile(
        self, user_id: str, changes: dict[str, object]
    ) -> UserProfile:
        """Create or update the profile row and return it."""


def evaluate_profile_completion(
    profile: UserProfile | None,
) -> ProfileCompletionStatus:
    """Classify a profile by the first onboarding field it is missing.

    Name is checked before the shop address, so a blank name wins even when
    the address is filled in.
    """
    if profile is None:
        return ProfileCompletionStatus.NEEDS_NAME
    if not (profile.full_name or "").strip():
        return ProfileCompletionStatus.NEEDS_NAME
    if not profile.region or not profile.district or not profile.street_area:
        return ProfileCompletionStatus.NEEDS_SHOP_ADDRESS
    return ProfileCompletionStatus.COMPLETE


def resolve_onboarding_status(
    profile: UserProfile | None,
) -> ProfileCompletionStatus:
    """Onboarding status with ``onboarding_completed`` as the source of truth.

    The derived field check only picks which step comes next while the flag
    is unset. Once set, the flag wins and a derived mismatch is logged.
    """
    derived = evaluate_profile_completion(profile)
    if profile is not None and profile.onboarding_completed:
        if derived is not ProfileCompletionStatus.COMPLETE:
            logger.warning(
                "Profile %s is marked onboarded but derived status is %s",
                profile.id,
                derived.value,
            )
        return ProfileCompletionStatus.COMPLETE
    if derived is ProfileCompletionStatus.COMPLETE:
        return ProfileCompletionStatus.NEEDS_SHOP_DETAILS
    return derived


@dataclass
class ProfileService:
    """Application service for profile reads, writes and completion checks."""

    repository: ProfileRepository

    async def get_profile(self, user_id: str | None) -> UserProfile | None:
        if not user_id:
            raise NotAuthenticatedError()
        return await self.repository.get_profile(user_id)

    async def upsert_profile(
        self, user_id: str | None, changes: dict[str, object]
    ) -> UserProfile:
        """Write the given profile fields, creating the row when needed."""
        if not user_id:
            raise NotAuthenticatedError()
        unknown = set(changes) - set(PROFILE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown profile fields: {sorted(unknown)}")
        payload = {key: value for key, value in changes.items() if value is not None}
        if payload.get("onboarding_completed") is False:
            # The flag only ever moves forward.
            payload.pop("onboarding_completed")
        return await self.repository.upsert_profile(user_id, payload)

    async def update_personal_info(
        self,
        user_id: str | None,
        full_name: str,
        phone: str | None = None,
        profile_image_url: str | None = None,
    ) -> UserProfile:
        return await self.upsert_profile(
            user_id,
            {
                "full_name": full_name,
                "phone": phone,
                "profile_image_url": profile_image_url,
            },
        )

    async def update_shop_location(
        self, user_id: str | None, region: str, district: str, street_area: str
    ) -> UserProfile:
        return await self.upsert_profile(
            user_id,
            {"region": region, "district": district, "street_area": street_area},
        )

    async def update_shop_details(
        self,
        user_id: str | None,
        shop_name: str,
        shop_type: str,
        business_size: str | None = None,
    ) -> UserProfile:
        return await self.upsert_profile(
            user_id,
            {
                "shop_name": shop_name,
                "shop_type": shop_type,
                "business_size": business_size,
            },
        )

    async def complete_onboarding(self, user_id: str | None) -> UserProfile:
        return await self.upsert_profile(user_id, {"onboarding_completed": True})

    async def has_completed_onboarding(self, user_id: str | None) -> bool:
        try:
            profile = await self.get_profile(user_id)
        except Exception:
            logger.exception("Failed to check onboarding status")
            return False
        return bool(profile and profile.onboarding_completed)

    async def check_profile_completion(
        self, user_id: str | None
    ) -> ProfileCompletionStatus:
        """Derived completion status; lookup failures degrade to ``needs_name``."""
        profile = await self._fetch_for_status(user_id)
        return evaluate_profile_completion(profile)

    async def onboarding_status(
        self, user_id: str | None
    ) -> ProfileCompletionStatus:
        """Flag-aware status used to route the user through onboarding."""
        profile = await self._fetch_for_status(user_id)
        return resolve_onboarding_status(profile)

    async def _fetch_for_status(self, user_id: str | None) -> UserProfile | None:
        if not user_id:
            logger.info("No authenticated user; profile needs a name")
            return None
        try:
            return await self.repository.get_profile(user_id)
        except Exception:
            logger.exception("Failed to fetch profile for %s", user_id)
            return None
