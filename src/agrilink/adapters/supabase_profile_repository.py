"""Supabase-backed profile repository."""

from dataclasses import dataclass
from datetime import UTC, datetime

import httpx
from supabase import AsyncClient

from agrilink.domain.errors import ProfileFetchError, ProviderError
from agrilink.domain.profiles import PROFILE_FIELDS, UserProfile
from agrilink.services.profiles import ProfileRepository

_TABLE = "user_profiles"


@dataclass
class SupabaseProfileRepository(ProfileRepository):
    """Supabase implementation for the ``user_profiles`` table."""

    client: AsyncClient

    async def get_profile(self, user_id: str) -> UserProfile | None:
        """Return the profile row for a user, if present."""
        try:
            response = (
                await self.client.table(_TABLE)
                .select("*")
                .eq("id", user_id)
                .limit(1)
                .execute()
            )
        except httpx.HTTPError as exc:
            raise ProfileFetchError("Network error while loading profile") from exc
        except Exception as exc:
            raise ProfileFetchError(str(exc) or "Failed to load profile") from exc
        if not response.data:
            return None
        return _row_to_profile(response.data[0])

    async def upsert_profile(
        self, user_id: str, changes: dict[str, object]
    ) -> UserProfile:
        """Create or update the profile row and return it."""
        payload = {"id": user_id, **changes}
        payload["updated_at"] = datetime.now(tz=UTC).isoformat()
        try:
            response = await self.client.table(_TABLE).upsert(payload).execute()
        except httpx.HTTPError as exc:
            raise ProviderError("Network error while saving profile") from exc
        except Exception as exc:
            raise ProviderError(str(exc) or "Failed to save profile") from exc
        if not response.data:
            raise ProviderError("Failed to save profile in Supabase")
        return _row_to_profile(response.data[0])


def _row_to_profile(row: dict[str, object]) -> UserProfile:
    values = {name: row.get(name) for name in PROFILE_FIELDS}
    values["onboarding_completed"] = bool(row.get("onboarding_completed"))
    return UserProfile(
        id=str(row["id"]),
        created_at=_parse_timestamp(row.get("created_at")),
        updated_at=_parse_timestamp(row.get("updated_at")),
        **values,
    )


def _parse_timestamp(value: object) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))
