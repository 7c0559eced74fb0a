"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from supabase import AsyncClient, acreate_client
from supabase.lib.client_options import AsyncClientOptions

from agrilink.adapters.file_key_value_store import FileKeyValueStore
from agrilink.adapters.supabase_auth_provider import SupabaseAuthProvider
from agrilink.adapters.supabase_profile_repository import SupabaseProfileRepository
from agrilink.adapters.supabase_storage import SupabaseStorageAdapter
from agrilink.app_logging import configure_logging
from agrilink.config import Settings
from agrilink.services.auth import AuthService, CooldownPolicy
from agrilink.services.auth_state import AuthStateStore
from agrilink.services.navigation import NavigationGate, Navigator
from agrilink.services.onboarding import OnboardingFlow
from agrilink.services.persistence import AuthStatePersister
from agrilink.services.profiles import ProfileService
from agrilink.services.storage import KeyValueStore


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    storage: KeyValueStore
    state_store: AuthStateStore
    persister: AuthStatePersister
    auth_service: AuthService
    profile_service: ProfileService
    onboarding_flow: OnboardingFlow
    close_resources: Callable[[], Awaitable[None]]

    def navigation_gate(
        self, navigator: Navigator, current_path: str
    ) -> NavigationGate:
        """Create a gate bound to this container's state and the UI router."""
        return NavigationGate(
            state_store=self.state_store,
            profile_service=self.profile_service,
            navigator=navigator,
            current_path=current_path,
        )


async def build_container(
    settings: Settings | None = None,
    storage: KeyValueStore | None = None,
    supabase_client: AsyncClient | None = None,
) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    configure_logging(resolved_settings.log_level)
    resolved_storage = storage or FileKeyValueStore(resolved_settings.storage_path)
    client = supabase_client or await acreate_client(
        resolved_settings.supabase_url,
        resolved_settings.supabase_anon_key,
        options=AsyncClientOptions(
            auto_refresh_token=True,
            persist_session=True,
            storage=SupabaseStorageAdapter(resolved_storage),
        ),
    )

    state_store = AuthStateStore()
    persister = AuthStatePersister(resolved_storage)
    unsubscribe_persister = persister.attach(state_store)
    auth_service = AuthService(
        provider=SupabaseAuthProvider(client),
        state_store=state_store,
        persister=persister,
        cooldown_policy=CooldownPolicy(
            first_cooldown_seconds=resolved_settings.otp_first_cooldown_seconds,
            resend_cooldown_seconds=resolved_settings.otp_resend_cooldown_seconds,
        ),
    )
    profile_service = ProfileService(SupabaseProfileRepository(client))
    onboarding_flow = OnboardingFlow(
        auth_service=auth_service,
        profile_service=profile_service,
        country_code=resolved_settings.default_country_code,
    )

    async def close_resources() -> None:
        auth_service.close()
        await persister.flush()
        unsubscribe_persister()

    return AppContainer(
        settings=resolved_settings,
        storage=resolved_storage,
        state_store=state_store,
        persister=persister,
        auth_service=auth_service,
        profile_service=profile_service,
        onboarding_flow=onboarding_flow,
        close_resources=close_resources,
    )
