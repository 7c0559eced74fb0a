"""Shared test fixtures."""

import asyncio
import logging
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field, replace

import pytest

from agrilink.config import Settings
from agrilink.domain.auth import AuthEvent, AuthUser, Session
from agrilink.domain.errors import ProfileFetchError, ProviderError
from agrilink.domain.navigation import Route
from agrilink.domain.profiles import UserProfile
from agrilink.services.auth import AuthChangeCallback, AuthProvider, AuthService
from agrilink.services.auth_state import AuthStateStore
from agrilink.services.navigation import Navigator
from agrilink.services.persistence import AuthStatePersister
from agrilink.services.profiles import ProfileRepository, ProfileService
from agrilink.services.storage import InMemoryKeyValueStore

PHONE = "+255712345678"
START_TIME = 1_700_000_000.0


def make_session(
    user_id: str = "user-1",
    phone: str | None = PHONE,
    expires_at: int = int(START_TIME) + 3600,
) -> Session:
    return Session(
        user=AuthUser(id=user_id, phone=phone),
        access_token=f"access-{user_id}",
        refresh_token=f"refresh-{user_id}",
        expires_at=expires_at,
    )


@dataclass
class FakeClock:
    """Manually advanced wall clock."""

    now: float = START_TIME

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class FakeAuthProvider(AuthProvider):
    """In-memory auth provider that records calls."""

    session: Session = field(default_factory=make_session)
    current_session: Session | None = None
    request_error: Exception | None = None
    verify_error: Exception | None = None
    sign_out_error: Exception | None = None
    session_error: Exception | None = None
    requests: list[str] = field(default_factory=list)
    verifications: list[tuple[str, str]] = field(default_factory=list)
    sign_outs: int = 0
    listeners: list[AuthChangeCallback] = field(default_factory=list)
    gate: asyncio.Event | None = None

    async def request_otp(self, phone: str) -> None:
        self.requests.append(phone)
        await self._wait()
        if self.request_error:
            raise self.request_error

    async def verify_otp(self, phone: str, code: str) -> Session:
        self.verifications.append((phone, code))
        await self._wait()
        if self.verify_error:
            raise self.verify_error
        self.current_session = self.session
        return self.session

    async def sign_out(self) -> None:
        self.sign_outs += 1
        if self.sign_out_error:
            raise self.sign_out_error
        self.current_session = None

    async def get_current_session(self) -> Session | None:
        if self.session_error:
            raise self.session_error
        return self.current_session

    def on_auth_state_change(self, callback: AuthChangeCallback) -> Callable[[], None]:
        self.listeners.append(callback)

        def unsubscribe() -> None:
            self.listeners.remove(callback)

        return unsubscribe

    def emit(self, event: AuthEvent, session: Session | None) -> None:
        for listener in list(self.listeners):
            listener(event, session)

    async def _wait(self) -> None:
        if self.gate is not None:
            await self.gate.wait()


@dataclass
class InMemoryProfileRepository(ProfileRepository):
    """In-memory profile repository for tests."""

    profiles: dict[str, UserProfile] = field(default_factory=dict)
    fail_reads: bool = False
    fail_writes: bool = False
    writes: list[tuple[str, dict[str, object]]] = field(default_factory=list)

    async def get_profile(self, user_id: str) -> UserProfile | None:
        if self.fail_reads:
            raise ProfileFetchError("connection reset")
        return self.profiles.get(user_id)

    async def upsert_profile(
        self, user_id: str, changes: dict[str, object]
    ) -> UserProfile:
        if self.fail_writes:
            raise ProviderError("permission denied for table user_profiles")
        self.writes.append((user_id, dict(changes)))
        existing = self.profiles.get(user_id) or UserProfile(id=user_id)
        profile = replace(existing, **changes)
        self.profiles[user_id] = profile
        return profile


@dataclass
class RecordingNavigator(Navigator):
    """Navigator that records every redirect."""

    routes: list[Route] = field(default_factory=list)

    def replace(self, route: Route) -> None:
        self.routes.append(route)


@pytest.fixture(autouse=True)
def reset_package_logger() -> Iterator[None]:
    yield
    logger = logging.getLogger("agrilink")
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


@pytest.fixture
def settings() -> Settings:
    return Settings(
        supabase_url="https://example.supabase.co",
        supabase_anon_key="anon-key",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def provider() -> FakeAuthProvider:
    return FakeAuthProvider()


@pytest.fixture
def storage() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def state_store() -> AuthStateStore:
    return AuthStateStore()


@pytest.fixture
def persister(storage: InMemoryKeyValueStore) -> AuthStatePersister:
    return AuthStatePersister(storage)


@pytest.fixture
def auth_service(
    provider: FakeAuthProvider,
    state_store: AuthStateStore,
    persister: AuthStatePersister,
    clock: FakeClock,
) -> AuthService:
    return AuthService(
        provider=provider,
        state_store=state_store,
        persister=persister,
        clock=clock,
    )


@pytest.fixture
def profile_repository() -> InMemoryProfileRepository:
    return InMemoryProfileRepository()


@pytest.fixture
def profile_service(profile_repository: InMemoryProfileRepository) -> ProfileService:
    return ProfileService(profile_repository)


@pytest.fixture
def navigator() -> RecordingNavigator:
    return RecordingNavigator()
