"""Navigation gate deciding which screen group the user may see."""

import asyncio
import logging
from collections.abc import Callable
from typing import Protocol

from agrilink.domain.auth import AuthState
from agrilink.domain.navigation import STATUS_ROUTES, GateView, Route, ScreenGroup
from agrilink.domain.profiles import ProfileCompletionStatus
from agrilink.services.auth_state import AuthStateStore
from agrilink.services.profiles import ProfileService

logger = logging.getLogger(__name__)


class Navigator(Protocol):
    """Adapter over the UI router."""

    def replace(self, route: Route) -> None:
        """Replace the current screen with ``route``."""


def needs_profile_status(view: GateView) -> bool:
    """Return True when the redirect depends on the profile status."""
    if not view.initialized or view.loading or not view.has_session:
        return False
    group = ScreenGroup.from_path(view.current_path)
    return group is not ScreenGroup.ONBOARDING or _on_phone_entry(view)


def decide_redirect(view: GateView) -> Route | None:
    """Pick the screen to redirect to, or None to stay put.

    Nothing is decided until auth is initialized and idle. Signed-out users
    outside onboarding go to phone entry. Signed-in users outside onboarding
    go to the first unfinished onboarding step, or to the main tabs once
    onboarding is complete. A signed-in user still on phone entry is handed
    off the same way.
    """
    if not view.initialized or view.loading:
        return None
    group = ScreenGroup.from_path(view.current_path)
    in_onboarding = group is ScreenGroup.ONBOARDING

    if not view.has_session:
        return None if in_onboarding else Route.PHONE_ENTRY

    if in_onboarding and not _on_phone_entry(view):
        return None
    if view.status is None:
        return None
    if view.status is ProfileCompletionStatus.COMPLETE and group is ScreenGroup.TABS:
        return None
    return STATUS_ROUTES[view.status]


def _on_phone_entry(view: GateView) -> bool:
    return view.current_path.rstrip("/") == Route.PHONE_ENTRY.value


class NavigationGate:
    """Re-evaluates the redirect on every relevant auth or route change.

    Each evaluation takes an epoch; an evaluation that finishes after a newer
    one started is discarded, so only the latest state drives navigation.
    """

    def __init__(
        self,
        state_store: AuthStateStore,
        profile_service: ProfileService,
        navigator: Navigator,
        current_path: str = Route.WELCOME.value,
    ) -> None:
        self.state_store = state_store
        self.profile_service = profile_service
        self.navigator = navigator
        self.current_path = current_path
        self._epoch = 0
        self._last_key: tuple[object, ...] | None = None
        self._tasks: set[asyncio.Task] = set()
        self._unsubscribe: Callable[[], None] | None = None

    def attach(self) -> "NavigationGate":
        """Start listening to auth state changes."""
        if self._unsubscribe is None:
            self._unsubscribe = self.state_store.subscribe(self._on_state)
        self._schedule()
        return self

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def on_route_change(self, path: str) -> None:
        """Record a route change made by the UI and re-evaluate."""
        if path == self.current_path:
            return
        self.current_path = path
        self._schedule()

    async def evaluate(self) -> Route | None:
        """Compute the redirect for the latest state and apply it."""
        self._epoch += 1
        epoch = self._epoch
        state = self.state_store.state
        view = self._view(state)
        if needs_profile_status(view):
            user_id = state.user.id if state.user else None
            status = await self.profile_service.onboarding_status(user_id)
            if epoch != self._epoch:
                logger.debug("Discarding stale navigation evaluation")
                return None
            view = GateView(
                initialized=view.initialized,
                loading=view.loading,
                has_session=view.has_session,
                current_path=view.current_path,
                status=status,
            )
        target = decide_redirect(view)
        if target is None or target.value == self.current_path:
            return None
        logger.info("Redirecting %s -> %s", self.current_path, target.value)
        self.current_path = target.value
        self.navigator.replace(target)
        return target

    async def wait_idle(self) -> None:
        """Wait for scheduled evaluations to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    def _view(self, state: AuthState) -> GateView:
        return GateView(
            initialized=state.initialized,
            loading=state.loading,
            has_session=state.session is not None,
            current_path=self.current_path,
        )

    def _on_state(self, state: AuthState) -> None:
        key = (
            state.initialized,
            state.loading,
            state.user.id if state.user else None,
        )
        if key == self._last_key:
            return
        self._last_key = key
        self._schedule()

    def _schedule(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, navigation check deferred")
            return
        task = loop.create_task(self._run())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self) -> None:
        try:
            await self.evaluate()
        except Exception:
            logger.exception("Navigation check failed")
