"""
Route guard driven by the session controller.

Routes fall into three classes: public ("/"), onboarding ("/channels") and
authenticated (everything else, e.g. "/dashboard"). Until the session settles
the guard only reports loading; after that, error counts as unauthenticated.
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable

from tubedigest.client.session import SessionController, SessionState, SessionStatus

logger = logging.getLogger(__name__)

PUBLIC_ROUTES = frozenset({"/"})
ONBOARDING_ROUTE = "/channels"
DASHBOARD_ROUTE = "/dashboard"
LANDING_ROUTE = "/"


@dataclass(frozen=True)
class RouteDecision:
    loading: bool = False
    redirect: str | None = None


def _normalize(path: str) -> str:
    path = (path or "/").split("?", 1)[0].split("#", 1)[0]
    return path.rstrip("/") or "/"


def _is_onboarding(path: str) -> bool:
    return path == ONBOARDING_ROUTE or path.startswith(ONBOARDING_ROUTE + "/")


def resolve_route(state: SessionState, path: str) -> RouteDecision:
    path = _normalize(path)
    if not state.settled:
        return RouteDecision(loading=True)

    public = path in PUBLIC_ROUTES
    if state.status in (SessionStatus.UNAUTHENTICATED, SessionStatus.ERROR):
        return RouteDecision(redirect=None if public else LANDING_ROUTE)

    if state.status == SessionStatus.AUTHENTICATED_PENDING:
        return RouteDecision(redirect=None if _is_onboarding(path) else ONBOARDING_ROUTE)

    # onboarded
    if public:
        return RouteDecision(redirect=DASHBOARD_ROUTE)
    return RouteDecision()


class NavigationGuard:
    """Follows the controller and navigates when the current route is not allowed."""

    def __init__(self, controller: SessionController, navigate: Callable[[str], Any], path: str = LANDING_ROUTE):
        self._navigate = navigate
        self.path = _normalize(path)
        self.decision = RouteDecision(loading=True)
        self._last_redirect: str | None = None
        self._state = controller.state
        self._unsubscribe = controller.subscribe(self._on_state)

    def _on_state(self, state: SessionState) -> None:
        self._state = state
        self._apply()

    def _apply(self) -> None:
        self.decision = resolve_route(self._state, self.path)
        target = self.decision.redirect
        if target is None:
            self._last_redirect = None
            return
        if target == self._last_redirect:
            return
        self._last_redirect = target
        logger.info("Redirecting %s -> %s (%s)", self.path, target, self._state.status.value)
        self._navigate(target)

    def set_path(self, path: str) -> None:
        self.path = _normalize(path)
        self._apply()

    def close(self) -> None:
        self._unsubscribe()
