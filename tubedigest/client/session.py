"""
Session controller: the dashboard's authentication state machine.

    unknown -> restoring -> validating -> authenticated-onboarded
                                       -> authenticated-pending-onboarding
                                       -> unauthenticated
                                       -> error
    authenticated-* -> logging-out -> unauthenticated (+ navigate to landing)

Construct one controller at application start and hand it to whatever needs
it (navigation guard, views). Restored state is tentative (confirmed=False)
until GET /me succeeds. Only one validation runs at a time; logout bumps a
generation counter so a validation that finishes afterwards is discarded.
After an OAuth redirect, validation polls with exponential backoff until the
session cookie is visible or the attempts run out.
"""
import asyncio
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Awaitable, Callable
from urllib.parse import parse_qs, urlparse

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from tubedigest.client.api import BackendClient
from tubedigest.client.session_storage import SessionData, SessionStorage
from tubedigest.errors import AuthenticationRequired, NetworkError, TubeDigestError

logger = logging.getLogger(__name__)

LANDING_PATH = "/"


class SessionStatus(str, Enum):
    UNKNOWN = "unknown"
    RESTORING = "restoring"
    VALIDATING = "validating"
    AUTHENTICATED_ONBOARDED = "authenticated-onboarded"
    AUTHENTICATED_PENDING = "authenticated-pending-onboarding"
    UNAUTHENTICATED = "unauthenticated"
    ERROR = "error"
    LOGGING_OUT = "logging-out"


UNSETTLED = frozenset({
    SessionStatus.UNKNOWN,
    SessionStatus.RESTORING,
    SessionStatus.VALIDATING,
    SessionStatus.LOGGING_OUT,
})


@dataclass(frozen=True)
class SessionState:
    status: SessionStatus = SessionStatus.UNKNOWN
    user: dict | None = None
    is_authenticated: bool = False
    has_completed_onboarding: bool = False
    last_checked: int | None = None
    error: str | None = None
    # False while the state only comes from local storage
    confirmed: bool = False

    @property
    def is_loading(self) -> bool:
        return self.status in UNSETTLED

    @property
    def settled(self) -> bool:
        return self.status not in UNSETTLED


Listener = Callable[[SessionState], Any]


def is_oauth_redirect(url: str = "", referrer: str = "") -> bool:
    """True when the page load looks like the end of an OAuth round trip."""
    query = parse_qs(urlparse(url or "").query)
    if "code" in query or "success" in query.get("auth", []):
        return True
    ref = urlparse(referrer or "")
    if ref.hostname == "accounts.google.com":
        return True
    return ref.path.rstrip("/").endswith("/auth/google/callback")


class SessionController:
    def __init__(
        self,
        api: BackendClient,
        storage: SessionStorage,
        navigate: Callable[[str], Any],
        *,
        landing_path: str = LANDING_PATH,
        network_attempts: int = 3,
        network_wait=None,
        oauth_poll_attempts: int = 5,
        oauth_poll_delay: float = 0.25,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.api = api
        self.storage = storage
        self._navigate = navigate
        self.landing_path = landing_path
        self.network_attempts = network_attempts
        self.network_wait = network_wait if network_wait is not None else wait_exponential(multiplier=0.5, max=4)
        self.oauth_poll_attempts = max(1, oauth_poll_attempts)
        self.oauth_poll_delay = oauth_poll_delay
        self._sleep = sleep

        self._state = SessionState()
        self._listeners: dict[object, Listener] = {}
        self._generation = 0
        self._inflight: int | None = None
        self._polling = False

    # --- state & listeners ---

    @property
    def state(self) -> SessionState:
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a listener. It is called right away with the current state,
        then on every change, until the returned unsubscribe is called.
        """
        token = object()
        self._listeners[token] = listener
        self._call(listener, self._state)

        def unsubscribe() -> None:
            self._listeners.pop(token, None)

        return unsubscribe

    def _call(self, listener: Listener, state: SessionState) -> None:
        try:
            listener(state)
        except Exception:
            logger.exception("Session listener failed")

    def _publish(self, state: SessionState) -> None:
        if state == self._state:
            return
        logger.debug("Session %s -> %s", self._state.status.value, state.status.value)
        self._state = state
        for token, listener in list(self._listeners.items()):
            # a listener may unsubscribe another one mid-broadcast
            if token in self._listeners:
                self._call(listener, state)

    def _update(self, **changes: Any) -> None:
        self._publish(replace(self._state, **changes))

    # --- lifecycle ---

    def restore_session(self) -> SessionState:
        """Load the persisted session; tentative authenticated state if present, else unauthenticated."""
        data = self.storage.load()
        if data is None or not data.is_authenticated or not data.user:
            if data is not None:
                self.storage.clear()
            self._publish(SessionState(status=SessionStatus.UNAUTHENTICATED))
            return self._state
        self._publish(SessionState(
            status=SessionStatus.RESTORING,
            user=data.user,
            is_authenticated=True,
            has_completed_onboarding=data.has_completed_onboarding,
            last_checked=data.last_checked,
            confirmed=False,
        ))
        return self._state

    async def start(self, url: str = "", referrer: str = "") -> SessionState:
        """Initial page load: poll after an OAuth redirect, else restore then validate."""
        if is_oauth_redirect(url, referrer):
            logger.info("OAuth redirect detected; polling session validation")
            return await self._validate_after_oauth()
        state = self.restore_session()
        if state.status == SessionStatus.RESTORING:
            return await self.validate()
        return state

    async def validate(self) -> SessionState:
        """Check the session against the backend. No-op while another validation is running."""
        if self._inflight is not None or self._polling:
            logger.debug("Validation already in flight; skipping")
            return self._state
        return await self._validate(settle=True)

    async def refresh(self) -> SessionState:
        return await self.validate()

    async def _validate(self, settle: bool) -> SessionState:
        self._generation += 1
        generation = self._generation
        self._inflight = generation
        self._update(status=SessionStatus.VALIDATING, error=None)
        try:
            try:
                user = await self._get_me()
                onboarded = await self._fetch_onboarding()
            except AuthenticationRequired:
                if generation != self._generation or not settle:
                    return self._state
                logger.info("Session rejected by backend; clearing persisted session")
                self.storage.clear()
                self._publish(SessionState(status=SessionStatus.UNAUTHENTICATED, confirmed=True))
                return self._state
            except TubeDigestError as e:
                if generation != self._generation or not settle:
                    return self._state
                logger.warning("Session validation failed: %s", e)
                # keep any restored user: a network blip must not log anyone out
                self._update(status=SessionStatus.ERROR, error=str(e))
                return self._state

            if generation != self._generation:
                logger.debug("Discarding stale validation result")
                return self._state

            now = self.storage.now_ms()
            self.storage.save(SessionData(
                user=user,
                is_authenticated=True,
                last_checked=now,
                has_completed_onboarding=onboarded,
            ))
            self._publish(SessionState(
                status=SessionStatus.AUTHENTICATED_ONBOARDED if onboarded else SessionStatus.AUTHENTICATED_PENDING,
                user=user,
                is_authenticated=True,
                has_completed_onboarding=onboarded,
                last_checked=now,
                confirmed=True,
            ))
            return self._state
        finally:
            if self._inflight == generation:
                self._inflight = None

    async def _get_me(self) -> dict:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.network_attempts),
            wait=self.network_wait,
            retry=retry_if_exception_type(NetworkError),
            reraise=True,
        ):
            with attempt:
                return await self.api.get_me()

    async def _fetch_onboarding(self) -> bool:
        try:
            return len(await self.api.get_selected()) > 0
        except AuthenticationRequired:
            raise
        except TubeDigestError as e:
            logger.warning("Could not load selection for onboarding check: %s", e)
            return self._state.has_completed_onboarding

    async def _validate_after_oauth(self) -> SessionState:
        self._polling = True
        try:
            for attempt in range(self.oauth_poll_attempts):
                last = attempt == self.oauth_poll_attempts - 1
                state = await self._validate(settle=last)
                if state.confirmed and state.is_authenticated:
                    return state
                if not last:
                    await self._sleep(self.oauth_poll_delay * (2 ** attempt))
            return self._state
        finally:
            self._polling = False

    async def logout(self) -> None:
        """
        Forget the session locally first, then tell the backend (best effort),
        then navigate to the landing page whatever the backend said.
        """
        self._generation += 1
        self._inflight = None
        self.storage.clear()
        self._publish(SessionState(status=SessionStatus.LOGGING_OUT))
        try:
            await self.api.logout()
        except Exception as e:
            logger.warning("Backend logout failed; local session already cleared: %s", e)
        finally:
            self._publish(SessionState(status=SessionStatus.UNAUTHENTICATED, confirmed=True))
            self._navigate(self.landing_path)
