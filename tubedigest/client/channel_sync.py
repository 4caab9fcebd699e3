"""
Channel sync: joins the channel directory with the user's digest selection
and manages edits to it.

- "channels" (the directory) is cached for a couple of minutes; the selection
  ("selected-channels") is never served from cache, since the cap check and
  onboarding detection depend on it.
- Reads retry transient failures (network, 503, other 5xx) up to 3 times with
  exponential backoff; 401s and other 4xx answers are raised immediately.
- Toggles only record pending edits (silently); save_pending() applies them
  as idempotent PUTs, removals first so a swap at the cap never trips the
  store's limit, then invalidates once and notifies once.
- save() replaces the whole selection after a local cap pre-check.
"""
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol

from cachetools import TTLCache
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from tubedigest.client.api import BackendClient
from tubedigest.errors import (
    SELECTION_LIMIT,
    ApiError,
    LimitExceeded,
    NetworkError,
    TubeDigestError,
    UpstreamUnavailable,
)

logger = logging.getLogger(__name__)

CHANNELS_KEY = "channels"
SELECTED_KEY = "selected-channels"
DIGESTS_KEY = "digests"

DEFAULT_TTLS = {
    CHANNELS_KEY: 120.0,
    SELECTED_KEY: 0.0,
    DIGESTS_KEY: 300.0,
}

_MISSING = object()


def is_transient(exc: BaseException) -> bool:
    """Connectivity failures, upstream outages and 5xx answers; never 401, 4xx or bugs."""
    if isinstance(exc, (NetworkError, UpstreamUnavailable)):
        return True
    return isinstance(exc, ApiError) and exc.status_code >= 500


class QueryCache:
    """Keyed read cache with a TTL per key; a TTL of 0 means never cached."""

    def __init__(self, ttls: dict[str, float] | None = None, timer: Callable[[], float] = time.monotonic):
        self._ttls = {**DEFAULT_TTLS, **(ttls or {})}
        self._timer = timer
        self._caches: dict[str, TTLCache] = {}

    def _cache(self, key: str) -> TTLCache | None:
        ttl = self._ttls.get(key, 0.0)
        if ttl <= 0:
            return None
        if key not in self._caches:
            self._caches[key] = TTLCache(maxsize=1, ttl=ttl, timer=self._timer)
        return self._caches[key]

    def get(self, key: str, default: Any = None) -> Any:
        cache = self._cache(key)
        if cache is None:
            return default
        return cache.get(key, default)

    def set(self, key: str, value: Any) -> None:
        cache = self._cache(key)
        if cache is not None:
            cache[key] = value

    def invalidate(self, *keys: str) -> None:
        for key in keys:
            cache = self._caches.get(key)
            if cache is not None:
                cache.pop(key, None)
        logger.debug("Invalidated %s", ", ".join(keys))

    async def fetch(self, key: str, loader: Callable[[], Awaitable[Any]]) -> Any:
        value = self.get(key, _MISSING)
        if value is not _MISSING:
            return value
        value = await loader()
        self.set(key, value)
        return value


class Notifier(Protocol):
    def success(self, message: str, description: str = "") -> None: ...

    def warning(self, message: str, description: str = "") -> None: ...

    def error(self, message: str, description: str = "") -> None: ...


class LoggingNotifier:
    def success(self, message: str, description: str = "") -> None:
        logger.info("%s: %s", message, description)

    def warning(self, message: str, description: str = "") -> None:
        logger.warning("%s: %s", message, description)

    def error(self, message: str, description: str = "") -> None:
        logger.error("%s: %s", message, description)


@dataclass(frozen=True)
class ChannelView:
    channel_id: str
    title: str
    thumbnail: str | None
    is_selected: bool
    is_pending: bool = False


class ChannelSync:
    def __init__(
        self,
        api: BackendClient,
        cache: QueryCache | None = None,
        notifier: Notifier | None = None,
        *,
        limit: int = SELECTION_LIMIT,
        read_attempts: int = 3,
        retry_wait=None,
    ):
        self.api = api
        self.cache = cache if cache is not None else QueryCache()
        self.notifier = notifier if notifier is not None else LoggingNotifier()
        self.limit = limit
        self.read_attempts = read_attempts
        self.retry_wait = retry_wait if retry_wait is not None else wait_exponential(multiplier=1, max=30)

        self._server_selected: dict[str, str] = {}  # channel id -> title, server order
        self._titles: dict[str, str] = {}
        self._pending: dict[str, bool] = {}

    # --- reads ---

    async def _read(self, loader: Callable[[], Awaitable[Any]]) -> Any:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.read_attempts),
            wait=self.retry_wait,
            retry=retry_if_exception(is_transient),
            reraise=True,
        ):
            with attempt:
                return await loader()

    async def all_channels(self) -> list[dict]:
        channels = await self.cache.fetch(CHANNELS_KEY, lambda: self._read(self.api.list_channels))
        for c in channels:
            self._titles.setdefault(c["channelId"], c.get("title") or c["channelId"])
        return channels

    async def selected_channels(self) -> list[dict]:
        selected = await self.cache.fetch(SELECTED_KEY, lambda: self._read(self.api.get_selected))
        self._server_selected = {s["channelId"]: s.get("title") or s["channelId"] for s in selected}
        return selected

    async def channels(self) -> list[ChannelView]:
        """Directory entries annotated with selection membership (pending edits applied)."""
        directory = await self.all_channels()
        await self.selected_channels()
        projected = set(self.projected_selection())
        return [
            ChannelView(
                channel_id=c["channelId"],
                title=c.get("title") or "",
                thumbnail=c.get("thumbnail"),
                is_selected=c["channelId"] in projected,
                is_pending=c["channelId"] in self._pending,
            )
            for c in directory
        ]

    # --- pending edits ---

    @property
    def pending(self) -> dict[str, bool]:
        return dict(self._pending)

    @property
    def has_changes(self) -> bool:
        return bool(self._pending)

    def projected_selection(self) -> list[str]:
        """Server selection with pending edits applied, in display order."""
        ids = [cid for cid in self._server_selected if self._pending.get(cid, True)]
        ids.extend(cid for cid, sel in self._pending.items() if sel and cid not in self._server_selected)
        return ids

    def toggle(self, channel_id: str, selected: bool, title: str | None = None) -> bool:
        """
        Record a pending edit. Refuses (with a warning, no network call) when it
        would take the projected selection past the cap. Returns whether the
        edit was accepted.
        """
        projected = self.projected_selection()
        if selected and channel_id not in projected and len(projected) >= self.limit:
            self.notifier.warning(
                "Channel Limit Reached",
                f"You can only select up to {self.limit} channels. Please deselect another channel first.",
            )
            return False
        if title:
            self._titles[channel_id] = title
        if selected == (channel_id in self._server_selected):
            # toggled back to what the server already has
            self._pending.pop(channel_id, None)
        else:
            self._pending[channel_id] = selected
        return True

    def discard_pending(self) -> None:
        self._pending.clear()

    async def save_pending(self) -> list[str]:
        """
        Apply pending edits (removals, then additions) and refresh dependents.
        Edits that were not applied stay pending. Returns the applied channel ids.
        """
        if not self._pending:
            return []
        removals = [cid for cid, sel in self._pending.items() if not sel]
        additions = [cid for cid, sel in self._pending.items() if sel]
        applied: list[str] = []
        try:
            for cid in removals + additions:
                selected = self._pending[cid]
                title = self._titles.get(cid) if selected else None
                await self.api.set_channel_selected(cid, selected, title=title)
                if selected:
                    self._server_selected[cid] = title or cid
                else:
                    self._server_selected.pop(cid, None)
                self._pending.pop(cid)
                applied.append(cid)
        except TubeDigestError as e:
            self.notifier.error("Save Failed", str(e) or "Failed to save changes.")
            raise
        finally:
            if applied:
                self.cache.invalidate(CHANNELS_KEY, SELECTED_KEY, DIGESTS_KEY)

        self.notifier.success("Changes Saved", "All channel changes have been saved successfully.")
        return applied

    # --- full replace ---

    async def save(self, channel_ids: list[str], titles: dict[str, str]) -> None:
        """Replace the whole selection. Over the cap: warning and LimitExceeded, no request sent."""
        ids = list(dict.fromkeys(cid.strip() for cid in channel_ids if cid and cid.strip()))
        if len(ids) > self.limit:
            self.notifier.warning(
                "Channel Limit Reached",
                f"Maximum {self.limit} channels allowed. Please remove some channels first.",
            )
            raise LimitExceeded(self.limit, len(ids))

        snapshot = {cid: titles.get(cid, cid) for cid in ids}
        try:
            await self.api.select_channels(ids, snapshot)
        except TubeDigestError as e:
            self.notifier.error("Save Failed", str(e) or "Failed to save channel selection.")
            raise

        self._server_selected = snapshot
        self._pending.clear()
        self.cache.invalidate(SELECTED_KEY, DIGESTS_KEY)
        self.notifier.success("Changes Saved", f"{len(ids)} channels selected for your digest.")
