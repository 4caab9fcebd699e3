"""Tests for channel sync: cached reads, pending edits and batched saves."""
import asyncio

import pytest
from tenacity import wait_none

from tubedigest.client.channel_sync import (
    CHANNELS_KEY,
    DIGESTS_KEY,
    SELECTED_KEY,
    ChannelSync,
    QueryCache,
)
from tubedigest.errors import ApiError, AuthenticationRequired, LimitExceeded, NetworkError, UpstreamUnavailable

DIRECTORY = [
    {"channelId": f"UC_{i}", "title": f"Channel {i}", "thumbnail": f"https://img/{i}.jpg"}
    for i in range(12)
]


class FakeChannelApi:
    def __init__(self, selected=(), list_errors=(), put_errors=None):
        self.selected = [{"channelId": cid, "title": f"Channel {cid[3:]}"} for cid in selected]
        self.list_errors = list(list_errors)
        self.put_errors = dict(put_errors or {})
        self.calls: list[tuple] = []

    async def list_channels(self):
        self.calls.append(("list",))
        if self.list_errors:
            raise self.list_errors.pop(0)
        return [dict(c) for c in DIRECTORY]

    async def get_selected(self):
        self.calls.append(("selected",))
        return [dict(s) for s in self.selected]

    async def select_channels(self, channel_ids, titles):
        self.calls.append(("select", list(channel_ids)))
        if len(channel_ids) > 10:
            raise LimitExceeded()
        self.selected = [{"channelId": cid, "title": titles.get(cid, cid)} for cid in channel_ids]
        return {"ok": True}

    async def set_channel_selected(self, channel_id, selected, title=None):
        self.calls.append(("put", channel_id, selected))
        if channel_id in self.put_errors:
            raise self.put_errors[channel_id]
        ids = [s["channelId"] for s in self.selected]
        if selected and channel_id not in ids:
            if len(ids) >= 10:
                raise LimitExceeded()
            self.selected.append({"channelId": channel_id, "title": title or channel_id})
        elif not selected:
            self.selected = [s for s in self.selected if s["channelId"] != channel_id]
        return {"ok": True, "selected": selected}

    def count(self, name):
        return sum(1 for call in self.calls if call[0] == name)


class RecordingNotifier:
    def __init__(self):
        self.events: list[tuple[str, str]] = []

    def success(self, message, description=""):
        self.events.append(("success", message))

    def warning(self, message, description=""):
        self.events.append(("warning", message))

    def error(self, message, description=""):
        self.events.append(("error", message))


class Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def _sync(api, clock=None):
    notifier = RecordingNotifier()
    cache = QueryCache(timer=clock or Clock())
    return ChannelSync(api, cache, notifier, retry_wait=wait_none()), notifier


# --- cache ---


def test_query_cache_ttls():
    clock = Clock()
    cache = QueryCache(timer=clock)
    cache.set(CHANNELS_KEY, ["a"])
    cache.set(SELECTED_KEY, ["b"])
    assert cache.get(CHANNELS_KEY) == ["a"]
    # selection is never served from cache
    assert cache.get(SELECTED_KEY) is None

    clock.now = 121
    assert cache.get(CHANNELS_KEY) is None


def test_query_cache_invalidate():
    cache = QueryCache(timer=Clock())
    cache.set(DIGESTS_KEY, {"items": []})
    cache.invalidate(DIGESTS_KEY, CHANNELS_KEY)
    assert cache.get(DIGESTS_KEY) is None


# --- reads ---


def test_channels_joins_directory_with_selection():
    api = FakeChannelApi(selected=["UC_1", "UC_3"])
    sync, _ = _sync(api)
    views = asyncio.run(sync.channels())
    assert [v.channel_id for v in views if v.is_selected] == ["UC_1", "UC_3"]
    assert views[0].thumbnail == "https://img/0.jpg"
    assert not any(v.is_pending for v in views)


def test_directory_is_cached_but_selection_is_not():
    clock = Clock()
    api = FakeChannelApi()
    sync, _ = _sync(api, clock)

    asyncio.run(sync.channels())
    asyncio.run(sync.channels())
    assert api.count("list") == 1
    assert api.count("selected") == 2

    clock.now = 121
    asyncio.run(sync.channels())
    assert api.count("list") == 2


def test_reads_retry_transient_errors():
    api = FakeChannelApi(list_errors=[NetworkError("blip"), UpstreamUnavailable()])
    sync, _ = _sync(api)
    assert len(asyncio.run(sync.channels())) == len(DIRECTORY)
    assert api.count("list") == 3


def test_reads_give_up_after_three_attempts():
    api = FakeChannelApi(list_errors=[NetworkError("down")] * 3)
    sync, _ = _sync(api)
    with pytest.raises(NetworkError):
        asyncio.run(sync.channels())
    assert api.count("list") == 3


def test_reads_never_retry_authentication_errors():
    api = FakeChannelApi(list_errors=[AuthenticationRequired()])
    sync, _ = _sync(api)
    with pytest.raises(AuthenticationRequired):
        asyncio.run(sync.channels())
    assert api.count("list") == 1


# --- full save ---


def test_save_over_cap_is_rejected_locally():
    api = FakeChannelApi()
    sync, notifier = _sync(api)
    with pytest.raises(LimitExceeded):
        asyncio.run(sync.save([f"UC_{i}" for i in range(11)], {}))
    assert api.count("select") == 0
    assert notifier.events == [("warning", "Channel Limit Reached")]


def test_save_invalidates_selection_and_digests():
    api = FakeChannelApi()
    sync, notifier = _sync(api)
    sync.cache.set(DIGESTS_KEY, {"stale": True})

    asyncio.run(sync.save(["UC_1", "UC_2", "UC_1"], {"UC_1": "One"}))

    assert api.calls[-1] == ("select", ["UC_1", "UC_2"])
    assert sync.cache.get(DIGESTS_KEY) is None
    assert notifier.events == [("success", "Changes Saved")]
    views = asyncio.run(sync.channels())
    assert [v.channel_id for v in views if v.is_selected] == ["UC_1", "UC_2"]


def test_save_failure_notifies_and_reraises():
    api = FakeChannelApi()

    async def broken(channel_ids, titles):
        raise UpstreamUnavailable()

    api.select_channels = broken
    sync, notifier = _sync(api)
    with pytest.raises(UpstreamUnavailable):
        asyncio.run(sync.save(["UC_1"], {}))
    assert notifier.events == [("error", "Save Failed")]


# --- pending edits ---


def test_toggles_are_silent_and_projected():
    api = FakeChannelApi(selected=["UC_1"])
    sync, notifier = _sync(api)
    asyncio.run(sync.channels())

    assert sync.toggle("UC_2", True) is True
    assert sync.toggle("UC_1", False) is True
    assert sync.pending == {"UC_2": True, "UC_1": False}
    assert sync.projected_selection() == ["UC_2"]
    assert notifier.events == []
    assert api.count("put") == 0


def test_toggling_back_cancels_the_pending_edit():
    api = FakeChannelApi(selected=["UC_1"])
    sync, _ = _sync(api)
    asyncio.run(sync.channels())

    sync.toggle("UC_1", False)
    sync.toggle("UC_1", True)
    assert sync.pending == {}
    assert sync.has_changes is False


def test_toggle_past_cap_is_refused_with_warning():
    api = FakeChannelApi(selected=[f"UC_{i}" for i in range(10)])
    sync, notifier = _sync(api)
    asyncio.run(sync.channels())

    assert sync.toggle("UC_11", True) is False
    assert sync.pending == {}
    assert notifier.events == [("warning", "Channel Limit Reached")]


def test_swap_at_cap_saves_removal_before_addition():
    api = FakeChannelApi(selected=[f"UC_{i}" for i in range(10)])
    sync, notifier = _sync(api)
    asyncio.run(sync.channels())

    assert sync.toggle("UC_11", True) is False
    assert sync.toggle("UC_0", False) is True
    assert sync.toggle("UC_11", True, title="Channel 11") is True

    applied = asyncio.run(sync.save_pending())

    assert applied == ["UC_0", "UC_11"]
    puts = [call for call in api.calls if call[0] == "put"]
    assert puts == [("put", "UC_0", False), ("put", "UC_11", True)]
    assert notifier.events[-1] == ("success", "Changes Saved")
    assert [e for e in notifier.events if e[0] == "success"] == [("success", "Changes Saved")]
    assert sync.pending == {}


def test_save_pending_invalidates_once_and_refetches():
    api = FakeChannelApi(selected=["UC_1"])
    sync, _ = _sync(api)
    asyncio.run(sync.channels())
    sync.cache.set(DIGESTS_KEY, {"stale": True})

    sync.toggle("UC_2", True)
    asyncio.run(sync.save_pending())

    assert sync.cache.get(DIGESTS_KEY) is None
    views = asyncio.run(sync.channels())
    assert api.count("list") == 2
    assert [v.channel_id for v in views if v.is_selected] == ["UC_1", "UC_2"]


def test_failed_edits_stay_pending():
    api = FakeChannelApi(selected=["UC_1"], put_errors={"UC_3": NetworkError("offline")})
    sync, notifier = _sync(api)
    asyncio.run(sync.channels())

    sync.toggle("UC_2", True)
    sync.toggle("UC_3", True)
    with pytest.raises(NetworkError):
        asyncio.run(sync.save_pending())

    assert sync.pending == {"UC_3": True}
    assert notifier.events == [("error", "Save Failed")]
    # the applied part is visible on the next read
    assert sync.cache.get(CHANNELS_KEY) is None


def test_save_pending_with_nothing_to_do():
    api = FakeChannelApi()
    sync, notifier = _sync(api)
    assert asyncio.run(sync.save_pending()) == []
    assert notifier.events == []


def test_discard_pending():
    api = FakeChannelApi()
    sync, _ = _sync(api)
    asyncio.run(sync.channels())
    sync.toggle("UC_1", True)
    sync.discard_pending()
    assert sync.pending == {}
    assert sync.projected_selection() == []


def test_reads_do_not_retry_client_errors():
    api = FakeChannelApi(list_errors=[ApiError(404, "Not Found")])
    sync, _ = _sync(api)
    with pytest.raises(ApiError):
        asyncio.run(sync.channels())
    assert api.count("list") == 1


def test_reads_retry_server_errors():
    api = FakeChannelApi(list_errors=[ApiError(502, "Bad Gateway")])
    sync, _ = _sync(api)
    asyncio.run(sync.channels())
    assert api.count("list") == 2


def test_reads_do_not_retry_bugs():
    api = FakeChannelApi(list_errors=[KeyError("channelId")])
    sync, _ = _sync(api)
    with pytest.raises(KeyError):
        asyncio.run(sync.channels())
    assert api.count("list") == 1


def test_unticking_a_just_saved_channel_is_recorded():
    api = FakeChannelApi(selected=["UC_1"])
    sync, _ = _sync(api)
    asyncio.run(sync.channels())

    sync.toggle("UC_2", True)
    asyncio.run(sync.save_pending())

    assert sync.toggle("UC_2", False) is True
    assert sync.pending == {"UC_2": False}
    assert sync.projected_selection() == ["UC_1"]


def test_cap_check_counts_channels_saved_in_the_last_batch():
    api = FakeChannelApi(selected=[f"UC_{i}" for i in range(9)])
    sync, notifier = _sync(api)
    asyncio.run(sync.channels())

    sync.toggle("UC_9", True)
    asyncio.run(sync.save_pending())

    assert sync.toggle("UC_10", True) is False
    assert sync.pending == {}
    assert notifier.events[-1] == ("warning", "Channel Limit Reached")


def test_full_save_replaces_local_selection():
    api = FakeChannelApi(selected=["UC_1"])
    sync, _ = _sync(api)
    asyncio.run(sync.channels())

    asyncio.run(sync.save(["UC_2", "UC_3"], {"UC_2": "Two"}))

    assert sync.projected_selection() == ["UC_2", "UC_3"]
    assert sync.toggle("UC_2", False) is True
    assert sync.pending == {"UC_2": False}
    assert sync.toggle("UC_1", True) is True
    assert sync.pending == {"UC_2": False, "UC_1": True}
