"""
Channel directory: the YouTube subscriptions a user can pick digests from.

Business logic separated from the HTTP layer. Policy:
- no stored credential, or one that fails decryption -> FALLBACK_CHANNELS
  (logged), so the UI always has something to render;
- credential present but YouTube fails (HTTP error, network, malformed body,
  refresh refused) -> UpstreamUnavailable, surfaced as 503 by the router.
An upstream 401 forces one token refresh and a single retry.
"""
import logging
from typing import Any

import requests
from requests.exceptions import HTTPError as RequestsHTTPError
from sqlalchemy.orm import Session

from tubedigest.auth import get_valid_access_token
from tubedigest.config import YOUTUBE_MAX_RESULTS, YOUTUBE_REQUEST_TIMEOUT
from tubedigest.credentials import CredentialStore
from tubedigest.errors import DecryptionError, UpstreamUnavailable

logger = logging.getLogger(__name__)

SUBSCRIPTIONS_URL = "https://www.googleapis.com/youtube/v3/subscriptions"

# Representative channels served when there is no usable credential
FALLBACK_CHANNELS = [
    {
        "channelId": "UCsBjURrPoezykLs9EqgamOA",
        "title": "Fireship",
        "thumbnail": "https://yt3.ggpht.com/ytc/fireship=s88-c-k-c0x00ffffff-no-rj",
    },
    {
        "channelId": "UCCjyq_K1Xwfg8Lndy7lKMpA",
        "title": "TechCrunch",
        "thumbnail": "https://yt3.ggpht.com/ytc/techcrunch=s88-c-k-c0x00ffffff-no-rj",
    },
    {
        "channelId": "UCBJycsmduvYEL83R_U4JriQ",
        "title": "Marques Brownlee",
        "thumbnail": "https://yt3.ggpht.com/ytc/mkbhd=s88-c-k-c0x00ffffff-no-rj",
    },
    {
        "channelId": "UCHnyfMqiRRG1u-2MsSQLbXA",
        "title": "Veritasium",
        "thumbnail": "https://yt3.ggpht.com/ytc/veritasium=s88-c-k-c0x00ffffff-no-rj",
    },
    {
        "channelId": "UC9-y-6csu5WGm29I7JiwpnA",
        "title": "Computerphile",
        "thumbnail": "https://yt3.ggpht.com/ytc/computerphile=s88-c-k-c0x00ffffff-no-rj",
    },
]


def fallback_channels() -> list[dict]:
    return [dict(c) for c in FALLBACK_CHANNELS]


def fetch_subscriptions(access_token: str, max_results: int = YOUTUBE_MAX_RESULTS) -> list[dict]:
    """Call subscriptions.list (mine=true) with timeout; raises on HTTP errors."""
    resp = requests.get(
        SUBSCRIPTIONS_URL,
        headers={"Authorization": f"Bearer {access_token}"},
        params={"part": "snippet", "mine": "true", "maxResults": max_results},
        timeout=YOUTUBE_REQUEST_TIMEOUT,
    )
    resp.raise_for_status()
    data = resp.json()
    if not isinstance(data, dict):
        raise ValueError("subscriptions response is not an object")
    items = data.get("items") or []
    if not isinstance(items, list):
        raise ValueError("subscriptions items is not a list")
    return items


def to_channel_summaries(items: list[Any]) -> list[dict]:
    """Map subscription items to {channelId, title, thumbnail}; drop items without a channel id."""
    result: list[dict] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        snippet = item.get("snippet") or {}
        channel_id = (snippet.get("resourceId") or {}).get("channelId")
        if not channel_id:
            continue
        thumbnail = ((snippet.get("thumbnails") or {}).get("default") or {}).get("url")
        result.append({
            "channelId": channel_id,
            "title": snippet.get("title") or "",
            "thumbnail": thumbnail,
        })
    return result


def list_channels(db: Session, user_id: str) -> list[dict]:
    """
    Return the user's subscribed channels, or the fallback list when there
    is no usable credential. Raises UpstreamUnavailable on upstream failure.
    """
    store = CredentialStore(db)
    try:
        credential = store.get(user_id)
    except DecryptionError as e:
        logger.error("Stored credential for user %s failed decryption (%s); serving fallback channels", user_id, e)
        return fallback_channels()
    if credential is None:
        logger.info("No OAuth credential for user %s; serving fallback channels", user_id)
        return fallback_channels()

    try:
        access_token = get_valid_access_token(store, user_id, credential)
        try:
            items = fetch_subscriptions(access_token)
        except RequestsHTTPError as e:
            if getattr(e, "response", None) is not None and e.response.status_code == 401:
                access_token = get_valid_access_token(store, user_id, credential, force_refresh=True)
                items = fetch_subscriptions(access_token)
            else:
                raise
    except UpstreamUnavailable:
        raise
    except (requests.RequestException, ValueError) as e:
        logger.error("YouTube subscriptions failed for user %s: %s", user_id, e)
        raise UpstreamUnavailable("upstream_error") from e

    channels = to_channel_summaries(items)
    logger.info("Listed %d subscribed channels for user %s", len(channels), user_id)
    return channels
