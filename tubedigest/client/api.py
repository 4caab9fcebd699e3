"""
Async HTTP client for the session and channel backends.

One httpx.AsyncClient per dashboard; it keeps the session cookie set by the
OAuth callback. Responses are mapped onto the shared error taxonomy:
401 -> AuthenticationRequired, 400 limit_exceeded -> LimitExceeded,
503 -> UpstreamUnavailable, any httpx.RequestError (transport, decoding,
redirect loops) -> NetworkError, anything else non-2xx -> ApiError.
"""
import logging
from typing import Any
from urllib.parse import quote

import httpx

from tubedigest.errors import (
    ApiError,
    AuthenticationRequired,
    LimitExceeded,
    NetworkError,
    UpstreamUnavailable,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


class BackendClient:
    def __init__(
        self,
        base_url: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        cookies: dict[str, str] | None = None,
    ):
        # cookies: a session cookie carried over from an earlier process
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            transport=transport,
            timeout=timeout,
            cookies=cookies,
            headers={"Content-Type": "application/json"},
        )

    async def __aenter__(self) -> "BackendClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.RequestError as e:
            raise NetworkError(f"{method} {path} failed: {e}") from e

        status = resp.status_code
        if status < 400:
            return resp
        detail = _detail(resp)
        if status == 401:
            raise AuthenticationRequired(detail or "Authentication required")
        if status == 400 and "limit_exceeded" in detail:
            raise LimitExceeded()
        if status == 503:
            raise UpstreamUnavailable(detail or "upstream_error")
        raise ApiError(status, detail or resp.reason_phrase)

    async def get_me(self) -> dict:
        return (await self._request("GET", "/me")).json()

    async def logout(self) -> None:
        await self._request("POST", "/auth/logout")

    async def list_channels(self) -> list[dict]:
        return (await self._request("GET", "/channels")).json()

    async def get_selected(self) -> list[dict]:
        return (await self._request("GET", "/channels/selected")).json()

    async def select_channels(self, channel_ids: list[str], titles: dict[str, str]) -> dict:
        resp = await self._request(
            "POST",
            "/channels/select",
            json={"channelIds": channel_ids, "titles": titles},
        )
        return resp.json()

    async def set_channel_selected(
        self,
        channel_id: str,
        selected: bool,
        title: str | None = None,
    ) -> dict:
        body: dict[str, Any] = {"selected": selected}
        if title is not None:
            body["title"] = title
        resp = await self._request("PUT", f"/channels/{quote(channel_id, safe='')}", json=body)
        return resp.json()


def _detail(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text
    if isinstance(data, dict):
        return str(data.get("detail") or data.get("message") or "")
    return str(data)
