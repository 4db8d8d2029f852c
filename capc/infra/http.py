from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Literal, Protocol, runtime_checkable

import aiohttp
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from capc.observability.logger import logger

# ─── Errors ──────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class HttpError(Exception):
    status: int
    body: str

    def __str__(self) -> str:
        return f"HTTP {self.status}: {self.body}"


# ─── Auth ────────────────────────────────────────────────────────────


@runtime_checkable
class Auth(Protocol):
    async def headers(self) -> dict[str, str]: ...
    async def on_401(self) -> None: ...


class OAuth2Auth:
    """OAuth2 bearer tokens from a token endpoint.

    Uses the password grant when ``username`` is given, otherwise client
    credentials. Tokens are refreshed ``refresh_margin`` seconds before
    ``expires_in`` runs out, and dropped on any 401.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        token_url: str,
        *,
        username: str | None = None,
        password: str | None = None,
        refresh_margin: float = 30.0,
        timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._token_url = token_url
        self._username = username
        self._password = password
        self._refresh_margin = refresh_margin
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._clock = clock
        self._token: str | None = None
        self._expires_at = 0.0
        self._lock = asyncio.Lock()
        self._log = logger.bind(component="http")

    def _form(self) -> dict[str, str]:
        form = {"client_id": self._client_id, "client_secret": self._client_secret}
        if self._username is not None:
            form |= {
                "grant_type": "password",
                "username": self._username,
                "password": self._password or "",
            }
        else:
            form["grant_type"] = "client_credentials"
        return form

    async def _fetch_token(self) -> tuple[str, float]:
        self._log.debug("Fetching OAuth2 token from {url}", url=self._token_url)
        async with aiohttp.ClientSession(timeout=self._timeout) as session, session.post(
            self._token_url, data=self._form(),
        ) as resp:
            if resp.status >= 400:
                body = await resp.text()
                self._log.error(
                    "OAuth2 token fetch failed: status={status} body={body}",
                    status=resp.status, body=body[:200],
                )
                raise HttpError(status=resp.status, body=body)
            data = await resp.json()
            return data["access_token"], float(data.get("expires_in", 300))

    async def _token_with_retry(self) -> tuple[str, float]:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(3),
            wait=wait_exponential(multiplier=0.5, max=5),
            retry=retry_if_exception_type((aiohttp.ClientConnectionError, asyncio.TimeoutError)),
            reraise=True,
        )
        return await retrying(self._fetch_token)

    @property
    def expired(self) -> bool:
        return self._token is None or self._clock() >= self._expires_at

    async def headers(self) -> dict[str, str]:
        async with self._lock:
            if self.expired:
                token, expires_in = await self._token_with_retry()
                self._token = token
                self._expires_at = self._clock() + max(expires_in - self._refresh_margin, 0.0)
        return {
            "Authorization": f"Bearer {self._token}",
            "Accept": "application/json",
        }

    async def on_401(self) -> None:
        async with self._lock:
            self._token = None


# ─── Client ──────────────────────────────────────────────────────────


class HttpClient:
    def __init__(
        self,
        base_url: str,
        auth: Auth | None = None,
        *,
        timeout: float = 30,
        default_headers: dict[str, str] | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._auth = auth
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._default_headers = default_headers or {}
        self._session: aiohttp.ClientSession | None = None
        self._log = logger.bind(component="http")

    def _url(self, path: str) -> str:
        return f"{self._base_url}{path}"

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def _build_headers(self, extra: dict[str, str] | None) -> dict[str, str]:
        headers = dict(self._default_headers)
        if self._auth:
            headers.update(await self._auth.headers())
        if extra:
            headers.update(extra)
        return headers

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | list[Any] | None = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        format: Literal["json", "text"] = "json",
    ) -> Any:
        session = await self._ensure_session()
        self._log.debug("{method} {path}", method=method, path=path)

        try:
            async with session.request(
                method, self._url(path),
                headers=await self._build_headers(headers), json=json, params=params,
            ) as resp:
                if resp.status != 401 or self._auth is None:
                    return await self._parse(resp, format)
                self._log.debug("401 received, refreshing auth and retrying")
                await self._auth.on_401()

            async with session.request(
                method, self._url(path),
                headers=await self._build_headers(headers), json=json, params=params,
            ) as retry_resp:
                return await self._parse(retry_resp, format)
        except aiohttp.ClientResponseError as e:
            raise HttpError(status=e.status, body=e.message) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise HttpError(status=0, body=str(e) or type(e).__name__) from e

    async def _parse(self, resp: aiohttp.ClientResponse, format: Literal["json", "text"]) -> Any:
        if resp.status >= 400:
            body = await resp.text()
            self._log.warning(
                "HTTP {status} from {url}: {body}",
                status=resp.status, url=str(resp.url), body=body[:500],
            )
            raise HttpError(status=resp.status, body=body)
        match format:
            case "json":
                raw = await resp.read()
                return await resp.json(content_type=None) if raw else None
            case "text":
                return await resp.text()

    # ─── Lifecycle ───────────────────────────────────────────────────

    async def close(self) -> None:
        if self._session and not self._session.closed:
            self._log.debug("Closing HTTP session")
            await self._session.close()

    async def __aenter__(self) -> HttpClient:
        await self._ensure_session()
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.close()
