"""Rate-limited async HTTP client with a one-shot credential refresh."""

import asyncio
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Awaitable, Callable, Optional

import aiohttp

from ..errors import MalformedResponse, TransportError
from .logger import get_logger

logger = get_logger("http_client")

AuthRefresh = Callable[[], Awaitable[dict[str, str]]]

DEFAULT_RETRY_AFTER = 60


def _retry_after(value: Optional[str]) -> float:
    """Seconds to wait from a Retry-After header (delta-seconds or HTTP-date)."""
    if not value:
        return DEFAULT_RETRY_AFTER
    try:
        return max(0, int(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return DEFAULT_RETRY_AFTER
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


class RateLimitedClient:
    """Async HTTP client with rate limiting and optional retries.

    A 401 response triggers exactly one call to `auth_refresh`, which returns
    fresh auth headers, followed by one retry of the request. Refreshes are
    serialized so concurrent iterators sharing this client never refresh twice.
    """

    def __init__(
        self,
        base_url: str,
        user_agent: str,
        requests_per_minute: int = 60,
        max_retries: int = 1,
        timeout: int = 30,
        auth_headers: Optional[dict[str, str]] = None,
        auth_refresh: Optional[AuthRefresh] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.user_agent = user_agent
        self.min_interval = 60.0 / requests_per_minute
        self.max_retries = max(1, max_retries)
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.auth_headers: dict[str, str] = dict(auth_headers or {})
        self._auth_refresh = auth_refresh
        self._last_request_time: float = 0
        self._session: Optional[aiohttp.ClientSession] = None
        self._lock = asyncio.Lock()
        self._auth_lock = asyncio.Lock()

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self.timeout,
                headers={
                    "User-Agent": self.user_agent,
                    "Accept": "application/json",
                },
            )
        return self._session

    async def _rate_limit(self):
        """Enforce minimum interval between requests."""
        async with self._lock:
            now = asyncio.get_event_loop().time()
            elapsed = now - self._last_request_time
            if elapsed < self.min_interval:
                await asyncio.sleep(self.min_interval - elapsed)
            self._last_request_time = asyncio.get_event_loop().time()

    async def _refresh_auth(self, stale_headers: dict[str, str]):
        async with self._auth_lock:
            # Another request already refreshed while we waited for the lock.
            if self.auth_headers != stale_headers:
                return
            logger.info("auth_refresh")
            self.auth_headers = dict(await self._auth_refresh())

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    async def get(self, path: str, params: dict = None) -> dict:
        """GET a JSON document."""
        return await self.request("GET", path, params=params)

    async def post(self, path: str, data: dict = None, params: dict = None) -> dict:
        """POST a form body and return the JSON response (empty dict if none)."""
        return await self.request("POST", path, params=params, data=data)

    async def request(
        self,
        method: str,
        path: str,
        params: dict = None,
        data: dict = None,
    ) -> dict:
        """Send a request, refreshing credentials once on 401.

        Raises TransportError on any HTTP or network failure and
        MalformedResponse if the body is not JSON.
        """
        headers = dict(self.auth_headers)
        try:
            return await self._send(method, path, headers, params=params, data=data)
        except TransportError as e:
            if not e.unauthorized or self._auth_refresh is None:
                raise
            await self._refresh_auth(headers)
            return await self._send(method, path, dict(self.auth_headers), params=params, data=data)

    async def _send(
        self,
        method: str,
        path: str,
        headers: dict[str, str],
        params: dict = None,
        data: dict = None,
    ) -> dict:
        session = await self._get_session()
        url = self._url(path)

        for attempt in range(self.max_retries):
            await self._rate_limit()
            last_attempt = attempt == self.max_retries - 1

            try:
                async with session.request(
                    method,
                    url,
                    params=params,
                    data=data,
                    headers=headers,
                ) as response:
                    if 200 <= response.status < 300:
                        try:
                            payload = await response.json(content_type=None)
                        except ValueError as e:
                            raise MalformedResponse(
                                f"Response from {url} is not JSON", payload=str(e)
                            ) from e
                        logger.debug("request_success", method=method, url=url, status=response.status)
                        return payload if payload is not None else {}

                    if response.status == 429 and not last_attempt:
                        retry_after = _retry_after(response.headers.get("Retry-After"))
                        logger.warning("rate_limited", url=url, retry_after=retry_after)
                        await asyncio.sleep(retry_after)
                        continue

                    if response.status >= 500 and not last_attempt:
                        wait = 2**attempt * 5
                        logger.warning(
                            "server_error",
                            url=url,
                            status=response.status,
                            retry_in=wait,
                        )
                        await asyncio.sleep(wait)
                        continue

                    text = await response.text()
                    logger.error(
                        "request_rejected",
                        method=method,
                        url=url,
                        status=response.status,
                        body=text[:200],
                    )
                    raise TransportError(
                        f"HTTP {response.status}: {text[:200]}",
                        status=response.status,
                        url=url,
                    )

            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.warning(
                    "request_failed",
                    url=url,
                    error=str(e),
                    attempt=attempt + 1,
                )
                if last_attempt:
                    raise TransportError(f"Request to {url} failed: {e}", url=url) from e
                await asyncio.sleep(2**attempt * 5)

        raise TransportError(f"Max retries ({self.max_retries}) exceeded for {url}", url=url)

    async def close(self):
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
