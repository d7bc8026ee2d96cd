"""Cookie-holding HTTP session for the meshok.net JSON API."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from ..config import settings
from . import (
    MarketplaceBlockedError,
    MarketplaceHTTPError,
    MarketplaceRequestError,
    MarketplaceResponseError,
    MarketplaceTimeoutError,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_FORBIDDEN = 403


def _default_headers() -> dict[str, str]:
    return {
        "User-Agent": settings.scraper_user_agent,
        "Accept": "application/json, text/plain, */*",
        "meshok-locale": settings.marketplace_locale,
    }


class SessionClient:
    """One cookie-authenticated session against the marketplace host.

    Every request goes through a single-slot gate, so at most one call is in
    flight per session. Retries with exponential backoff are owned here;
    callers get either a result or a typed ``MarketplaceError``.
    """

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._gate = asyncio.Lock()
        self._initialized = False

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                headers=_default_headers(),
                timeout=settings.scraper_request_timeout,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    @property
    def cookies(self) -> httpx.Cookies:
        return self._get_client().cookies

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def ensure_initialized(self) -> None:
        """Seed cookies with one GET of the site root. No-op after the first success."""
        if self._initialized:
            return
        async with self._gate:
            if not self._initialized:
                self._initialized = await self._fetch_initial_cookies()

    async def refresh_cookies(self) -> None:
        """Drop the current cookies and fetch a fresh set."""
        async with self._gate:
            self._initialized = await self._fetch_initial_cookies()

    async def post_json(self, url: str, body: dict[str, Any], model: type[ModelT]) -> ModelT:
        async with self._gate:
            resp = await self._send_with_retries("POST", url, json=body)
        try:
            # Upstream sometimes labels the charset "utf8"; parse the raw bytes instead
            return model.model_validate_json(resp.content)
        except ValidationError as e:
            raise MarketplaceResponseError(
                f"Unexpected payload from {url}: {e.error_count()} validation errors", url,
            ) from e

    async def get_string(self, url: str) -> str:
        async with self._gate:
            resp = await self._send_with_retries("GET", url)
        return resp.text

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _fetch_initial_cookies(self) -> bool:
        """Single unretried GET of the init page. Caller must hold the gate."""
        client = self._get_client()
        client.cookies.clear()
        try:
            resp = await client.get(settings.marketplace_init_url)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Failed to fetch initial cookies: %s", e)
            return False
        logger.debug("Session cookies initialized (%d cookies)", len(client.cookies))
        return True

    async def _send_with_retries(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        client = self._get_client()
        max_attempts = settings.session_max_attempts
        delay = settings.session_retry_base_delay

        for attempt in range(1, max_attempts + 1):
            try:
                resp = await client.request(method, url, **kwargs)
                resp.raise_for_status()
                return resp
            except httpx.TransportError as e:
                if attempt == max_attempts:
                    raise MarketplaceTimeoutError(url, max_attempts) from e
                logger.warning(
                    "Attempt %d/%d to %s failed (%s). Retrying in %.1fs",
                    attempt, max_attempts, url, type(e).__name__, delay,
                )
                await asyncio.sleep(delay)
                delay *= 2
            except httpx.RequestError as e:
                # Redirect loops and broken encodings repeat on retry
                raise MarketplaceRequestError(url, f"{type(e).__name__}: {e}") from e
            except httpx.HTTPStatusError as e:
                status_code = e.response.status_code
                if attempt == max_attempts:
                    if status_code == _FORBIDDEN:
                        raise MarketplaceBlockedError(url, status_code) from e
                    raise MarketplaceHTTPError(url, status_code) from e
                if status_code == _FORBIDDEN:
                    wait = delay * settings.session_blocked_backoff_factor
                    logger.warning(
                        "Attempt %d/%d to %s blocked (403). Renewing cookies, retrying in %.1fs",
                        attempt, max_attempts, url, wait,
                    )
                    self._initialized = await self._fetch_initial_cookies()
                else:
                    wait = delay
                    logger.warning(
                        "Attempt %d/%d to %s returned HTTP %s. Retrying in %.1fs",
                        attempt, max_attempts, url, status_code, wait,
                    )
                await asyncio.sleep(wait)
                delay *= 2

        raise AssertionError("unreachable")  # loop always returns or raises
