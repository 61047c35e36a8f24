"""
HTTP access for price providers.

Blocking ``requests`` calls run in a worker thread so the event loop keeps
serving cache reads while a fetch is in flight.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Sequence

import requests

from ..core.errors import NetworkError, RateLimitSignal, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "Accept": "application/json",
    "User-Agent": "pricefeeds/1.0",
}


class JsonHttpClient:
    """
    Minimal JSON GET client with a fixed per-call timeout.

    Usage:
        client = JsonHttpClient()
        data = await client.get_json("https://api.coingecko.com/...", timeout=10)
    """

    def __init__(self, session: Optional[requests.Session] = None):
        self.session = session or requests.Session()
        self.session.headers.update(DEFAULT_HEADERS)

    def _get(self, url: str, params: Optional[Dict[str, Any]], timeout: float) -> Any:
        try:
            response = self.session.get(url, params=params, timeout=timeout)
        except requests.Timeout as e:
            raise NetworkError(f"Request to {url} timed out after {timeout}s") from e
        except requests.RequestException as e:
            raise NetworkError(f"Request to {url} failed: {e}") from e

        if response.status_code == 429:
            raise RateLimitSignal(f"Rate limit exceeded by {url}", identifier=url)

        if not response.ok:
            raise NetworkError(
                f"API error from {url}: {response.status_code} {response.reason}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise ValidationError(f"Response from {url} is not valid JSON") from e

    async def get_json(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: float = 10.0,
    ) -> Any:
        """
        GET ``url`` and decode the JSON body.

        Raises:
            RateLimitSignal: On HTTP 429
            NetworkError: On connection failure, timeout, or other non-2xx status
            ValidationError: If the body is not JSON
        """
        return await asyncio.to_thread(self._get, url, params, timeout)

    async def get_first_json(
        self,
        urls: Sequence[str],
        params: Optional[Dict[str, Any]] = None,
        timeout: float = 10.0,
    ) -> Any:
        """
        Try each endpoint in order and return the first successful payload.

        Raises:
            The last endpoint's error if every endpoint fails
        """
        if not urls:
            raise NetworkError("No endpoints configured")

        last_error: Optional[Exception] = None
        for url in urls:
            try:
                return await self.get_json(url, params=params, timeout=timeout)
            except (NetworkError, RateLimitSignal, ValidationError) as e:
                logger.warning(f"Endpoint {url} failed: {e}")
                last_error = e

        raise last_error

    def close(self) -> None:
        self.session.close()
