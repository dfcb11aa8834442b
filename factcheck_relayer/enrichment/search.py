"""Web-search result counts from SerpAPI."""

import logging
from typing import Optional

import httpx

from factcheck_relayer.errors import SearchError
from factcheck_relayer.utils.circuit_breaker import SEARCH, CircuitBreaker

logger = logging.getLogger(__name__)


class SearchClient:
    """
    Query SerpAPI's Google engine for the approximate number of results a
    claim returns. The count is a weak popularity signal fed into the
    claim-scoring prompt.
    """

    API_URL = "https://serpapi.com/search"

    def __init__(
        self,
        api_key: Optional[str],
        num_results: int = 5,
        timeout: int = 30,
        api_url: Optional[str] = None,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.api_key = api_key
        self.num_results = num_results
        self.timeout = timeout
        self.api_url = api_url or self.API_URL
        self.breaker = breaker or CircuitBreaker()
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def get_client(self) -> httpx.AsyncClient:
        """Get or create an HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def total_results(self, claim: str) -> int:
        """
        Return ``search_information.total_results`` for a claim.

        Raises:
            SearchError: If the API is not configured, unreachable, answers
                non-200, or omits the count.
        """
        if not self.is_configured:
            raise SearchError("SerpAPI key is not configured. Set SERPAPI_KEY.")

        async with self.breaker.guard(SEARCH):
            client = await self.get_client()
            try:
                response = await client.get(
                    self.api_url,
                    params={
                        "engine": "google",
                        "q": claim,
                        "api_key": self.api_key,
                        "num": self.num_results,
                    },
                )
            except httpx.HTTPError as e:
                raise SearchError(f"SerpAPI unreachable: {e}") from e

            if response.status_code != 200:
                raise SearchError(f"SerpAPI error: HTTP {response.status_code}")

            try:
                data = response.json()
            except ValueError as e:
                raise SearchError(f"SerpAPI returned invalid JSON: {e}") from e

        info = data.get("search_information") if isinstance(data, dict) else None
        total = info.get("total_results") if isinstance(info, dict) else None
        if total is None:
            raise SearchError("Could not read total_results from SerpAPI response")

        try:
            return int(total)
        except (TypeError, ValueError) as e:
            raise SearchError(f"total_results is not a number: {total!r}") from e
