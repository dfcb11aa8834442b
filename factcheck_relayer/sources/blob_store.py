"""Article retrieval from the content-addressed blob store gateway."""

import logging
from typing import Optional

import httpx

from factcheck_relayer.errors import FetchError
from factcheck_relayer.utils.circuit_breaker import BLOB_STORE, CircuitBreaker

logger = logging.getLogger(__name__)


class BlobStoreClient:
    """
    Read article bodies through a blob-store HTTP gateway.

    The URI carried by the on-chain event is appended to the gateway URL; the
    response body is treated as plain text whatever its content type.
    """

    def __init__(
        self,
        gateway_url: str,
        timeout: int = 30,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.gateway_url = gateway_url.rstrip("/")
        self.timeout = timeout
        self.breaker = breaker or CircuitBreaker()
        self._client: Optional[httpx.AsyncClient] = None

    async def get_client(self) -> httpx.AsyncClient:
        """Get or create an HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    def build_url(self, uri: str) -> str:
        return f"{self.gateway_url}/{uri.lstrip('/')}"

    async def fetch_article(self, uri: str) -> str:
        """
        Fetch the article stored under ``uri``.

        Args:
            uri: Blob identifier from the fact-check request.

        Returns:
            The raw article text.

        Raises:
            FetchError: If the gateway is unreachable or answers non-200.
        """
        url = self.build_url(uri)

        async with self.breaker.guard(BLOB_STORE):
            client = await self.get_client()
            try:
                response = await client.get(url)
            except httpx.HTTPError as e:
                raise FetchError(f"Blob store unreachable for {uri}: {e}") from e

            # Only server errors count against the gateway's circuit
            if response.status_code >= 500:
                raise FetchError(
                    f"Blob store error for {uri}: HTTP {response.status_code}",
                    status_code=response.status_code,
                )

        if response.status_code != 200:
            raise FetchError(
                f"Failed to fetch article {uri}: HTTP {response.status_code}",
                status_code=response.status_code,
            )

        logger.debug(f"Fetched {len(response.text)} chars from {url}")
        return response.text
