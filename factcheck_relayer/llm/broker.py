"""LLM access through the 0G inference broker."""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from factcheck_relayer.errors import BrokerError
from factcheck_relayer.llm.parsing import parse_claims, parse_percentage
from factcheck_relayer.llm.prompts import (
    build_bias_scoring_prompt,
    build_claim_extraction_prompt,
    build_claim_scoring_prompt,
)
from factcheck_relayer.models.schemas import Claim
from factcheck_relayer.utils.circuit_breaker import BROKER, CircuitBreaker

logger = logging.getLogger(__name__)


class RateLimiter:
    """Minimum-interval rate limiter for broker calls."""

    def __init__(self, requests_per_minute: int = 0):
        """A non-positive ``requests_per_minute`` disables limiting."""
        self.rpm = requests_per_minute
        self.interval = 60.0 / requests_per_minute if requests_per_minute > 0 else 0.0
        self._last_request: Optional[float] = None
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait until we can make another request."""
        if self.interval <= 0:
            return
        async with self._lock:
            if self._last_request is not None:
                elapsed = time.monotonic() - self._last_request
                if elapsed < self.interval:
                    await asyncio.sleep(self.interval - elapsed)
            self._last_request = time.monotonic()


class BrokerClient:
    """
    Send prompts to a DeepSeek provider behind the inference broker.

    The broker answers with ``{"success": ..., "response": {"content": ...}}``;
    older deployments return the model text under ``result`` instead. Claim
    scoring insists on the newer shape, the other calls accept either.
    """

    def __init__(
        self,
        broker_url: Optional[str],
        provider_address: Optional[str],
        fallback_fee: float = 0.01,
        chain_rpc_url: Optional[str] = None,
        timeout: int = 120,
        max_claims: int = 1,
        requests_per_minute: int = 0,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.broker_url = broker_url
        self.provider_address = provider_address
        self.fallback_fee = fallback_fee
        self.chain_rpc_url = chain_rpc_url
        self.timeout = timeout
        self.max_claims = max_claims
        self.rate_limiter = RateLimiter(requests_per_minute)
        self.breaker = breaker or CircuitBreaker()
        self._client: Optional[httpx.AsyncClient] = None

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

    def _build_body(self, prompt: str, include_chain_rpc: bool) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "providerAddress": self.provider_address,
            "query": prompt,
            "fallbackFee": self.fallback_fee,
        }
        if include_chain_rpc and self.chain_rpc_url:
            body["chainRpcUrl"] = self.chain_rpc_url
        return body

    @staticmethod
    def _content_from(data: Any, require_success: bool) -> str:
        """Pull the model text out of a broker response body."""
        if not isinstance(data, dict):
            raise BrokerError("Broker response is not a JSON object")

        response = data.get("response")
        content = response.get("content") if isinstance(response, dict) else None

        if require_success:
            if not data.get("success") or not isinstance(content, str):
                raise BrokerError("Bad broker response format")
        else:
            content = content or data.get("result")

        if not isinstance(content, str) or not content.strip():
            raise BrokerError("No content found in broker response")
        return content

    async def query(
        self,
        prompt: str,
        include_chain_rpc: bool = False,
        require_success: bool = False,
    ) -> str:
        """
        Send a prompt and return the model's text output.

        Args:
            prompt: The full prompt.
            include_chain_rpc: Pass ``chainRpcUrl`` so the broker can settle fees.
            require_success: Demand ``success: true`` and ``response.content``.

        Raises:
            BrokerError: If the broker is unconfigured, unreachable, answers
                non-2xx, or the body lacks the expected shape.
        """
        if not self.broker_url or not self.provider_address:
            raise BrokerError("Broker is not configured. Set BROKER_URL and DEEPSEEK_PROVIDER.")

        await self.rate_limiter.acquire()

        async with self.breaker.guard(BROKER):
            client = await self.get_client()
            try:
                response = await client.post(
                    self.broker_url,
                    json=self._build_body(prompt, include_chain_rpc),
                )
                response.raise_for_status()
                data = response.json()
            except httpx.HTTPStatusError as e:
                raise BrokerError(f"Broker error: HTTP {e.response.status_code}") from e
            except httpx.HTTPError as e:
                raise BrokerError(f"Broker unreachable: {e}") from e
            except ValueError as e:
                raise BrokerError(f"Broker returned invalid JSON: {e}") from e

            content = self._content_from(data, require_success)

        logger.debug(f"Broker raw content: {content!r}")
        return content

    async def extract_claims(self, article: str) -> List[Claim]:
        """Ask the model for the article's top factual claims."""
        prompt = build_claim_extraction_prompt(article, max_claims=self.max_claims)
        content = await self.query(prompt, include_chain_rpc=True)
        return parse_claims(content, max_claims=self.max_claims)

    async def score_claim(self, claim: str, total_results: int) -> str:
        """Ask the model for a claim's truthfulness percentage, e.g. ``"87%"``."""
        prompt = build_claim_scoring_prompt(claim, total_results)
        content = await self.query(prompt, require_success=True)
        score = parse_percentage(content, "Fact_score")
        logger.debug(f"Parsed Fact_score = {score}")
        return score

    async def compute_bias_score(self, article: str) -> str:
        """Ask the model how biased the article's author is, 0% to 100%."""
        prompt = build_bias_scoring_prompt(article)
        content = await self.query(prompt)
        score = parse_percentage(content, "bias_score")
        logger.debug(f"Parsed bias_score = {score}")
        return score
