"""Fact-check fulfillment pipeline that coordinates all collaborators."""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import List, Optional, Protocol, Tuple

from factcheck_relayer.config import Settings
from factcheck_relayer.enrichment.search import SearchClient
from factcheck_relayer.errors import RelayerError
from factcheck_relayer.llm.broker import BrokerClient
from factcheck_relayer.llm.parsing import average_score
from factcheck_relayer.models.schemas import (
    Claim,
    FactCheckRequest,
    FactCheckResult,
    RequestRecord,
    RequestStatus,
    ScoredClaim,
    TransactionStatus,
)
from factcheck_relayer.sources.blob_store import BlobStoreClient
from factcheck_relayer.state.store import RequestStore
from factcheck_relayer.utils.circuit_breaker import CircuitBreaker

logger = logging.getLogger(__name__)


class ChainWriter(Protocol):
    """Anything that can write a verdict back on-chain."""

    async def send_fulfillment(self, request_id: int, verdict: str, explanation: str) -> str:
        ...

    async def wait_for_confirmation(self, request_id: int, tx_hash: str) -> str:
        ...

    async def transaction_status(self, tx_hash: str) -> TransactionStatus:
        ...


@dataclass
class RelayerContext:
    """
    Everything one pipeline run needs, built once at startup.

    Tests construct it directly from doubles.
    """

    settings: Settings
    blob_store: BlobStoreClient
    search: SearchClient
    broker: BrokerClient
    chain: Optional[ChainWriter] = None
    store: Optional[RequestStore] = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        chain: Optional[ChainWriter] = None,
        store: Optional[RequestStore] = None,
    ) -> "RelayerContext":
        """Build the HTTP clients from settings, sharing one circuit breaker."""
        breaker = CircuitBreaker(
            failure_threshold=settings.circuit_failure_threshold,
            reset_timeout=settings.circuit_reset_timeout,
        )
        return cls(
            settings=settings,
            blob_store=BlobStoreClient(
                settings.walrus_gateway_url or "",
                timeout=settings.http_timeout,
                breaker=breaker,
            ),
            search=SearchClient(
                settings.serpapi_key,
                num_results=settings.num_results,
                timeout=settings.http_timeout,
                api_url=settings.serpapi_url,
                breaker=breaker,
            ),
            broker=BrokerClient(
                settings.broker_url,
                settings.deepseek_provider,
                fallback_fee=settings.broker_fallback_fee,
                chain_rpc_url=settings.alchemy_url,
                timeout=settings.llm_timeout,
                max_claims=settings.max_claims,
                requests_per_minute=settings.broker_requests_per_minute,
                breaker=breaker,
            ),
            chain=chain,
            store=store,
        )

    async def close(self) -> None:
        """Close all HTTP clients."""
        await asyncio.gather(
            self.blob_store.close(),
            self.search.close(),
            self.broker.close(),
        )


def aggregate(
    scored_claims: List[ScoredClaim],
    bias_score: str,
    request_id: Optional[int] = None,
) -> FactCheckResult:
    """Combine per-claim scores into the result written on-chain."""
    return FactCheckResult(
        request_id=request_id,
        scored_claims=scored_claims,
        overall_score=average_score(c.score for c in scored_claims),
        bias_score=bias_score,
    )


class FactCheckPipeline:
    """
    Turns one fact-check request into one on-chain fulfillment.

    Stages run strictly in sequence:
    1. Fetch the article from the blob store
    2. Extract claims with the LLM
    3. Score each claim (search result count, then LLM)
    4. Score the article's bias with the LLM
    5. Aggregate and submit the verdict on-chain
    """

    def __init__(self, context: RelayerContext):
        self.context = context

    async def _score_claims(self, request_id: int, claims: List[Claim]) -> List[ScoredClaim]:
        scored = []
        for claim in claims:
            logger.info(f"[{request_id}] Scoring: {claim.text!r}")
            total = await self.context.search.total_results(claim.text)
            score = await self.context.broker.score_claim(claim.text, total)
            logger.info(f"[{request_id}]   -> {score} ({total:,} search results)")
            scored.append(ScoredClaim(claim=claim.text, score=score))
        return scored

    async def evaluate(self, request: FactCheckRequest) -> FactCheckResult:
        """
        Run stages 1-4 and aggregate, without touching the chain.

        Raises:
            RelayerError: From whichever stage failed first.
        """
        request_id = request.request_id
        logger.info(f"[{request_id}] Received uri {request.content_uri}")

        article = await self.context.blob_store.fetch_article(request.content_uri)
        logger.info(f"[{request_id}] Fetched article ({len(article)} chars)")

        claims = await self.context.broker.extract_claims(article)
        logger.info(f"[{request_id}] Extracted {len(claims)} claims")

        scored = await self._score_claims(request_id, claims)

        bias_score = await self.context.broker.compute_bias_score(article)
        logger.info(f"[{request_id}] Journalist bias score: {bias_score}")

        result = aggregate(scored, bias_score, request_id=request_id)
        logger.info(f"[{request_id}] Overall score: {result.overall_score}")
        return result

    def _chain(self, request_id: Optional[int]) -> ChainWriter:
        if self.context.chain is None:
            raise RelayerError("No chain writer configured", request_id=request_id)
        return self.context.chain

    async def submit(self, result: FactCheckResult) -> str:
        """
        Write the verdict and explanation on-chain; returns the tx hash.

        The hash is recorded in the store as soon as the transaction is
        broadcast, before waiting for its receipt.
        """
        chain = self._chain(result.request_id)
        tx_hash = await chain.send_fulfillment(
            result.request_id,
            result.verdict,
            result.explanation_json(),
        )
        if self.context.store:
            self.context.store.record_submission(result.request_id, tx_hash, result.verdict)
        return await chain.wait_for_confirmation(result.request_id, tx_hash)

    async def run(self, request: FactCheckRequest) -> Tuple[FactCheckResult, str]:
        """Evaluate a request and submit its verdict. Raises on failure."""
        result = await self.evaluate(request)
        tx_hash = await self.submit(result)
        return result, tx_hash

    async def resume_submission(self, record: RequestRecord) -> Optional[str]:
        """
        Settle a fulfillment sent by an earlier attempt.

        Returns:
            The tx hash once it is mined successfully, or None when it was
            dropped or reverted and the request has to be submitted again.

        Raises:
            ChainError: If the transaction is still pending and does not
                confirm in time; the hash stays recorded for the next attempt.
        """
        request_id = record.request_id
        chain = self._chain(request_id)
        status = await chain.transaction_status(record.tx_hash)

        if status == TransactionStatus.CONFIRMED:
            logger.info(f"[{request_id}] Earlier fulfill tx {record.tx_hash} already mined")
            return record.tx_hash
        if status == TransactionStatus.PENDING:
            logger.info(f"[{request_id}] Waiting for earlier fulfill tx {record.tx_hash}")
            return await chain.wait_for_confirmation(request_id, record.tx_hash)

        logger.warning(
            f"[{request_id}] Earlier fulfill tx {record.tx_hash} {status.value}, resubmitting"
        )
        return None

    async def handle(self, request: FactCheckRequest) -> Optional[str]:
        """
        Top-level handler for one request. Never raises.

        Records each attempt in the request store (when configured), so a
        failure is retried later or dead-lettered instead of being dropped.
        A fulfillment sent by an earlier attempt is looked up on-chain first
        and only resubmitted when it was dropped or reverted.

        Returns:
            The fulfillment tx hash, or None if the request failed or was skipped.
        """
        request_id = request.request_id
        store = self.context.store
        start_time = time.time()
        record = None

        if store:
            record = store.upsert_request(request)
            if record.status in (RequestStatus.FULFILLED, RequestStatus.DEAD_LETTER):
                logger.info(f"[{request_id}] Already {record.status.value}, skipping")
                return record.tx_hash
            store.mark_in_flight(request_id)

        try:
            tx_hash = None
            verdict = None
            if record is not None and record.tx_hash:
                tx_hash = await self.resume_submission(record)
                verdict = record.verdict
            if tx_hash is None:
                result, tx_hash = await self.run(request)
                verdict = result.verdict

        except RelayerError as e:
            logger.error(f"[{request_id}] Fact-check failed: {type(e).__name__}: {e}")
            if store:
                store.mark_failed(request_id, f"{type(e).__name__}: {e}")
            return None

        except Exception as e:
            logger.exception(f"[{request_id}] Unexpected error")
            if store:
                store.mark_failed(request_id, f"Unexpected error: {e}")
            return None

        if store:
            store.mark_fulfilled(request_id, tx_hash, verdict)

        elapsed_ms = int((time.time() - start_time) * 1000)
        logger.info(f"[{request_id}] Fulfilled in {elapsed_ms}ms: {tx_hash}")
        return tx_hash
