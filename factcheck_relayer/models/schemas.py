"""Pydantic models for fact-check requests, results and durable records."""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RequestStatus(str, Enum):
    """Lifecycle of a fact-check request as seen by the relayer."""

    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    FULFILLED = "fulfilled"
    FAILED = "failed"
    DEAD_LETTER = "dead_letter"


class TransactionStatus(str, Enum):
    """What the chain says about an earlier fulfillment transaction."""

    CONFIRMED = "confirmed"
    REVERTED = "reverted"
    PENDING = "pending"
    DROPPED = "dropped"


class FactCheckRequest(BaseModel):
    """A `FactCheckRequested` event decoded from the contract."""

    request_id: int = Field(description="On-chain request id")
    requester: str = Field(description="Address that asked for the fact-check")
    content_uri: str = Field(description="Blob-store identifier of the article")
    block_number: Optional[int] = Field(default=None, description="Block holding the event")
    transaction_hash: Optional[str] = Field(default=None, description="Emitting transaction")


class Claim(BaseModel):
    """A single factual assertion extracted from an article."""

    text: str = Field(description="Claim text as returned by the model")


class ScoredClaim(BaseModel):
    """A claim with its truthfulness percentage, e.g. ``"87%"``."""

    claim: str = Field(description="Claim text")
    score: str = Field(description="Truthfulness percentage string")


class FactCheckResult(BaseModel):
    """Aggregated outcome written back on-chain."""

    request_id: Optional[int] = None
    scored_claims: List[ScoredClaim] = Field(default_factory=list)
    overall_score: str = Field(description="Mean claim score, formatted as X.XX%")
    bias_score: str = Field(description="Journalist bias percentage")

    @property
    def verdict(self) -> str:
        """The verdict string submitted on-chain."""
        return self.overall_score

    def explanation_payload(self) -> dict:
        """The explanation object in its on-chain key layout."""
        return {
            "claims": [c.model_dump() for c in self.scored_claims],
            "overallScore": self.overall_score,
            "biasScore": self.bias_score,
        }

    def explanation_json(self) -> str:
        """Serialize the explanation payload submitted with the verdict."""
        return json.dumps(self.explanation_payload(), separators=(",", ":"))


class RequestRecord(BaseModel):
    """Durable retry record for one request id."""

    request_id: int
    requester: str
    content_uri: str
    status: RequestStatus = RequestStatus.PENDING
    attempts: int = 0
    last_error: Optional[str] = None
    tx_hash: Optional[str] = None
    verdict: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    next_attempt_at: Optional[datetime] = None

    def to_request(self) -> FactCheckRequest:
        """Rebuild the request this record tracks."""
        return FactCheckRequest(
            request_id=self.request_id,
            requester=self.requester,
            content_uri=self.content_uri,
        )
