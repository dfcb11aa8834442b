"""Pydantic models for structured data."""

from .schemas import (
    Claim,
    FactCheckRequest,
    FactCheckResult,
    RequestRecord,
    RequestStatus,
    ScoredClaim,
    TransactionStatus,
)

__all__ = [
    "Claim",
    "FactCheckRequest",
    "FactCheckResult",
    "RequestRecord",
    "RequestStatus",
    "ScoredClaim",
    "TransactionStatus",
]
