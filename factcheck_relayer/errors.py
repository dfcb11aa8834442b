"""Error taxonomy for the fact-check pipeline.

Every stage raises a subclass of ``RelayerError``. The top-level handler
catches them, logs the request id and records the failure so the request can
be retried or dead-lettered.
"""

from typing import Optional


class RelayerError(Exception):
    """Base class for failures that abort a fact-check request."""

    def __init__(self, message: str, request_id: Optional[int] = None):
        self.request_id = request_id
        super().__init__(message)


class FetchError(RelayerError):
    """Raised when the blob store is unreachable or returns a non-success status."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        request_id: Optional[int] = None,
    ):
        self.status_code = status_code
        super().__init__(message, request_id=request_id)


class ParseError(RelayerError):
    """Raised when model output holds no usable JSON or lacks a required field."""

    def __init__(
        self,
        message: str,
        raw_text: Optional[str] = None,
        request_id: Optional[int] = None,
    ):
        self.raw_text = raw_text
        super().__init__(message, request_id=request_id)


class SearchError(RelayerError):
    """Raised when the search API fails or omits the result count."""

    pass


class BrokerError(RelayerError):
    """Raised when the inference broker response lacks the expected shape."""

    pass


class ChainError(RelayerError):
    """Raised when a fulfillment transaction cannot be sent or reverts."""

    pass


class CircuitOpenError(RelayerError):
    """Raised when a circuit breaker is open and the call is rejected."""

    def __init__(self, service: str, message: str = "Circuit breaker is open"):
        self.service = service
        super().__init__(f"{message} for service: {service}")
