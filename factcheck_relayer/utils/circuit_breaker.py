"""Circuit breaker for the relayer's HTTP collaborators."""

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from factcheck_relayer.errors import CircuitOpenError

logger = logging.getLogger(__name__)

# Service names guarded by the relayer
BLOB_STORE = "blob_store"
SEARCH = "search"
BROKER = "broker"

CLOSED = "closed"
OPEN = "open"
HALF_OPEN = "half-open"


class CircuitBreaker:
    """
    Per-service circuit breaker.

    States:
    - closed: calls go through
    - open: too many consecutive failures, calls fail fast
    - half-open: reset timeout elapsed, one probe call is let through

    All bookkeeping happens on the event loop thread, so no lock is needed.

    Usage:
        breaker = CircuitBreaker(failure_threshold=5, reset_timeout=60)

        async with breaker.guard("broker"):
            content = await post_to_broker(prompt)
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
    ):
        """
        Args:
            failure_threshold: Consecutive failures before the circuit opens.
            reset_timeout: Seconds an open circuit waits before a probe.
        """
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout

        self._failures: Dict[str, int] = {}
        self._opened_at: Dict[str, float] = {}
        self._state: Dict[str, str] = {}

    def get_state(self, service: str) -> str:
        """Get the current state of a service's circuit."""
        state = self._state.get(service, CLOSED)
        if state == OPEN:
            opened_at = self._opened_at.get(service, 0.0)
            if time.monotonic() - opened_at >= self.reset_timeout:
                return HALF_OPEN
        return state

    def allow_request(self, service: str) -> bool:
        """Return False when the service's circuit is open."""
        state = self.get_state(service)
        if state == HALF_OPEN:
            self._state[service] = HALF_OPEN
        return state != OPEN

    def record_failure(self, service: str) -> None:
        failures = self._failures.get(service, 0) + 1
        self._failures[service] = failures

        if self.get_state(service) == HALF_OPEN:
            self._trip(service)
            logger.warning(f"Circuit breaker: {service} failed while half-open, reopening")
        elif failures >= self.failure_threshold:
            self._trip(service)
            logger.warning(f"Circuit breaker: {service} opened after {failures} failures")

    def record_success(self, service: str) -> None:
        if self.get_state(service) == HALF_OPEN:
            logger.info(f"Circuit breaker: {service} closed after successful probe")
        self._failures[service] = 0
        self._state[service] = CLOSED
        self._opened_at.pop(service, None)

    def reset(self, service: Optional[str] = None) -> None:
        """Reset one service, or every service when none is given."""
        if service:
            self._failures.pop(service, None)
            self._opened_at.pop(service, None)
            self._state.pop(service, None)
        else:
            self._failures.clear()
            self._opened_at.clear()
            self._state.clear()

    def _trip(self, service: str) -> None:
        self._state[service] = OPEN
        self._opened_at[service] = time.monotonic()

    @asynccontextmanager
    async def guard(self, service: str) -> AsyncIterator[None]:
        """
        Run the enclosed block under circuit breaker protection.

        Raises:
            CircuitOpenError: If the circuit is open.
        """
        if not self.allow_request(service):
            raise CircuitOpenError(service)

        try:
            yield
        except Exception:
            self.record_failure(service)
            raise
        else:
            self.record_success(service)

    def get_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Failure counts and states for every tracked service."""
        services = set(self._failures) | set(self._state)
        return {
            service: {
                "failures": self._failures.get(service, 0),
                "state": self.get_state(service),
            }
            for service in services
        }
