"""Utility modules for the relayer."""

from factcheck_relayer.utils.circuit_breaker import CircuitBreaker

__all__ = ["CircuitBreaker"]
