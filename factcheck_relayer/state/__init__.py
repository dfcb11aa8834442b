"""Durable request state."""

from factcheck_relayer.state.store import RequestStore

__all__ = ["RequestStore"]
