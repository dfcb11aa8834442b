"""Claim enrichment: web-search signals."""

from .search import SearchClient

__all__ = ["SearchClient"]
