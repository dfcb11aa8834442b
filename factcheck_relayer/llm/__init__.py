"""Inference broker access, prompts and output parsing."""

from .broker import BrokerClient, RateLimiter

__all__ = ["BrokerClient", "RateLimiter"]
