"""Storage quota management."""

from .eviction import QuotaAwareEvictor

__all__ = ["QuotaAwareEvictor"]
