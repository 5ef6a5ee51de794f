"""
Cache Package
=============
Advisory Redis cache layered over the primary store.

Modules:
    - redis_cache: CacheManager with structured helpers and pub/sub
"""

from .redis_cache import CacheManager, CACHE_ERRORS

__version__ = "1.0.0"

__all__ = [
    "CacheManager",
    "CACHE_ERRORS"
]
