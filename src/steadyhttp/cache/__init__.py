"""Response caching for steadyhttp.

This package provides the :class:`CacheStore` interface, the default
:class:`MemoryCacheStore`, the immutable :class:`CacheEntry`, and
:func:`make_cache_key`.  The store is consumed by
:class:`~steadyhttp.client.executor.RequestExecutor` and controlled by
:class:`~steadyhttp.models.CachePolicy`.
"""

from steadyhttp.cache.cache import CacheEntry, CacheStore, MemoryCacheStore, utcnow
from steadyhttp.cache.keys import make_cache_key

__all__ = ["CacheEntry", "CacheStore", "MemoryCacheStore", "make_cache_key", "utcnow"]
