"""
Read-through cache for catalog lookups (categories, brands)
"""
from threading import Lock
from typing import Any, Callable, Dict, Optional
import logging

logger = logging.getLogger(__name__)

CATEGORIES_KEY = "catalog:categories"
BRANDS_KEY = "catalog:brands"
CATALOG_PREFIX = "catalog:"


class CatalogCache:
    """
    Process-local key/value cache with prefix invalidation

    Entries live until a catalog write invalidates them; there is no TTL.
    Orders, payments and stock levels are never cached.
    """

    def __init__(self):
        self._entries: Dict[str, Any] = {}
        self._lock = Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            if key in self._entries:
                self.hits += 1
                return self._entries[key]
            self.misses += 1
            return None

    def put(self, key: str, value: Any):
        with self._lock:
            self._entries[key] = value

    def invalidate(self, prefix: str = CATALOG_PREFIX) -> int:
        """Drop every entry whose key starts with ``prefix``; return how many"""
        with self._lock:
            stale = [key for key in self._entries if key.startswith(prefix)]
            for key in stale:
                del self._entries[key]

        if stale:
            logger.debug(f"Invalidated {len(stale)} cache entries under {prefix}")
        return len(stale)

    def get_or_load(self, key: str, loader: Callable[[], Any]) -> Any:
        cached = self.get(key)
        if cached is not None:
            return cached

        value = loader()
        self.put(key, value)
        return value
