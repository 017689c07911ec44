"""
Settings Cache - TTL Cache in Front of the Settings Table
==========================================================

ARCHITECTURAL DECISION:
- Explicit object owned by whoever composes the update service, never a
  module-level dict shared by every import
- Entries expire after ttl_seconds; writes go through the cache so the
  stored value and the cached value cannot diverge inside one process
- Invalidation hooks let dependents (e.g. a GitHub client built from a
  cached token) drop their own derived state
"""

import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

from .database import Database

logger = logging.getLogger(__name__)

InvalidationHook = Callable[[Optional[str]], None]


class SettingsCache:
    """
    Read-through cache for key/value settings.

    Usage:
        cache = SettingsCache(db, ttl_seconds=60)
        token = cache.get("github_token")
        cache.set("github_token", "ghp_...")   # writes the table, refreshes cache
        cache.invalidate()                      # drop everything
    """

    def __init__(self, database: Database, ttl_seconds: float = 60, clock: Callable[[], float] = time.monotonic):
        self._db = database
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[Optional[str], float]] = {}
        self._hooks: List[InvalidationHook] = []
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        """Return the setting, reading the table on a miss or expired entry."""
        now = self._clock()
        with self._lock:
            cached = self._entries.get(key)
            if cached is not None and cached[1] > now:
                return cached[0]

        value = self._db.get_setting(key)
        with self._lock:
            self._entries[key] = (value, now + self._ttl)
        return value

    def set(self, key: str, value: str):
        """Persist a setting and notify hooks that it changed."""
        self._db.set_setting(key, value)
        with self._lock:
            self._entries[key] = (value, self._clock() + self._ttl)
        self._notify(key)

    def delete(self, key: str):
        self._db.delete_setting(key)
        self.invalidate(key)

    def invalidate(self, key: Optional[str] = None):
        """Drop one key (or everything when key is None)."""
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)
        self._notify(key)

    def add_invalidation_hook(self, hook: InvalidationHook):
        self._hooks.append(hook)

    def _notify(self, key: Optional[str]):
        for hook in list(self._hooks):
            try:
                hook(key)
            except Exception as e:
                logger.exception(f"Settings invalidation hook failed for {key!r}: {e}")
