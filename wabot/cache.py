"""
WhatsApp Command Bot - Caching Module

In-memory TTL cache. The bot uses it to suppress duplicate replies: the same
text sent to the same chat again within a few seconds is dropped.
"""

import logging
import time
from threading import RLock
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class SimpleCache:
    """
    Thread-safe in-memory cache with TTL (Time To Live) support.

    The status endpoint reads cache stats from the web server thread while
    the bot loop writes to it, hence the lock.
    """

    def __init__(self, default_ttl: int = 300):
        self._cache: Dict[str, Dict[str, Any]] = {}
        self._lock = RLock()
        self.default_ttl = default_ttl

    def get(self, key: str) -> Optional[Any]:
        """
        Get value from cache.

        Returns:
            Cached value or None if not found or expired
        """
        with self._lock:
            if key not in self._cache:
                return None

            entry = self._cache[key]

            if time.time() > entry['expires_at']:
                del self._cache[key]
                logger.debug(f"Cache key '{key}' expired and removed")
                return None

            return entry['value']

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Set value in cache; ttl falls back to the default."""
        ttl = ttl or self.default_ttl
        now = time.time()

        with self._lock:
            self._cache[key] = {
                'value': value,
                'expires_at': now + ttl,
                'created_at': now
            }

    def clear(self) -> None:
        """Clear all cache entries."""
        with self._lock:
            cache_size = len(self._cache)
            self._cache.clear()
            logger.info(f"Cache cleared ({cache_size} entries removed)")

    def cleanup_expired(self) -> int:
        """
        Remove all expired entries.

        Returns:
            Number of entries removed
        """
        current_time = time.time()

        with self._lock:
            expired_keys = [
                key for key, entry in self._cache.items()
                if current_time > entry['expires_at']
            ]
            for key in expired_keys:
                del self._cache[key]

        if expired_keys:
            logger.debug(f"Removed {len(expired_keys)} expired cache entries")

        return len(expired_keys)

    def stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            current_time = time.time()
            active_count = sum(
                1 for entry in self._cache.values() if current_time <= entry['expires_at']
            )

            return {
                'total_entries': len(self._cache),
                'active_entries': active_count,
                'expired_entries': len(self._cache) - active_count,
                'default_ttl': self.default_ttl
            }


class ReplyDeduplicator:
    """
    Remembers recent (chat, text) pairs to drop repeated replies.

    Only delivered messages are recorded, so a send that failed can be
    retried straight away.
    """

    def __init__(self, window_seconds: float = 5):
        self.window_seconds = window_seconds
        self._recent = SimpleCache(default_ttl=window_seconds or 1)

    @staticmethod
    def _key(chat_id: str, text: str) -> str:
        return f"{chat_id}:{text}"

    def is_duplicate(self, chat_id: str, text: str) -> bool:
        """True if the same text was delivered to the same chat within the window."""
        if not self.window_seconds:
            return False

        if self._recent.get(self._key(chat_id, text)) is not None:
            logger.debug(f"🔄 Duplicate message blocked: {text[:50]!r}")
            return True
        return False

    def record(self, chat_id: str, text: str) -> None:
        """Remember a delivered message."""
        if not self.window_seconds:
            return

        self._recent.set(self._key(chat_id, text), True, ttl=self.window_seconds)
        self._recent.cleanup_expired()

    def stats(self) -> Dict[str, Any]:
        return self._recent.stats()
