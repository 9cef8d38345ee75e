"""
SQLite cache for Jira search responses plus a cached, retrying GET helper.
Entries are keyed by project/sprint/page so repeated runs over a closed sprint skip the network.
"""

import sqlite3
import json
import time
import logging
import threading
from typing import Optional, Any, Dict, List
import requests  # noqa: F401  tests patch storage.cache.requests.get

from .retry import perform_request_with_retries, configure_retry

logger = logging.getLogger(__name__)

# noinspection SqlResolve
SQL_CREATE = """
CREATE TABLE IF NOT EXISTS http_cache (
    key TEXT PRIMARY KEY,
    response TEXT,
    status INTEGER,
    timestamp REAL
);
"""


class Cache:
    def __init__(self, path: Optional[str] = None, max_entries: Optional[int] = None, ttl_seconds: Optional[float] = None):
        """Open (or create) a cache.

        :param path: SQLite file path, or None for an in-memory cache.
        :param max_entries: keep at most this many entries, pruning the oldest.
        :param ttl_seconds: entries older than this are dropped on access and on write.
        """
        self.path = path or ':memory:'
        self.conn = sqlite3.connect(self.path, check_same_thread=False)
        self._lock = threading.RLock()
        self.max_entries = int(max_entries) if max_entries is not None else None
        self.ttl_seconds = float(ttl_seconds) if ttl_seconds is not None else None
        with self._lock:
            self.conn.executescript(SQL_CREATE)
            self._prune()
            self.conn.commit()

    def close(self):
        with self._lock:
            if self.conn is not None:
                self.conn.close()
                self.conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def _expired(self, timestamp: Optional[float]) -> bool:
        if self.ttl_seconds is None or timestamp is None:
            return False
        return time.time() - float(timestamp) > self.ttl_seconds

    # noinspection SqlResolve
    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self.conn.execute('SELECT response, status, timestamp FROM http_cache WHERE key = ?', (key,)).fetchone()
        if not row:
            return None
        response, status, timestamp = row
        if self._expired(timestamp):
            self.delete_key(key)
            return None
        try:
            parsed = json.loads(response)
        except ValueError:
            parsed = response
        return {'response': parsed, 'status': status, 'timestamp': timestamp}

    # noinspection SqlResolve
    def set(self, key: str, response: Any, status: int = 200):
        payload = json.dumps(response, default=str)
        with self._lock:
            self.conn.execute('REPLACE INTO http_cache(key, response, status, timestamp) VALUES (?, ?, ?, ?)', (key, payload, status, time.time()))
            self._prune()
            self.conn.commit()

    # noinspection SqlResolve
    def _prune(self):
        if self.ttl_seconds is not None:
            self.conn.execute('DELETE FROM http_cache WHERE timestamp < ?', (time.time() - self.ttl_seconds,))
        if self.max_entries is not None:
            count = self.conn.execute('SELECT COUNT(1) FROM http_cache').fetchone()[0] or 0
            excess = count - self.max_entries
            if excess > 0:
                self.conn.execute(
                    'DELETE FROM http_cache WHERE key IN (SELECT key FROM http_cache ORDER BY timestamp ASC LIMIT ?)', (excess,)
                )

    # noinspection SqlResolve
    def stats(self) -> Dict[str, Any]:
        """Return entry count and oldest/newest timestamps."""
        with self._lock:
            count, oldest, newest = self.conn.execute('SELECT COUNT(1), MIN(timestamp), MAX(timestamp) FROM http_cache').fetchone()
        return {
            'path': self.path,
            'count': int(count or 0),
            'oldest': float(oldest) if oldest is not None else None,
            'newest': float(newest) if newest is not None else None,
        }

    # noinspection SqlResolve
    def list_keys(self, limit: int = 1000) -> List[Dict[str, Any]]:
        """Return keys with status and timestamp, newest first."""
        with self._lock:
            rows = self.conn.execute('SELECT key, status, timestamp FROM http_cache ORDER BY timestamp DESC LIMIT ?', (limit,)).fetchall()
        return [{'key': k, 'status': int(status or 0), 'timestamp': float(ts or 0)} for k, status, ts in rows]

    # noinspection SqlResolve
    def delete_key(self, key: str) -> int:
        with self._lock:
            cur = self.conn.execute('DELETE FROM http_cache WHERE key = ?', (key,))
            self.conn.commit()
            return cur.rowcount

    # noinspection SqlWithoutWhere
    def clear(self):
        with self._lock:
            self.conn.execute('DELETE FROM http_cache')
            self.conn.commit()


def rate_limited_get(
    url: str,
    headers: Dict[str, str] = None,
    params: Dict[str, Any] = None,
    cache: Cache = None,
    cache_key: str = None,
    min_wait: Optional[float] = None,
    max_age: Optional[float] = None,
    max_retries: Optional[int] = None,
) -> Dict[str, Any]:
    """GET with cache lookup first (honoring max_age seconds), then retries/backoff via storage.retry."""
    if cache is not None and cache_key:
        cached = cache.get(cache_key)
        if cached and (max_age is None or time.time() - float(cached.get('timestamp') or 0) <= max_age):
            logger.debug("Cache hit for %s", cache_key)
            return cached
    return perform_request_with_retries(url, headers or {}, params or {}, cache, cache_key or '', min_wait, max_retries)


__all__ = ["Cache", "rate_limited_get", "configure_retry"]
