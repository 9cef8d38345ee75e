"""
Retry/backoff HTTP GET used by the Jira ingest layer.
Retries on 429/503, on a Retry-After header, and on transport errors, with exponential backoff and jitter.
"""

import os
import time
import random
import logging
import email.utils
from datetime import datetime, timezone
from typing import Optional, Dict, Any
import requests

logger = logging.getLogger(__name__)

# environment defaults
DEFAULT_MAX_RETRIES = int(os.getenv("SPRINT_ALLOC_MAX_RETRIES", "3"))
DEFAULT_BACKOFF_BASE = float(os.getenv("SPRINT_ALLOC_BACKOFF_BASE", "0.5"))
_env_jitter = os.getenv("SPRINT_ALLOC_BACKOFF_JITTER")
DEFAULT_BACKOFF_JITTER = float(_env_jitter) if _env_jitter else None
DEFAULT_MAX_BACKOFF = float(os.getenv("SPRINT_ALLOC_MAX_BACKOFF", "120.0"))
REQUEST_TIMEOUT = 30
RETRY_STATUSES = (429, 503)
MAX_WAIT = 300.0

# runtime overrides set from the CLI
_runtime: Dict[str, Optional[float]] = {'max_retries': None, 'backoff_base': None, 'backoff_jitter': None, 'max_backoff': None}


def configure_retry(
    max_retries: Optional[int] = None, backoff_base: Optional[float] = None, backoff_jitter: Optional[float] = None, max_backoff: Optional[float] = None
):
    """Override retry/backoff defaults for the rest of the process (e.g. from CLI flags)."""
    if max_retries is not None:
        _runtime['max_retries'] = int(max_retries)
    if backoff_base is not None:
        _runtime['backoff_base'] = float(backoff_base)
    if backoff_jitter is not None:
        _runtime['backoff_jitter'] = float(backoff_jitter)
    if max_backoff is not None:
        _runtime['max_backoff'] = float(max_backoff)


def reset_retry():
    for k in _runtime:
        _runtime[k] = None


def _first_set(*values):
    for v in values:
        if v is not None:
            return v
    return None


def _parse_retry_after(raw: Optional[str]) -> Optional[float]:
    """Retry-After is either delay seconds or an HTTP date."""
    if not raw or not isinstance(raw, str):
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        pass
    try:
        dt = email.utils.parsedate_to_datetime(raw)
    except (TypeError, ValueError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return max(0.0, (dt - datetime.now(timezone.utc)).total_seconds())


def _resolve_backoff(min_wait: Optional[float], backoff_base, backoff_jitter, max_backoff):
    """Explicit arguments win, then configure_retry overrides, then the caller's min_wait, then the env default."""
    base = float(_first_set(backoff_base, _runtime['backoff_base'], min_wait or None, DEFAULT_BACKOFF_BASE))
    jitter = float(_first_set(backoff_jitter, _runtime['backoff_jitter'], DEFAULT_BACKOFF_JITTER, base))
    cap = float(_first_set(max_backoff, _runtime['max_backoff'], DEFAULT_MAX_BACKOFF))
    return base, jitter, cap


def _wait_seconds(retry_after: Optional[float], backoff: float, jitter: float) -> float:
    wait = retry_after if retry_after is not None else backoff
    return min(wait + random.uniform(0, jitter), MAX_WAIT)


def _body(resp):
    try:
        return resp.json()
    except ValueError:
        return getattr(resp, 'text', None)


def perform_request_with_retries(
    url: str,
    headers: Dict[str, str],
    params: Dict[str, Any],
    cache=None,
    cache_key: str = '',
    min_wait: Optional[float] = None,
    max_retries: Optional[int] = None,
    backoff_base: Optional[float] = None,
    backoff_jitter: Optional[float] = None,
    max_backoff: Optional[float] = None,
) -> Dict[str, Any]:
    """
    GET url and return {'response', 'status', 'timestamp'}.

    Successful (200) bodies are stored in cache under cache_key when both are given.
    Non-retryable failures are returned as-is; after the last attempt the most recent
    failure is returned.
    """
    base, jitter, cap = _resolve_backoff(min_wait, backoff_base, backoff_jitter, max_backoff)
    attempts = int(_first_set(_runtime['max_retries'], max_retries, DEFAULT_MAX_RETRIES))
    backoff = base
    last: Dict[str, Any] = {'response': None, 'status': 0, 'timestamp': time.time()}

    for attempt in range(max(1, attempts)):
        try:
            resp = requests.get(url, headers=headers or {}, params=params or {}, timeout=REQUEST_TIMEOUT)
        except requests.RequestException as ex:
            logger.warning("GET %s failed (attempt %d/%d): %s", url, attempt + 1, attempts, ex)
            last = {'response': str(ex), 'status': 0, 'timestamp': time.time()}
            if attempt + 1 < attempts:
                time.sleep(_wait_seconds(None, backoff, jitter))
            backoff = min(backoff * 2, cap)
            continue

        status = getattr(resp, 'status_code', 0)
        if status == 200:
            body = _body(resp)
            if cache is not None and cache_key:
                cache.set(cache_key, body, status)
            return {'response': body, 'status': status, 'timestamp': time.time()}

        headers_in = getattr(resp, 'headers', None) or {}
        retry_after = _parse_retry_after(headers_in.get('Retry-After'))
        if status not in RETRY_STATUSES and retry_after is None:
            return {'response': _body(resp), 'status': status, 'timestamp': time.time()}

        logger.warning("GET %s returned %s (attempt %d/%d), backing off", url, status, attempt + 1, attempts)
        last = {'response': getattr(resp, 'text', None), 'status': status, 'timestamp': time.time()}
        if attempt + 1 < attempts:
            time.sleep(_wait_seconds(retry_after, backoff, jitter))
        backoff = min(backoff * 2, cap)

    return last


__all__ = ["configure_retry", "reset_retry", "perform_request_with_retries"]
