"""Redis cache for tenant-scoped dashboard data.

Redis is optional. Every helper turns into a no-op when the server cannot be
reached, and callers fall back to the database.
"""

import concurrent.futures
import json
import time
from typing import Any, Callable, Dict, Optional

import redis

from infra24.app.core import config as _config
from infra24.app.core.logging import get_logger, log_cache_operation

logger = get_logger("cache")

NOT_CONNECTED = "redis client not initialized"
READ_TIMEOUT = 0.25
SCAN_TIMEOUT = 0.5

redis_client: Optional[Any] = None
_gave_up = False


def get_redis_client() -> Optional[Any]:
    """Return the shared client, connecting on first use.

    A failed connection is remembered until `reset_redis_client()` so requests
    don't each pay for a connect timeout.
    """
    global redis_client, _gave_up
    if redis_client is not None or _gave_up:
        return redis_client
    try:
        candidate = redis.from_url(
            _config.settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=0.5,
            socket_timeout=0.5,
        )
        candidate.ping()
    except Exception as e:
        logger.debug(f"Redis unavailable at startup: {e}")
        _gave_up = True
        return None
    redis_client = candidate
    logger.info("Redis connection established")
    return redis_client


def init_redis() -> bool:
    reset_redis_client()
    return get_redis_client() is not None


def reset_redis_client() -> None:
    global redis_client, _gave_up
    redis_client = None
    _gave_up = False


def _outcome(ok: bool, started: Optional[float], result: Any = None,
             timed_out: bool = False, error: Optional[str] = None) -> Dict[str, Any]:
    return {
        "ok": ok,
        "result": result,
        "elapsed_ms": round((time.time() - started) * 1000, 2) if started else 0.0,
        "timeout": timed_out,
        "error": error,
    }


def safe_redis_call(fn: Callable[[Any], Any], timeout: float = READ_TIMEOUT) -> Dict[str, Any]:
    """Run ``fn(client)`` on a worker thread and give up after ``timeout`` seconds.

    Never raises. Returns ``{"ok", "result", "elapsed_ms", "timeout", "error"}``.
    """
    client = get_redis_client()
    if client is None:
        return _outcome(False, None, error=NOT_CONNECTED)

    started = time.time()
    pool = concurrent.futures.ThreadPoolExecutor(max_workers=1)
    try:
        return _outcome(True, started, result=pool.submit(fn, client).result(timeout=timeout))
    except concurrent.futures.TimeoutError:
        return _outcome(False, started, timed_out=True, error="timeout")
    except Exception as e:
        return _outcome(False, started, error=str(e))
    finally:
        # a hung socket must not hold the request
        pool.shutdown(wait=False)


def cache_key(prefix: str, *args: Any, tenant_id: Optional[str] = None) -> str:
    """Build ``<tenant>:<prefix>:<args...>``, e.g. ``oolite:budget:2025``."""
    parts = [str(tenant_id)] if tenant_id is not None else []
    parts.append(prefix)
    parts.extend(str(arg) for arg in args)
    return ":".join(parts)


def get_cached(key: str) -> Optional[Any]:
    if get_redis_client() is None:
        log_cache_operation("get", key, hit=False)
        return None

    resp = safe_redis_call(lambda c: c.get(key))
    raw = resp["result"]
    hit = resp["ok"] and raw is not None
    log_cache_operation("get", key, hit=hit, duration_ms=resp["elapsed_ms"])
    if not hit:
        if resp["error"]:
            logger.debug(f"Cache get failed for {key}: {resp['error']}")
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return raw


def set_cached(key: str, value: Any, ttl: Optional[int] = None) -> bool:
    """Store ``value`` as JSON for ``ttl`` seconds (CACHE_TTL by default)."""
    if get_redis_client() is None:
        log_cache_operation("set", key)
        return False

    payload = json.dumps(value, default=str)
    expiry = ttl or _config.settings.CACHE_TTL
    resp = safe_redis_call(lambda c: c.setex(key, expiry, payload))
    log_cache_operation("set", key, duration_ms=resp["elapsed_ms"])
    if not resp["ok"]:
        logger.warning(f"Cache set failed for {key}: {resp['error']}")
    return resp["ok"]


def delete_pattern(pattern: str) -> int:
    """Delete every key matching a glob pattern; returns the number removed."""
    if get_redis_client() is None:
        return 0

    found = safe_redis_call(lambda c: list(c.scan_iter(match=pattern)), timeout=SCAN_TIMEOUT)
    keys = found["result"] if found["ok"] else None
    if not keys:
        if found["error"]:
            logger.debug(f"Cache scan failed for {pattern}: {found['error']}")
        return 0

    removed = safe_redis_call(lambda c: c.delete(*keys), timeout=SCAN_TIMEOUT)
    if not removed["ok"]:
        logger.debug(f"Cache delete failed for {pattern}: {removed['error']}")
        return 0
    return removed["result"] or 0


def budget_cache_key(org_slug: str, year: str) -> str:
    return cache_key("budget", year, tenant_id=org_slug)


def invalidate_budget_cache(org_slug: str) -> int:
    """Drop every cached budget dashboard of one organization."""
    return delete_pattern(cache_key("budget", "*", tenant_id=org_slug))
