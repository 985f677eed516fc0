"""Health checks for the database, Redis and the host.

Used by the `/health/detailed` and `/readiness` routes. Redis calls go through
`safe_redis_call` so a hung server cannot stall the health check.
"""

import os
import time
from datetime import datetime, timezone
from typing import Any, Dict, Tuple

import psutil
from sqlalchemy import text

from infra24.app.cache import core as cache
from infra24.app.core import config as _config
from infra24.app.core.logging import get_logger

logger = get_logger(__name__)

_METRICS_TTL_SECONDS = 30
_system_metrics: Dict[str, Any] = {}
_last_update: float = 0.0


def _collect_system_metrics() -> Dict[str, Any]:
    try:
        memory = psutil.virtual_memory()
        disk = psutil.disk_usage("/")
        process = psutil.Process(os.getpid())
        return {
            "status": "healthy",
            "cpu_percent": round(psutil.cpu_percent(interval=None), 2),
            "memory_percent": round(memory.percent, 2),
            "memory_available_mb": round(memory.available / 1024 / 1024, 2),
            "disk_usage_percent": round(disk.percent, 2),
            "process": {
                "memory_mb": round(process.memory_info().rss / 1024 / 1024, 2),
            },
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    except Exception as e:
        logger.warning(f"Failed to collect system metrics: {e}")
        return {
            "status": "unhealthy",
            "error": str(e),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }


def get_system_metrics() -> Dict[str, Any]:
    """psutil snapshot, reused for up to 30 seconds."""
    global _system_metrics, _last_update
    if not _system_metrics or time.time() - _last_update > _METRICS_TTL_SECONDS:
        _system_metrics = _collect_system_metrics()
        _last_update = time.time()
    return dict(_system_metrics)


def check_database(db) -> Dict[str, Any]:
    try:
        start = time.time()
        db.execute(text("SELECT 1"))
        return {"status": "healthy", "response_time_ms": round((time.time() - start) * 1000, 2)}
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return {"status": "unhealthy", "error": str(e)}


def check_redis() -> Dict[str, Any]:
    ping = cache.safe_redis_call(lambda c: c.ping(), timeout=0.25)
    if ping.get("ok"):
        return {"status": "healthy", "response_time_ms": round(ping.get("elapsed_ms", 0.0), 2)}
    if ping.get("error") == cache.NOT_CONNECTED:
        # the cache is optional; the API keeps working without it
        return {"status": "unavailable", "note": "cache disabled, serving from database"}
    return {
        "status": "degraded",
        "error": ping.get("error") or "redis ping failed",
        "response_time_ms": round(ping.get("elapsed_ms", 0.0), 2),
    }


def basic_health() -> Dict[str, Any]:
    settings = _config.settings
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
    }


def collect_detailed_health(db) -> Tuple[str, Dict[str, Any]]:
    """Run every component check; returns (overall_status, components).

    The database is the only hard dependency: it alone makes the service
    unhealthy. A degraded Redis or host only degrades it.
    """
    components = {
        "database": check_database(db),
        "redis": check_redis(),
        "system": get_system_metrics(),
    }
    overall = "healthy"
    if components["redis"]["status"] == "degraded" or components["system"]["status"] != "healthy":
        overall = "degraded"
    if components["database"]["status"] != "healthy":
        overall = "unhealthy"
    return overall, components
