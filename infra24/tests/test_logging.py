import json
import logging

from infra24.app.cache import core as cache
from infra24.app.core.logging import (
    StructuredFormatter,
    clear_request_context,
    set_request_context,
)
from infra24.app.middleware.logging import sanitize
from infra24.app.services.budget import build_budget_dashboard


def _record(message="hello", **extra_fields):
    record = logging.LogRecord("infra24.test", logging.INFO, __file__, 10, message, (), None)
    if extra_fields:
        record.extra_fields = extra_fields
    return record


def test_structured_formatter_includes_context():
    set_request_context("req-1", user_id="user-1", tenant_id="oolite")
    try:
        entry = json.loads(StructuredFormatter().format(_record(event_type="unit")))
    finally:
        clear_request_context()
    assert entry["message"] == "hello"
    assert entry["level"] == "INFO"
    assert entry["request_id"] == "req-1"
    assert entry["user_id"] == "user-1"
    assert entry["tenant_id"] == "oolite"
    assert entry["event_type"] == "unit"


def test_structured_formatter_without_context():
    entry = json.loads(StructuredFormatter().format(_record()))
    assert "request_id" not in entry
    assert "tenant_id" not in entry


def test_sanitize_redacts_credentials():
    data = {"email": "a@b.c", "password": "x", "nested": {"api_key": "k", "items": [{"token": "t"}]}}
    assert sanitize(data) == {
        "email": "a@b.c",
        "password": "<redacted>",
        "nested": {"api_key": "<redacted>", "items": [{"token": "<redacted>"}]},
    }


def test_request_id_is_generated_and_echoed(client):
    r = client.get("/api/v1/organizations")
    assert r.headers["X-Request-ID"]
    assert float(r.headers["X-Process-Time"]) >= 0

    r = client.get("/api/v1/organizations", headers={"X-Request-ID": "abc-123"})
    assert r.headers["X-Request-ID"] == "abc-123"


def test_health_probes_are_not_logged(client):
    assert "X-Request-ID" not in client.get("/api/v1/health").headers


def test_security_headers(client, monkeypatch):
    from infra24.app.core import config as _config

    r = client.get("/api/v1/organizations")
    assert r.headers["X-Frame-Options"] == "DENY"
    assert r.headers["X-Content-Type-Options"] == "nosniff"
    assert r.headers["Strict-Transport-Security"].startswith("max-age=31536000")
    assert "default-src 'self'" in r.headers["Content-Security-Policy"]

    monkeypatch.setattr(_config.settings, "SECURITY_HEADERS_ENABLED", False)
    assert "X-Frame-Options" not in client.get("/api/v1/organizations").headers


class FakeRedis:
    def __init__(self):
        self.store = {}

    def ping(self):
        return True

    def get(self, key):
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self.store[key] = value
        return True

    def delete(self, *keys):
        return sum(1 for k in keys if self.store.pop(k, None) is not None)

    def scan_iter(self, match=None):
        prefix = match.rstrip("*")
        return [k for k in list(self.store) if k.startswith(prefix)]


def test_cache_is_a_no_op_without_redis():
    assert cache.get_cached("oolite:budget:2025") is None
    assert cache.set_cached("oolite:budget:2025", {"a": 1}) is False
    assert cache.invalidate_budget_cache("oolite") == 0


def test_budget_dashboard_is_cached_per_tenant(client, db_session, org, make_user, monkeypatch):
    fake = FakeRedis()
    monkeypatch.setattr(cache, "redis_client", fake)

    first = build_budget_dashboard(db_session, org, "2025")
    assert cache.budget_cache_key("oolite", "2025") == "oolite:budget:2025"
    assert "oolite:budget:2025" in fake.store
    assert build_budget_dashboard(db_session, org, "2025") == json.loads(json.dumps(first, default=str))

    # recording a line item drops the cached dashboard
    _, headers = make_user("mod@oolite.org", "moderator", org)
    client.post(
        "/api/v1/organizations/oolite/budget/line-items",
        json={"name": "Tripod", "category": "streaming", "amount": 80, "date": "2025-09-12"},
        headers=headers,
    )
    assert "oolite:budget:2025" not in fake.store
