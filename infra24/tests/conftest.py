import os
import tempfile
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from jose import jwt

# Point the application at a throwaway file-backed SQLite database and an
# unreachable Redis before any application module reads its settings.
tmp_db_path = os.environ.get("TEST_SQLITE_DB_PATH")
if not tmp_db_path:
    tmp_file = tempfile.NamedTemporaryFile(prefix="infra24_test_", suffix=".db", delete=False)
    tmp_db_path = tmp_file.name
    tmp_file.close()
os.environ["DATABASE_URL"] = f"sqlite:///{tmp_db_path}"
os.environ["REDIS_URL"] = "redis://127.0.0.1:1/0"
os.environ["IDENTITY_JWT_SECRET"] = "test-identity-secret"
os.environ["EMAIL_BATCH_DELAY_MS"] = "0"
os.environ["APP_BASE_URL"] = "https://app.infra24.test"

from infra24.app.core import config as _config  # noqa: E402

_config.reload_settings()

from infra24.app.cache import core as cache  # noqa: E402
from infra24.app.db.core import Base, dispose_engine, get_db, get_engine, get_session_factory  # noqa: E402
from infra24.app.main.core import app  # noqa: E402
from infra24.app.models import core as models  # noqa: E402
from infra24.app.tenancy.core import seed_default_tenants  # noqa: E402


class FakeResendClient:
    """Stands in for ResendClient; records every message instead of sending it."""

    def __init__(self, fail_for=()):
        self.fail_for = set(fail_for)
        self.sent = []

    def send(self, *, from_email, to, subject, html, text=None, tags=None, headers=None):
        from infra24.app.core.errors import EmailDeliveryError

        if to[0] in self.fail_for:
            raise EmailDeliveryError(f"Resend rejected the message (422): {to[0]}")
        self.sent.append({
            "from": from_email,
            "to": to,
            "subject": subject,
            "html": html,
            "text": text,
            "tags": tags or [],
            "headers": headers or {},
        })
        return f"msg_{len(self.sent)}"


@pytest.fixture(scope="session")
def engine():
    yield get_engine()
    dispose_engine()
    if os.path.exists(tmp_db_path):
        os.remove(tmp_db_path)


@pytest.fixture(scope="function")
def db_session(engine):
    # fresh schema per test so rows never leak between tests
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    cache.reset_redis_client()
    session = get_session_factory()()
    seed_default_tenants(session)
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture(scope="function")
def client(db_session):
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def org(db_session):
    return db_session.query(models.Organization).filter_by(slug="oolite").one()


@pytest.fixture
def other_org(db_session):
    return db_session.query(models.Organization).filter_by(slug="bakehouse").one()


def make_token(sub, email=None, expires_in=timedelta(hours=1), **claims):
    settings = _config.settings
    payload = {"sub": sub, "exp": datetime.now(timezone.utc) + expires_in, **claims}
    if email:
        payload["email"] = email
    return jwt.encode(payload, settings.IDENTITY_JWT_SECRET, algorithm=settings.IDENTITY_JWT_ALGORITHM)


@pytest.fixture
def make_user(db_session):
    """Create a user (optionally a member of `org` with `role`) and return (user, headers)."""

    def _make(email, role=None, org=None, first_name="Test", external_id=None):
        user = models.User(
            email=email,
            external_id=external_id or f"idp|{email}",
            first_name=first_name,
            last_name="User",
        )
        db_session.add(user)
        db_session.flush()
        if role is not None:
            db_session.add(
                models.OrgMembership(
                    user_id=user.id, organization_id=org.id, role=role, is_active=True
                )
            )
        db_session.commit()
        headers = {"Authorization": f"Bearer {make_token(user.external_id, user.email)}"}
        return user, headers

    return _make


@pytest.fixture
def fake_resend():
    return FakeResendClient()
