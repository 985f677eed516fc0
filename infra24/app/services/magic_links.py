"""Single-use, time-limited survey access links."""

import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from infra24.app.core import config as _config
from infra24.app.core.logging import get_logger, log_database_operation
from infra24.app.models.core import MagicLink, MagicLinkEvent, OrgMembership, User, utcnow

logger = get_logger("auth.magic_links")

TRACKED_ACTIONS = ("generated", "opened", "started", "completed")
INVALID_LINK = "Invalid or expired link"
EXPIRED_LINK = "Link has expired"


@dataclass
class MagicLinkResult:
    token: str
    url: str
    expires_at: datetime


@dataclass
class MagicLinkValidation:
    valid: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


def build_magic_link_url(survey_id: Optional[str], token: str) -> str:
    base_url = _config.settings.APP_BASE_URL.rstrip("/")
    return f"{base_url}/survey/{survey_id}?token={token}"


def generate_magic_link(
    db: Session,
    email: str,
    survey_id: Optional[str],
    organization_id: Optional[str],
    metadata: Optional[Dict[str, Any]] = None,
    ttl_hours: Optional[int] = None,
) -> MagicLinkResult:
    """Store a new link and return its token, URL and expiry."""
    start_time = time.time()
    ttl_hours = ttl_hours or _config.settings.MAGIC_LINK_TTL_HOURS
    token = secrets.token_hex(32)
    expires_at = utcnow() + timedelta(hours=ttl_hours)
    try:
        db.add(
            MagicLink(
                token=token,
                email=email.strip().lower(),
                survey_id=survey_id,
                organization_id=organization_id,
                link_metadata=metadata or {},
                expires_at=expires_at,
            )
        )
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to create magic link for survey {survey_id}: {e}")
        raise
    log_database_operation("INSERT", "magic_links", (time.time() - start_time) * 1000)
    track_magic_link_usage(db, token, "generated")
    return MagicLinkResult(token=token, url=build_magic_link_url(survey_id, token), expires_at=expires_at)


def validate_magic_link(db: Session, token: str) -> MagicLinkValidation:
    """Check a token and consume it; a link validates at most once.

    Consumption is a single conditional UPDATE, so of two concurrent
    redemptions only the one that flips `used_at` succeeds.
    """
    now = utcnow()
    try:
        consumed = db.execute(
            update(MagicLink)
            .where(
                MagicLink.token == token,
                MagicLink.used_at.is_(None),
                MagicLink.expires_at >= now,
            )
            .values(used_at=now)
            .execution_options(synchronize_session=False)
        ).rowcount
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to consume magic link: {e}")
        return MagicLinkValidation(valid=False, error="Failed to validate link")

    link = db.query(MagicLink).filter(MagicLink.token == token).first()
    if consumed != 1 or link is None:
        if link is not None and link.used_at is None:
            return MagicLinkValidation(valid=False, error=EXPIRED_LINK)
        return MagicLinkValidation(valid=False, error=INVALID_LINK)

    track_magic_link_usage(db, token, "opened")
    return MagicLinkValidation(
        valid=True,
        data={
            "email": link.email,
            "survey_id": link.survey_id,
            "organization_id": link.organization_id,
            "metadata": link.link_metadata or {},
        },
    )


def track_magic_link_usage(db: Session, token: str, action: str) -> None:
    """Record a link lifecycle event. Failures are logged, never raised."""
    if action not in TRACKED_ACTIONS:
        logger.warning(f"Ignoring unknown magic link action: {action}")
        return
    try:
        db.add(MagicLinkEvent(token=token, action=action))
        db.commit()
    except Exception as e:
        db.rollback()
        logger.warning(f"Failed to track magic link usage ({action}): {e}")


def find_or_create_survey_user(
    db: Session,
    email: str,
    organization_id: str,
    metadata: Optional[Dict[str, Any]] = None,
) -> User:
    """Reuse the user with this email or create one, and make sure they belong to the organization.

    Existing memberships keep their role; new ones are `survey_respondent`.
    """
    metadata = metadata or {}
    normalized = email.strip().lower()
    try:
        user = db.query(User).filter(User.email == normalized).first()
        if user is None:
            user = User(
                email=normalized,
                first_name=metadata.get("first_name") or "",
                last_name=metadata.get("last_name") or "",
                created_via="survey_magic_link",
                user_metadata={
                    k: metadata[k] for k in ("role", "department") if metadata.get(k)
                },
            )
            db.add(user)
            db.flush()
            logger.info(f"Created survey respondent {user.id}")

        membership = (
            db.query(OrgMembership)
            .filter(
                OrgMembership.user_id == user.id,
                OrgMembership.organization_id == organization_id,
            )
            .first()
        )
        if membership is None:
            db.add(
                OrgMembership(
                    user_id=user.id,
                    organization_id=organization_id,
                    role="survey_respondent",
                    is_active=True,
                )
            )
        db.commit()
        db.refresh(user)
        return user
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to find or create survey user: {e}")
        raise
