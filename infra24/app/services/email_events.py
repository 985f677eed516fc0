"""Resend delivery webhooks and per-organization email statistics."""

import hashlib
import hmac
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from infra24.app.core.errors import ValidationFailedError
from infra24.app.core.logging import get_logger
from infra24.app.models.core import EmailEvent, Organization

logger = get_logger("email.webhooks")

WEBHOOK_EVENT_TYPES = frozenset({
    "email.sent",
    "email.delivered",
    "email.delivery_delayed",
    "email.bounced",
    "email.failed",
    "email.opened",
    "email.clicked",
    "email.complained",
    "email.scheduled",
})


def verify_webhook_signature(payload: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    """Check a hex HMAC-SHA256 of the raw body in constant time."""
    if not signature or not secret:
        return False
    expected = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(signature.strip().lower(), expected)


def _header(headers: Any, name: str) -> Optional[str]:
    if isinstance(headers, dict):
        for key, value in headers.items():
            if key.lower() == name.lower():
                return value
    elif isinstance(headers, list):
        # Resend may send headers as [{"name": ..., "value": ...}]
        for item in headers:
            if isinstance(item, dict) and str(item.get("name", "")).lower() == name.lower():
                return item.get("value")
    return None


def record_webhook_event(db: Session, payload: Dict[str, Any]) -> EmailEvent:
    """Store one webhook event; raises ValidationFailedError for unknown types."""
    event_type = payload.get("type")
    if event_type not in WEBHOOK_EVENT_TYPES:
        logger.warning(f"Unknown webhook event type: {event_type}")
        raise ValidationFailedError(f"Unknown event type: {event_type}")

    data = payload.get("data") or {}
    headers = data.get("headers") or {}
    recipient = data.get("recipient") or data.get("to")
    if isinstance(recipient, list):
        recipient = recipient[0] if recipient else None

    organization_id = _header(headers, "X-Organization-ID")
    if organization_id and db.get(Organization, organization_id) is None:
        # the header comes from the payload; never write an unknown foreign key
        logger.warning(f"Webhook {event_type} names unknown organization {organization_id}")
        organization_id = None

    event = EmailEvent(
        organization_id=organization_id,
        event_type=event_type,
        template=_header(headers, "X-Template") or "unknown",
        language=_header(headers, "X-Language") or "en",
        recipient=recipient,
        message_id=data.get("email_id") or data.get("id"),
        error=data.get("reason") or data.get("bounce_reason") or data.get("complaint_reason"),
        payload=payload,
    )
    try:
        db.add(event)
        db.commit()
        db.refresh(event)
    except Exception as e:
        db.rollback()
        logger.error(f"Error storing {event_type} event: {e}")
        raise
    logger.info(
        f"Recorded {event_type} for message {event.message_id}",
        extra={"extra_fields": {"event_type": event_type, "organization_id": event.organization_id}},
    )
    return event


def _rate(part: int, whole: int) -> float:
    return round(part / whole * 100, 1) if whole else 0.0


def email_stats(db: Session, organization_id: str) -> Dict[str, Any]:
    """Counts per event type and template, plus delivery/open/click rates over sends."""
    by_type = dict(
        db.query(EmailEvent.event_type, func.count(EmailEvent.id))
        .filter(EmailEvent.organization_id == organization_id)
        .group_by(EmailEvent.event_type)
        .all()
    )
    by_template = dict(
        db.query(EmailEvent.template, func.count(EmailEvent.id))
        .filter(
            EmailEvent.organization_id == organization_id,
            EmailEvent.event_type == "email_sent",
        )
        .group_by(EmailEvent.template)
        .all()
    )

    # our own send log and the provider's email.sent describe the same messages
    sends = max(by_type.get("email_sent", 0), by_type.get("email.sent", 0))
    failures = (
        by_type.get("email_failed", 0)
        + by_type.get("email.failed", 0)
        + by_type.get("email.bounced", 0)
    )
    attempts = sends + by_type.get("email_failed", 0)
    return {
        "organization_id": organization_id,
        "events": by_type,
        "templates": by_template,
        "sent": sends,
        "failed": failures,
        "success_rate": _rate(sends, attempts),
        "delivery_rate": _rate(by_type.get("email.delivered", 0), sends),
        "open_rate": _rate(by_type.get("email.opened", 0), sends),
        "click_rate": _rate(by_type.get("email.clicked", 0), sends),
        "bounce_rate": _rate(by_type.get("email.bounced", 0), sends),
    }
