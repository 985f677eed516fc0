import json

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from infra24.app.auth import core as auth
from infra24.app.core import config as _config
from infra24.app.core.logging import get_logger
from infra24.app.db.core import get_db
from infra24.app.models.core import Organization, User
from infra24.app.services.email_events import (
    email_stats,
    record_webhook_event,
    verify_webhook_signature,
)

router = APIRouter()
logger = get_logger("email.webhooks")


@router.get("/organizations/{slug}/email/stats")
def get_email_stats(
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    auth.require_org_role(db, org, current_user, ("org_admin",), action="view_email_stats")
    return email_stats(db, org.id)


async def raw_body(request: Request) -> bytes:
    return await request.body()


@router.post("/webhooks/resend")
def resend_webhook(
    request: Request,
    body: bytes = Depends(raw_body),
    db: Session = Depends(get_db),
):
    """Delivery events from Resend, signed with RESEND_WEBHOOK_SECRET."""
    secret = _config.settings.RESEND_WEBHOOK_SECRET
    if not secret:
        logger.warning("Rejected webhook: RESEND_WEBHOOK_SECRET is not configured")
        raise HTTPException(status_code=401, detail="Webhook secret not configured")
    if not verify_webhook_signature(body, request.headers.get("resend-signature"), secret):
        logger.warning("Rejected webhook with a missing or invalid signature")
        raise HTTPException(status_code=401, detail="Invalid signature")
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail="Invalid JSON payload")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON payload")
    event = record_webhook_event(db, payload)
    return {"received": True, "id": event.id}
