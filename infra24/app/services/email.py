"""Multi-tenant email service.

Renders templates with the organization's branding, sends them through Resend
and records delivery analytics. A failed send never raises: callers get an
`EmailResult` with `success=False`.
"""

import concurrent.futures
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from infra24.app.core import config as _config
from infra24.app.core.logging import get_logger, log_email_event
from infra24.app.models.core import EmailEvent, Organization
from infra24.app.services.email_templates import (
    Branding,
    EmailContext,
    EmailRecipient,
    darken_color,
    render_template,
)
from infra24.app.services.resend import ResendClient

logger = get_logger("email")

__all__ = [
    "BulkEmailResult",
    "EmailOptions",
    "EmailResult",
    "EmailService",
    "darken_color",
]


@dataclass
class EmailOptions:
    template: str
    recipients: List[EmailRecipient]
    context: EmailContext
    priority: str = "normal"
    tags: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class EmailResult:
    success: bool
    recipient: str
    template: str
    organization_id: str
    message_id: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message_id": self.message_id,
            "error": self.error,
            "recipient": self.recipient,
            "template": self.template,
            "organization_id": self.organization_id,
        }


@dataclass
class BulkEmailResult:
    success: bool
    results: List[EmailResult]
    stats: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "results": [r.to_dict() for r in self.results],
            "stats": self.stats,
        }


class EmailService:
    def __init__(
        self,
        db: Session,
        client: Optional[Any] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.db = db
        self._client = client
        self._owns_client = False
        self._sleep = sleep

    @property
    def client(self):
        if self._client is None:
            self._client = ResendClient()
            self._owns_client = True
        return self._client

    def close(self) -> None:
        """Release the HTTP client if this service created it."""
        if self._owns_client:
            self._client.close()
            self._client = None
            self._owns_client = False

    def get_branding(self, organization_id: str) -> Branding:
        """Organization branding with platform defaults for anything missing."""
        org = self.db.get(Organization, organization_id) if organization_id else None
        if org is None:
            return Branding()
        defaults = Branding()
        return Branding(
            primary_color=org.primary_color or defaults.primary_color,
            logo_url=org.logo_url,
            website_url=org.website_url or defaults.website_url,
            support_email=org.support_email or defaults.support_email,
            organization_name=org.name,
            organization_slug=org.slug,
        )

    def _deliver(self, options: EmailOptions, recipient: EmailRecipient, branding: Branding,
                 client: Optional[Any] = None):
        """Render and send to one recipient; returns (result, duration_ms)."""
        start_time = time.time()
        context = replace(
            options.context,
            branding=branding,
            metadata={**options.context.metadata, **recipient.metadata},
        )
        try:
            template = render_template(options.template, recipient, context)
            message_id = (client or self.client).send(
                from_email=_config.settings.RESEND_FROM_EMAIL,
                to=[recipient.email],
                subject=template.subject,
                html=template.html,
                text=template.text,
                tags=[
                    {"name": "organization", "value": branding.organization_slug},
                    {"name": "template", "value": options.template},
                    {"name": "language", "value": context.language},
                ] + [{"name": "custom", "value": tag} for tag in options.tags],
                headers={
                    "X-Organization-ID": context.organization_id,
                    "X-Template": options.template,
                    "X-Language": context.language,
                },
            )
            result = EmailResult(
                success=True,
                recipient=recipient.email,
                template=options.template,
                organization_id=context.organization_id,
                message_id=message_id,
            )
        except Exception as e:
            result = EmailResult(
                success=False,
                recipient=recipient.email,
                template=options.template,
                organization_id=context.organization_id,
                error=str(e) or e.__class__.__name__,
            )
        return result, (time.time() - start_time) * 1000

    def _track(self, result: EmailResult, language: str, duration_ms: float,
               metadata: Dict[str, Any]) -> None:
        event_type = "email_sent" if result.success else "email_failed"
        log_email_event(
            event_type, result.template, result.recipient, result.organization_id,
            result.success, duration_ms=duration_ms, error=result.error,
        )
        if not _config.settings.EMAIL_ANALYTICS_ENABLED:
            return
        try:
            self.db.add(
                EmailEvent(
                    organization_id=result.organization_id or None,
                    event_type=event_type,
                    template=result.template,
                    language=language,
                    recipient=result.recipient,
                    message_id=result.message_id,
                    error=result.error,
                    payload={"duration_ms": round(duration_ms, 2), "metadata": metadata},
                )
            )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error tracking email event: {e}")

    def send_email(self, options: EmailOptions) -> EmailResult:
        """Send `options.template` to the first recipient."""
        recipient = options.recipients[0]
        branding = self.get_branding(options.context.organization_id)
        result, duration_ms = self._deliver(options, recipient, branding)
        self._track(result, options.context.language, duration_ms, options.metadata)
        return result

    def send_bulk_emails(self, options: EmailOptions) -> BulkEmailResult:
        """Send to every recipient in batches, parallel within a batch.

        Waits EMAIL_BATCH_DELAY_MS between batches, not after the last one.
        """
        settings = _config.settings
        batch_size = max(1, settings.EMAIL_BATCH_SIZE)
        delay = settings.EMAIL_BATCH_DELAY_MS / 1000.0
        branding = self.get_branding(options.context.organization_id)
        # one client for the whole run; workers must not race to create it
        client = self.client
        recipients = options.recipients
        results: List[EmailResult] = []

        for i in range(0, len(recipients), batch_size):
            batch = recipients[i:i + batch_size]
            with concurrent.futures.ThreadPoolExecutor(max_workers=len(batch)) as ex:
                outcomes = list(ex.map(lambda r: self._deliver(options, r, branding, client), batch))
            # session work stays on this thread
            for result, duration_ms in outcomes:
                self._track(result, options.context.language, duration_ms, options.metadata)
                results.append(result)

            if i + batch_size < len(recipients):
                self._sleep(delay)

        successful = sum(1 for r in results if r.success)
        failed = len(results) - successful
        stats = {
            "total": len(results),
            "successful": successful,
            "failed": failed,
            "success_rate": (successful / len(results) * 100) if results else 0,
        }
        logger.info(
            f"Bulk send of {options.template} finished: {successful}/{len(results)} delivered"
        )
        return BulkEmailResult(success=successful > 0, results=results, stats=stats)
