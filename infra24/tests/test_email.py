import json

import httpx
import pytest

from infra24.app.core.errors import EmailDeliveryError
from infra24.app.models.core import EmailEvent
from infra24.app.services.email import EmailOptions, EmailService
from infra24.app.services.email_templates import (
    TEMPLATES,
    Branding,
    EmailContext,
    EmailRecipient,
    darken_color,
    render_template,
)
from infra24.app.services.resend import ResendClient, ResendConfig
from infra24.tests.conftest import FakeResendClient


def _context(org_id="org-1", language="en", **metadata):
    return EmailContext(
        organization_id=org_id,
        language=language,
        branding=Branding(organization_name="Oolite Arts", organization_slug="oolite", primary_color="#47abc4"),
        metadata=metadata,
    )


@pytest.mark.parametrize("color,percent,expected", [
    ("#ffffff", 50, "#7f7f7f"),
    ("#fff", 0, "#ffffff"),
    ("#123456", 100, "#000000"),
    ("not-a-color", 20, "not-a-color"),
])
def test_darken_color(color, percent, expected):
    assert darken_color(color, percent) == expected


def test_every_template_renders_in_both_languages():
    recipient = EmailRecipient(email="ana@example.com", first_name="Ana")
    for name in TEMPLATES:
        for language in ("en", "es"):
            tpl = render_template(name, recipient, _context(language=language))
            assert tpl.subject.startswith("[Oolite Arts] ")
            assert f'lang="{language}"' in tpl.html
            assert tpl.text


def test_survey_invitation_content():
    recipient = EmailRecipient(email="ana@example.com", first_name="Ana")
    tpl = render_template(
        "survey_invitation", recipient,
        _context(survey_title="Studio Needs", magic_link_url="https://app.test/survey/1?token=abc"),
    )
    assert tpl.subject == "[Oolite Arts] Survey: Studio Needs"
    assert "Hi Ana," in tpl.text
    assert "Start Survey: https://app.test/survey/1?token=abc" in tpl.text
    assert 'href="https://app.test/survey/1?token=abc"' in tpl.html
    assert "#47abc4" in tpl.html


def test_reminder_and_spanish_subjects():
    recipient = EmailRecipient(email="ana@example.com")
    reminder = render_template("survey_reminder", recipient, _context(survey_title="X"))
    assert reminder.subject == "[Oolite Arts] Reminder: Survey: X"
    assert "Hi there," in reminder.text

    es = render_template("survey_reminder", recipient, _context(language="es", survey_title="X"))
    assert es.subject == "[Oolite Arts] Recordatorio: Encuesta: X"
    assert "Hola," in es.text


def test_interpolated_values_are_escaped():
    recipient = EmailRecipient(email="x@example.com", first_name="<b>Eve</b>")
    tpl = render_template("announcement", recipient, _context(announcement_body="<script>alert(1)</script>"))
    assert "<script>" not in tpl.html
    assert "&lt;script&gt;" in tpl.html
    assert "&lt;b&gt;Eve&lt;/b&gt;" in tpl.html


def test_unknown_template():
    with pytest.raises(ValueError, match="Unknown email template: nope"):
        render_template("nope", EmailRecipient(email="a@b.c"), _context())


def test_send_email_uses_org_branding_and_records_event(db_session, org, fake_resend):
    service = EmailService(db_session, client=fake_resend)
    result = service.send_email(
        EmailOptions(
            template="welcome",
            recipients=[EmailRecipient(email="new@example.com", first_name="Nia")],
            context=EmailContext(organization_id=org.id),
        )
    )
    assert result.success
    assert result.message_id == "msg_1"
    sent = fake_resend.sent[0]
    assert sent["to"] == ["new@example.com"]
    assert sent["subject"].startswith(f"[{org.name}] ")
    assert sent["headers"]["X-Organization-ID"] == org.id
    assert {"name": "organization", "value": "oolite"} in sent["tags"]

    event = db_session.query(EmailEvent).one()
    assert event.event_type == "email_sent"
    assert event.template == "welcome"
    assert event.organization_id == org.id


def test_bulk_send_batches_and_records_failures(db_session, org, monkeypatch):
    from infra24.app.core import config as _config

    monkeypatch.setattr(_config.settings, "EMAIL_BATCH_SIZE", 2)
    client = FakeResendClient(fail_for={"bad@example.com"})
    sleeps = []
    service = EmailService(db_session, client=client, sleep=sleeps.append)
    recipients = [
        EmailRecipient(email=e)
        for e in ("a@example.com", "bad@example.com", "c@example.com", "d@example.com", "e@example.com")
    ]
    result = service.send_bulk_emails(
        EmailOptions(template="announcement", recipients=recipients, context=EmailContext(organization_id=org.id))
    )

    assert result.success
    assert result.stats["total"] == 5
    assert result.stats["successful"] == 4
    assert result.stats["failed"] == 1
    assert result.stats["success_rate"] == pytest.approx(80.0)
    # three batches, so two pauses
    assert len(sleeps) == 2
    failed = [r for r in result.results if not r.success]
    assert failed[0].recipient == "bad@example.com"
    assert "422" in failed[0].error

    types = sorted(e.event_type for e in db_session.query(EmailEvent).all())
    assert types == ["email_failed"] + ["email_sent"] * 4


def test_bulk_send_all_failing(db_session, org):
    client = FakeResendClient(fail_for={"a@example.com"})
    service = EmailService(db_session, client=client, sleep=lambda s: None)
    result = service.send_bulk_emails(
        EmailOptions(template="welcome", recipients=[EmailRecipient(email="a@example.com")],
                     context=EmailContext(organization_id=org.id))
    )
    assert not result.success
    assert result.stats["success_rate"] == 0


def test_bulk_send_builds_one_client_and_closes_it(db_session, org, monkeypatch):
    from infra24.app.services import email as email_service

    built = []

    class CountingClient(FakeResendClient):
        def __init__(self):
            super().__init__()
            self.closed = False
            built.append(self)

        def close(self):
            self.closed = True

    monkeypatch.setattr(email_service, "ResendClient", CountingClient)
    service = EmailService(db_session, sleep=lambda s: None)
    recipients = [EmailRecipient(email=f"guest{i}@example.com") for i in range(12)]
    result = service.send_bulk_emails(
        EmailOptions(template="welcome", recipients=recipients, context=EmailContext(organization_id=org.id))
    )
    assert result.stats["successful"] == 12
    assert len(built) == 1
    assert len(built[0].sent) == 12

    service.close()
    assert built[0].closed


def test_close_leaves_injected_client_open(db_session):
    client = FakeResendClient()
    client.close = lambda: pytest.fail("injected client must stay open")
    EmailService(db_session, client=client).close()


def test_analytics_can_be_disabled(db_session, org, fake_resend, monkeypatch):
    from infra24.app.core import config as _config

    monkeypatch.setattr(_config.settings, "EMAIL_ANALYTICS_ENABLED", False)
    service = EmailService(db_session, client=fake_resend)
    service.send_email(
        EmailOptions(template="welcome", recipients=[EmailRecipient(email="a@example.com")],
                     context=EmailContext(organization_id=org.id))
    )
    assert db_session.query(EmailEvent).count() == 0


def test_resend_client_posts_message():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers["Authorization"]
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "re_123"})

    client = ResendClient(ResendConfig(api_key="re_key", base_url="https://resend.test/"),
                          transport=httpx.MockTransport(handler))
    message_id = client.send(from_email="noreply@infra24.com", to=["a@example.com"], subject="Hi",
                             html="<p>Hi</p>", text="Hi", headers={"X-Template": "welcome"})
    assert message_id == "re_123"
    assert seen["auth"] == "Bearer re_key"
    assert seen["url"] == "https://resend.test/emails"
    assert seen["body"]["to"] == ["a@example.com"]
    assert seen["body"]["headers"] == {"X-Template": "welcome"}
    assert "tags" not in seen["body"]


def test_resend_client_errors():
    rejecting = ResendClient(
        ResendConfig(api_key="re_key"),
        transport=httpx.MockTransport(lambda request: httpx.Response(422, json={"message": "bad from"})),
    )
    with pytest.raises(EmailDeliveryError, match="422"):
        rejecting.send(from_email="x@y.z", to=["a@example.com"], subject="s", html="h")

    unconfigured = ResendClient(ResendConfig(api_key=""))
    with pytest.raises(EmailDeliveryError, match="RESEND_API_KEY"):
        unconfigured.send(from_email="x@y.z", to=["a@example.com"], subject="s", html="h")
