"""Bilingual (en/es) transactional email templates.

Each template returns an `EmailTemplate` with subject, HTML and plain-text
bodies. Interpolated values are HTML-escaped; the organization's primary
colour drives the header and call-to-action button.
"""

from dataclasses import dataclass, field
from html import escape
from typing import Any, Callable, Dict, List, Optional

DEFAULT_PRIMARY_COLOR = "#2563eb"
DEFAULT_SUPPORT_EMAIL = "support@infra24.com"
DEFAULT_ORGANIZATION_NAME = "Infra24"


@dataclass
class EmailTemplate:
    subject: str
    html: str
    text: str


@dataclass
class EmailRecipient:
    email: str
    name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: Optional[str] = None
    department: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Branding:
    primary_color: str = DEFAULT_PRIMARY_COLOR
    logo_url: Optional[str] = None
    website_url: Optional[str] = "https://infra24.com"
    support_email: str = DEFAULT_SUPPORT_EMAIL
    organization_name: str = DEFAULT_ORGANIZATION_NAME
    organization_slug: str = "infra24"


@dataclass
class EmailContext:
    organization_id: str
    organization_name: str = DEFAULT_ORGANIZATION_NAME
    organization_slug: str = "infra24"
    language: str = "en"
    branding: Optional[Branding] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


def darken_color(color: str, percent: float) -> str:
    """Darken a `#rrggbb` (or `#rgb`) colour by `percent`; other input is returned unchanged."""
    value = (color or "").strip().lstrip("#")
    if len(value) == 3:
        value = "".join(ch * 2 for ch in value)
    if len(value) != 6:
        return color
    try:
        channels = [int(value[i:i + 2], 16) for i in (0, 2, 4)]
    except ValueError:
        return color
    factor = max(0.0, min(1.0, 1 - percent / 100.0))
    return "#" + "".join(f"{max(0, min(255, int(c * factor))):02x}" for c in channels)


def _greeting(recipient: EmailRecipient, spanish: bool) -> str:
    if recipient.first_name:
        return f"Hola {recipient.first_name}," if spanish else f"Hi {recipient.first_name},"
    return "Hola," if spanish else "Hi there,"


def _layout(
    *,
    language: str,
    subject: str,
    branding: Branding,
    heading: str,
    greeting: str,
    paragraphs: List[str],
    cta_label: Optional[str] = None,
    cta_url: Optional[str] = None,
    notes: Optional[List[str]] = None,
    footer: Optional[List[str]] = None,
) -> EmailTemplate:
    color = escape(branding.primary_color or DEFAULT_PRIMARY_COLOR)
    dark = escape(darken_color(branding.primary_color or DEFAULT_PRIMARY_COLOR, 20))
    org_name = escape(branding.organization_name)

    body_html = "".join(f"<p>{escape(p)}</p>" for p in paragraphs if p)
    notes_html = "".join(
        f'<div class="note">{escape(n)}</div>' for n in (notes or []) if n
    )
    cta_html = ""
    if cta_label and cta_url:
        cta_html = (
            f'<div style="text-align: center;"><a href="{escape(cta_url, quote=True)}" '
            f'class="cta-button">{escape(cta_label)}</a></div>'
        )
    footer_html = "".join(f"<p>{escape(f)}</p>" for f in (footer or []) if f)
    logo_html = (
        f'<img src="{escape(branding.logo_url, quote=True)}" alt="{org_name}" height="40"><br>'
        if branding.logo_url else ""
    )

    html = f"""<!DOCTYPE html>
<html lang="{escape(language)}">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{escape(subject)}</title>
    <style>
        body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px; background-color: #f8f9fa; }}
        .container {{ background: white; border-radius: 8px; padding: 40px; box-shadow: 0 2px 10px rgba(0,0,0,0.1); }}
        .header {{ text-align: center; margin-bottom: 30px; }}
        .logo {{ font-size: 24px; font-weight: bold; color: {color}; }}
        .title {{ font-size: 26px; font-weight: bold; color: #1f2937; line-height: 1.3; }}
        .cta-button {{ display: inline-block; background: linear-gradient(135deg, {color} 0%, {dark} 100%); color: white; text-decoration: none; padding: 16px 32px; border-radius: 8px; font-weight: 600; margin: 30px 0; }}
        .note {{ background: #f9fafb; border-left: 4px solid {color}; padding: 15px; margin: 20px 0; font-size: 14px; color: #6b7280; }}
        .footer {{ margin-top: 40px; padding-top: 20px; border-top: 1px solid #e5e7eb; font-size: 14px; color: #6b7280; text-align: center; }}
    </style>
</head>
<body>
    <div class="container">
        <div class="header">{logo_html}<div class="logo">{org_name}</div></div>
        <h1 class="title">{escape(heading)}</h1>
        <p>{escape(greeting)}</p>
        {body_html}
        {notes_html}
        {cta_html}
        <div class="footer">{footer_html}<p><strong>{org_name}</strong></p></div>
    </div>
</body>
</html>"""

    text_parts = [greeting, ""]
    text_parts.extend(p for p in paragraphs if p)
    text_parts.extend(n for n in (notes or []) if n)
    if cta_label and cta_url:
        text_parts.append(f"{cta_label}: {cta_url}")
    text_parts.extend(f for f in (footer or []) if f)
    text_parts.append(branding.organization_name)
    text = "\n\n".join(part for part in text_parts if part is not None)

    return EmailTemplate(subject=subject, html=html, text=text)


def _prefix(branding: Branding, subject: str) -> str:
    return f"[{branding.organization_name}] {subject}"


def _survey_invitation(recipient: EmailRecipient, context: EmailContext, reminder: bool = False) -> EmailTemplate:
    branding = context.branding or Branding()
    meta = context.metadata
    es = context.language == "es"
    title = meta.get("survey_title") or ("Nueva Encuesta" if es else "New Survey")
    subject = ("Encuesta: " if es else "Survey: ") + title
    if reminder:
        subject = ("Recordatorio: " if es else "Reminder: ") + subject
    estimated = meta.get("estimated_time") or "10-15 minutes"

    paragraphs = []
    if reminder:
        paragraphs.append(
            "Te recordamos que tu respuesta a esta encuesta sigue pendiente."
            if es else "This is a friendly reminder that your response to this survey is still pending."
        )
    paragraphs.append(
        "Tu opinión es invaluable para ayudarnos a mejorar nuestros programas y servicios."
        if es else "Your input is invaluable in helping us improve our programs and services."
    )
    paragraphs.append(meta.get("survey_description"))

    return _layout(
        language=context.language,
        subject=_prefix(branding, subject),
        branding=branding,
        heading=title,
        greeting=_greeting(recipient, es),
        paragraphs=paragraphs,
        notes=[
            ("Tiempo estimado: " if es else "Estimated time: ") + estimated,
            "Tus respuestas son anónimas y seguras. No compartimos información personal con terceros."
            if es else "Your responses are anonymous and secure. We do not share personal information with third parties.",
        ],
        cta_label="Comenzar Encuesta" if es else "Start Survey",
        cta_url=meta.get("magic_link_url"),
        footer=[
            "Este enlace es personal y seguro. No lo compartas con otros."
            if es else "This link is personal and secure. Please do not share it with others.",
            "Gracias por ser parte de nuestra comunidad." if es else "Thank you for being part of our community.",
        ],
    )


def _survey_reminder(recipient: EmailRecipient, context: EmailContext) -> EmailTemplate:
    return _survey_invitation(recipient, context, reminder=True)


def _survey_completion(recipient: EmailRecipient, context: EmailContext) -> EmailTemplate:
    branding = context.branding or Branding()
    es = context.language == "es"
    title = context.metadata.get("survey_title") or ("la encuesta" if es else "the survey")
    return _layout(
        language=context.language,
        subject=_prefix(branding, f"Gracias por completar {title}" if es else f"Thank you for completing {title}"),
        branding=branding,
        heading="¡Gracias!" if es else "Thank you!",
        greeting=_greeting(recipient, es),
        paragraphs=[
            "Hemos recibido tus respuestas. Tu participación nos ayuda a mejorar."
            if es else "We have received your responses. Your participation helps us improve.",
        ],
        footer=[
            f"¿Preguntas? Escríbenos a {branding.support_email}."
            if es else f"Questions? Contact us at {branding.support_email}.",
        ],
    )


def _welcome(recipient: EmailRecipient, context: EmailContext) -> EmailTemplate:
    branding = context.branding or Branding()
    es = context.language == "es"
    name = branding.organization_name
    return _layout(
        language=context.language,
        subject=_prefix(branding, f"Bienvenido a {name}" if es else f"Welcome to {name}"),
        branding=branding,
        heading=f"Bienvenido a {name}" if es else f"Welcome to {name}",
        greeting=_greeting(recipient, es),
        paragraphs=[
            "Nos alegra que formes parte de nuestra comunidad."
            if es else "We're glad to have you as part of our community.",
            "Explora talleres, anuncios y recursos disponibles para ti."
            if es else "Explore the workshops, announcements and resources available to you.",
        ],
        cta_label="Visitar el sitio" if es else "Visit the site",
        cta_url=context.metadata.get("dashboard_url") or branding.website_url,
        footer=[
            f"¿Necesitas ayuda? Escríbenos a {branding.support_email}."
            if es else f"Need help? Contact us at {branding.support_email}.",
        ],
    )


def _onboarding(recipient: EmailRecipient, context: EmailContext) -> EmailTemplate:
    branding = context.branding or Branding()
    es = context.language == "es"
    steps = context.metadata.get("steps") or (
        ["Completa tu perfil", "Revisa los próximos talleres", "Lee los anuncios recientes"]
        if es else ["Complete your profile", "Browse upcoming workshops", "Read the latest announcements"]
    )
    return _layout(
        language=context.language,
        subject=_prefix(branding, "Primeros pasos" if es else "Get started"),
        branding=branding,
        heading="Primeros pasos" if es else "Let's get you started",
        greeting=_greeting(recipient, es),
        paragraphs=[f"{i}. {step}" for i, step in enumerate(steps, start=1)],
        cta_label="Comenzar" if es else "Get started",
        cta_url=context.metadata.get("dashboard_url") or branding.website_url,
    )


def _workshop_invitation(recipient: EmailRecipient, context: EmailContext) -> EmailTemplate:
    branding = context.branding or Branding()
    meta = context.metadata
    es = context.language == "es"
    title = meta.get("workshop_title") or ("Taller" if es else "Workshop")
    details = []
    if meta.get("workshop_date"):
        details.append(("Fecha: " if es else "Date: ") + str(meta["workshop_date"]))
    if meta.get("workshop_location"):
        details.append(("Lugar: " if es else "Location: ") + str(meta["workshop_location"]))
    return _layout(
        language=context.language,
        subject=_prefix(branding, f"Invitación al taller: {title}" if es else f"Workshop invitation: {title}"),
        branding=branding,
        heading=title,
        greeting=_greeting(recipient, es),
        paragraphs=[
            "Estás invitado a participar en este taller." if es else "You're invited to join this workshop.",
            meta.get("workshop_description"),
        ],
        notes=details,
        cta_label="Reservar mi lugar" if es else "Reserve my spot",
        cta_url=meta.get("registration_url"),
    )


def _announcement(recipient: EmailRecipient, context: EmailContext) -> EmailTemplate:
    branding = context.branding or Branding()
    meta = context.metadata
    es = context.language == "es"
    title = meta.get("announcement_title") or ("Anuncio importante" if es else "Important announcement")
    return _layout(
        language=context.language,
        subject=_prefix(branding, title),
        branding=branding,
        heading=title,
        greeting=_greeting(recipient, es),
        paragraphs=[meta.get("announcement_body")],
        cta_label="Más información" if es else "Learn more",
        cta_url=meta.get("announcement_url"),
    )


def _magic_link(recipient: EmailRecipient, context: EmailContext) -> EmailTemplate:
    branding = context.branding or Branding()
    meta = context.metadata
    es = context.language == "es"
    hours = meta.get("expires_in_hours", 24)
    return _layout(
        language=context.language,
        subject=_prefix(branding, "Tu enlace seguro" if es else "Your secure link"),
        branding=branding,
        heading="Tu enlace seguro" if es else "Your secure link",
        greeting=_greeting(recipient, es),
        paragraphs=[
            "Usa el siguiente enlace para continuar. No necesitas contraseña."
            if es else "Use the link below to continue. No password needed.",
        ],
        notes=[
            f"El enlace vence en {hours} horas y solo puede usarse una vez."
            if es else f"The link expires in {hours} hours and can only be used once.",
        ],
        cta_label="Abrir enlace" if es else "Open link",
        cta_url=meta.get("magic_link_url"),
        footer=[
            "Si no solicitaste este enlace, ignora este mensaje."
            if es else "If you did not request this link, you can ignore this email.",
        ],
    )


TEMPLATES: Dict[str, Callable[[EmailRecipient, EmailContext], EmailTemplate]] = {
    "survey_invitation": _survey_invitation,
    "survey_reminder": _survey_reminder,
    "survey_completion": _survey_completion,
    "welcome": _welcome,
    "onboarding": _onboarding,
    "workshop_invitation": _workshop_invitation,
    "announcement": _announcement,
    "magic_link": _magic_link,
}


def render_template(name: str, recipient: EmailRecipient, context: EmailContext) -> EmailTemplate:
    generator = TEMPLATES.get(name)
    if generator is None:
        raise ValueError(f"Unknown email template: {name}")
    return generator(recipient, context)
