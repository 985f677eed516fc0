"""Survey response intake, invitation delivery and analytics."""

import re
from collections import Counter
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from infra24.app.core import config as _config
from infra24.app.core.errors import AuthenticationRequiredError, ValidationFailedError
from infra24.app.core.logging import get_logger
from infra24.app.models.core import (
    MagicLink,
    MagicLinkEvent,
    Organization,
    Survey,
    SurveyResponse,
    User,
    utcnow,
)
from infra24.app.repositories.surveys import InvitationRepository, ResponseRepository
from infra24.app.services.email import EmailOptions, EmailService
from infra24.app.services.email_templates import EmailContext, EmailRecipient
from infra24.app.services.magic_links import generate_magic_link, track_magic_link_usage

logger = get_logger("infra24.surveys")

DATE_RANGES = {"7d": 7, "30d": 30, "90d": 90}

STOP_WORDS = frozenset({
    "this", "that", "with", "from", "they", "have", "been", "were", "said",
    "each", "which", "their", "time", "will", "about", "would", "there",
    "could", "other", "very", "much", "some", "more", "also", "when",
    "where", "what", "how", "why", "should", "think",
    "feel", "like", "good", "great", "really", "just", "maybe", "probably",
})

SENTIMENT_WORDS = {
    "positive": frozenset({
        "love", "excellent", "amazing", "fantastic", "wonderful", "great", "awesome",
        "perfect", "best", "outstanding", "impressive", "brilliant", "incredible",
    }),
    "negative": frozenset({
        "hate", "terrible", "awful", "horrible", "bad", "worst", "disappointing",
        "frustrating", "annoying", "useless", "broken", "complicated", "difficult", "confusing",
    }),
    "neutral": frozenset({
        "okay", "fine", "average", "standard", "normal", "typical", "adequate", "acceptable",
    }),
}

THEME_KEYWORDS = {
    "Digital Innovation": ["digital", "technology", "tech", "innovation", "modern", "online", "virtual", "software", "platform"],
    "Learning & Education": ["learn", "education", "training", "workshop", "course", "skill", "knowledge", "teaching", "study", "practice"],
    "Community & Collaboration": ["community", "people", "team", "together", "collaborate", "network", "connect", "share", "group", "social"],
    "Art & Creativity": ["art", "creative", "artistic", "design", "visual", "craft", "expression", "inspiration", "beautiful", "aesthetic"],
    "Accessibility & Inclusion": ["access", "inclusive", "accessible", "everyone", "diverse", "equity", "fair", "welcome", "open", "support"],
    "Resources & Support": ["resource", "support", "help", "assistance", "guidance", "funding", "equipment", "space", "facility", "service"],
    "Feedback & Improvement": ["feedback", "improve", "better", "enhance", "develop", "progress", "advance", "upgrade", "optimize", "refine"],
}

_NON_WORD = re.compile(r"[^\w\s'-]")


# Responses


def submit_response(
    db: Session,
    survey: Survey,
    response_data: Dict[str, Any],
    user: Optional[User] = None,
    invitation_token: Optional[str] = None,
    magic_token: Optional[str] = None,
    respondent_email: Optional[str] = None,
    respondent_role: Optional[str] = None,
    completion_time_seconds: Optional[int] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    now: Optional[datetime] = None,
) -> SurveyResponse:
    """Validate survey state, invitation and limits, then store a completed response."""
    now = now or utcnow()
    if survey.status != "active":
        raise ValidationFailedError("Survey is not active")
    if survey.closes_at and survey.closes_at < now:
        raise ValidationFailedError("Survey has closed")
    if survey.opens_at and survey.opens_at > now:
        raise ValidationFailedError("Survey has not opened yet")

    invitations = InvitationRepository(db)
    invitation = None
    if invitation_token:
        invitation = invitations.by_token(survey.id, invitation_token)
        if invitation is None:
            raise ValidationFailedError("Invalid invitation token")
        if invitation.status == "completed":
            raise ValidationFailedError("Survey already completed")
        if invitation.status == "expired" or (invitation.expires_at and invitation.expires_at < now):
            raise ValidationFailedError("Invitation has expired")

    if survey.requires_authentication and user is None:
        raise AuthenticationRequiredError("Authentication required")

    responses = ResponseRepository(db)
    if survey.max_responses_per_user and user is not None:
        if responses.completed_count(survey.id, user_id=user.id) >= survey.max_responses_per_user:
            raise ValidationFailedError("Maximum responses per user exceeded")
    if survey.max_responses:
        if responses.completed_count(survey.id) >= survey.max_responses:
            raise ValidationFailedError("Maximum responses reached")

    if invitation is not None:
        respondent_email = respondent_email or invitation.email
        respondent_role = respondent_role or invitation.role

    response = responses.create(
        survey.organization_id,
        {
            "survey_id": survey.id,
            "invitation_id": invitation.id if invitation else None,
            "user_id": user.id if user else None,
            "respondent_email": respondent_email or (user.email if user else None),
            "respondent_role": respondent_role,
            "response_data": response_data,
            "status": "completed",
            "completion_time_seconds": completion_time_seconds,
            "ip_address": ip_address,
            "user_agent": user_agent,
            "submitted_at": now,
        },
    )

    if invitation is not None:
        try:
            invitation.status = "completed"
            invitation.completed_at = now
            db.commit()
        except Exception:
            db.rollback()
            raise
        track_magic_link_usage(db, invitation.magic_token, "completed")
    if magic_token:
        track_magic_link_usage(db, magic_token, "completed")

    logger.info(f"Response {response.id} recorded for survey {survey.id}")
    return response


# Invitations


def send_survey_invitations(
    db: Session,
    survey: Survey,
    org: Organization,
    recipients: List[Dict[str, Any]],
    language: str = "en",
    email_service: Optional[EmailService] = None,
) -> Dict[str, Any]:
    """Issue a magic link per recipient and email the survey invitation in bulk."""
    valid = [r for r in recipients if (r.get("email") or "").strip()]
    if not valid:
        raise ValidationFailedError("No valid recipients provided")

    ttl = _config.settings.SURVEY_INVITATION_TTL_HOURS
    email_recipients = []
    for r in valid:
        metadata = {k: r.get(k) for k in ("first_name", "last_name", "role", "department") if r.get(k)}
        link = generate_magic_link(db, r["email"], survey.id, org.id, metadata=metadata, ttl_hours=ttl)
        email_recipients.append(
            EmailRecipient(
                email=r["email"].strip().lower(),
                first_name=r.get("first_name"),
                last_name=r.get("last_name"),
                role=r.get("role"),
                department=r.get("department"),
                metadata={"magic_link_url": link.url},
            )
        )

    service = email_service or EmailService(db)
    bulk = service.send_bulk_emails(
        EmailOptions(
            template="survey_invitation",
            recipients=email_recipients,
            context=EmailContext(
                organization_id=org.id,
                organization_name=org.name,
                organization_slug=org.slug,
                language=language,
                metadata={
                    "survey_title": survey.title,
                    "survey_description": survey.description,
                },
            ),
            tags=["survey", survey.id],
            metadata={"survey_id": survey.id},
        )
    )

    delivered = [r.recipient for r in bulk.results if r.success]
    marked = InvitationRepository(db).mark_sent(survey.id, delivered)
    logger.info(
        f"Survey {survey.id} invitations: {bulk.stats['successful']}/{bulk.stats['total']} sent, "
        f"{marked} invitation(s) marked sent"
    )
    result = bulk.to_dict()
    result["skipped"] = len(recipients) - len(valid)
    result["invitations_marked_sent"] = marked
    return result


# Analytics


def range_start(date_range: str, now: datetime) -> datetime:
    if date_range == "1y":
        try:
            return now.replace(year=now.year - 1)
        except ValueError:
            # 29 February
            return now.replace(year=now.year - 1, day=28)
    return now - timedelta(days=DATE_RANGES.get(date_range, 30))


def _time_series(responses: List[SurveyResponse], start: date, end: date) -> List[Dict[str, Any]]:
    per_day = Counter(r.created_at.date() for r in responses)
    series = []
    current = start
    while current <= end:
        series.append({"date": current.isoformat(), "responses": per_day.get(current, 0)})
        current += timedelta(days=1)
    return series


def _multiple_choice(question: Dict[str, Any], answers: List[Any]) -> Dict[str, Any]:
    counts = []
    for choice in question.get("choices") or []:
        count = sum(
            1 for a in answers
            if a == choice or (isinstance(a, list) and choice in a)
        )
        counts.append({"option": choice, "count": count})
    total = sum(c["count"] for c in counts)
    for c in counts:
        c["percentage"] = round(c["count"] / total * 100, 1) if total else 0.0
    return {"choices": counts}


def _rating(answers: List[Any]) -> Dict[str, Any]:
    ratings = []
    for a in answers:
        try:
            ratings.append(float(a))
        except (TypeError, ValueError):
            continue
    if not ratings:
        return {}
    return {
        "average_rating": round(sum(ratings) / len(ratings), 2),
        "rating_distribution": [
            {"rating": n, "count": sum(1 for r in ratings if r == n)} for n in range(1, 6)
        ],
    }


def word_counts(texts: List[str], top: int = 25) -> List[Dict[str, Any]]:
    """Most frequent meaningful words (4-19 chars, no stop words, no numbers)."""
    words = _NON_WORD.sub(" ", " ".join(texts).lower()).split()
    counter = Counter(
        w for w in words
        if 3 < len(w) < 20 and w not in STOP_WORDS and not w.isdigit()
    )
    return [{"word": w, "count": c} for w, c in counter.most_common(top)]


def sentiment_counts(texts: List[str]) -> Dict[str, int]:
    """Number of answers containing at least one word of each sentiment."""
    result = {}
    for label, vocabulary in SENTIMENT_WORDS.items():
        result[label] = sum(
            1 for t in texts if any(w in vocabulary for w in t.lower().split())
        )
    return result


def _themes(texts: List[str]) -> List[Dict[str, Any]]:
    themes = []
    for theme, keywords in THEME_KEYWORDS.items():
        matching = [
            t for t in texts
            if any(k in w for w in t.lower().split() for k in keywords)
        ]
        if matching:
            themes.append({
                "theme": theme,
                "count": len(matching),
                "percentage": round(len(matching) / len(texts) * 100),
                "examples": [m if len(m) <= 100 else m[:100] + "..." for m in matching[:3]],
            })
    themes.sort(key=lambda t: t["count"], reverse=True)
    return themes[:8]


def _open_text(answers: List[Any]) -> Dict[str, Any]:
    texts = [str(a) for a in answers if str(a).strip()]
    if not texts:
        return {}
    lengths = [len(t) for t in texts]
    return {
        "word_cloud": word_counts(texts),
        "common_themes": _themes(texts),
        "sentiment": sentiment_counts(texts),
        "response_stats": {
            "total_responses": len(texts),
            "average_length": round(sum(lengths) / len(lengths)),
            "shortest_response": min(lengths),
            "longest_response": max(lengths),
        },
    }


def question_analytics(form_schema: Optional[Dict[str, Any]], responses: List[SurveyResponse]) -> List[Dict[str, Any]]:
    questions = (form_schema or {}).get("questions") or []
    completed = [r for r in responses if r.status == "completed"]
    results = []
    for question in questions:
        qid = question.get("id")
        answers = [
            (r.response_data or {}).get(qid) for r in completed
        ]
        answers = [a for a in answers if a not in (None, "", [])]
        qtype = question.get("type")
        if qtype == "multiple_choice":
            detail = _multiple_choice(question, answers)
        elif qtype == "rating":
            detail = _rating(answers)
        elif qtype == "open_text":
            detail = _open_text(answers)
        else:
            detail = {}
        results.append({
            "question_id": qid,
            "question_text": question.get("question"),
            "question_type": qtype,
            "response_count": len(answers),
            "analytics": detail,
        })
    return results


def distribution_stats(db: Session, survey_id: str, start: datetime) -> Dict[str, int]:
    links = (
        db.query(MagicLink)
        .filter(MagicLink.survey_id == survey_id, MagicLink.created_at >= start)
        .all()
    )
    tokens = [link.token for link in links]
    clicked = 0
    if tokens:
        clicked = (
            db.query(MagicLinkEvent.token)
            .filter(
                MagicLinkEvent.token.in_(tokens),
                MagicLinkEvent.action.in_(("started", "completed")),
            )
            .distinct()
            .count()
        )
    return {
        "total_sent": len(links),
        "opened": sum(1 for link in links if link.used_at is not None),
        "clicked": clicked,
    }


def survey_analytics(db: Session, survey: Survey, date_range: str = "30d",
                     now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    start = range_start(date_range, now)
    responses = ResponseRepository(db).since(survey.id, start)

    total = len(responses)
    completed = [r for r in responses if r.status == "completed"]
    timed = [r.completion_time_seconds for r in completed if r.completion_time_seconds]

    return {
        "survey_id": survey.id,
        "survey_title": survey.title,
        "date_range": date_range,
        "total_responses": total,
        "completion_rate": round(len(completed) / total, 4) if total else 0.0,
        "average_time": round(sum(timed) / len(timed), 1) if timed else 0.0,
        "response_breakdown": {
            "completed": len(completed),
            "partial": sum(1 for r in responses if r.status == "partial"),
            "abandoned": sum(1 for r in responses if r.status == "abandoned"),
        },
        "question_analytics": question_analytics(survey.form_schema, responses),
        "distribution_stats": distribution_stats(db, survey.id, start),
        "time_series": _time_series(responses, start.date(), now.date()),
    }
