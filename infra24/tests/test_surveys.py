from datetime import timedelta

import pytest

from infra24.app.api.v1 import surveys as surveys_api
from infra24.app.core.errors import AuthenticationRequiredError, ValidationFailedError
from infra24.app.models.core import (
    Course,
    MagicLink,
    OrgMembership,
    Survey,
    SurveyInvitation,
    SurveyResponse,
    utcnow,
)
from infra24.app.repositories.surveys import InvitationRepository
from infra24.app.services.email import EmailService
from infra24.app.services.magic_links import generate_magic_link, track_magic_link_usage, validate_magic_link
from infra24.app.services.surveys import (
    range_start,
    sentiment_counts,
    submit_response,
    survey_analytics,
    word_counts,
)
from infra24.tests.conftest import FakeResendClient

FORM = {
    "questions": [
        {"id": "q1", "type": "multiple_choice", "question": "Favorite medium?",
         "choices": ["Paint", "Video", "Sculpture"]},
        {"id": "q2", "type": "rating", "question": "How was the residency?"},
        {"id": "q3", "type": "open_text", "question": "Anything else?"},
    ]
}


def _survey(db, org, **fields):
    data = {"title": "Studio Needs", "status": "active", "form_schema": FORM}
    data.update(fields)
    survey = Survey(organization_id=org.id, **data)
    db.add(survey)
    db.commit()
    db.refresh(survey)
    return survey


def _invite(db, survey, email="guest@example.com", hours=24):
    return InvitationRepository(db).create_many(survey, [{"email": email}], hours)[0]


# Response rules


def test_submit_response(db_session, org):
    survey = _survey(db_session, org)
    response = submit_response(db_session, survey, {"q1": "Paint"}, respondent_email="a@example.com",
                               completion_time_seconds=90)
    assert response.status == "completed"
    assert response.organization_id == org.id
    assert response.submitted_at is not None


@pytest.mark.parametrize("fields,message", [
    ({"status": "draft"}, "Survey is not active"),
    ({"status": "closed"}, "Survey is not active"),
    ({"closes_at": utcnow() - timedelta(hours=1)}, "Survey has closed"),
    ({"opens_at": utcnow() + timedelta(hours=1)}, "Survey has not opened yet"),
])
def test_survey_state_rules(db_session, org, fields, message):
    survey = _survey(db_session, org, **fields)
    with pytest.raises(ValidationFailedError, match=message):
        submit_response(db_session, survey, {})


def test_invitation_is_completed_once(db_session, org):
    survey = _survey(db_session, org)
    invitation = _invite(db_session, survey, email="Guest@Example.com", hours=24)

    response = submit_response(db_session, survey, {"q1": "Video"}, invitation_token=invitation.magic_token)
    assert response.invitation_id == invitation.id
    assert response.respondent_email == "guest@example.com"
    db_session.refresh(invitation)
    assert invitation.status == "completed"
    assert invitation.completed_at is not None

    with pytest.raises(ValidationFailedError, match="Survey already completed"):
        submit_response(db_session, survey, {}, invitation_token=invitation.magic_token)


def test_invalid_and_expired_invitations(db_session, org, other_org):
    survey = _survey(db_session, org)
    with pytest.raises(ValidationFailedError, match="Invalid invitation token"):
        submit_response(db_session, survey, {}, invitation_token="nope")

    other = _survey(db_session, org, title="Other")
    foreign = _invite(db_session, other)
    with pytest.raises(ValidationFailedError, match="Invalid invitation token"):
        submit_response(db_session, survey, {}, invitation_token=foreign.magic_token)

    invitation = _invite(db_session, survey, email="late@example.com")
    with pytest.raises(ValidationFailedError, match="Invitation has expired"):
        submit_response(db_session, survey, {}, invitation_token=invitation.magic_token,
                        now=utcnow() + timedelta(hours=25))


def test_authentication_and_limits(db_session, org, make_user):
    user, _ = make_user("artist@oolite.org", "member", org)

    private = _survey(db_session, org, requires_authentication=True)
    with pytest.raises(AuthenticationRequiredError):
        submit_response(db_session, private, {})
    submit_response(db_session, private, {}, user=user)

    per_user = _survey(db_session, org, max_responses_per_user=1)
    submit_response(db_session, per_user, {}, user=user)
    with pytest.raises(ValidationFailedError, match="Maximum responses per user exceeded"):
        submit_response(db_session, per_user, {}, user=user)
    # anonymous answers are not limited per user
    submit_response(db_session, per_user, {})

    capped = _survey(db_session, org, max_responses=2)
    submit_response(db_session, capped, {})
    submit_response(db_session, capped, {}, user=user)
    with pytest.raises(ValidationFailedError, match="Maximum responses reached"):
        submit_response(db_session, capped, {})


# Text analysis


def test_word_counts():
    counts = word_counts([
        "The studio lighting was excellent, studio space too!",
        "Studio 2024 should have more lighting",
    ])
    assert counts[0] == {"word": "studio", "count": 3}
    assert {"word": "lighting", "count": 2} in counts
    words = {c["word"] for c in counts}
    assert "should" not in words
    assert "2024" not in words
    assert "the" not in words


def test_sentiment_counts():
    assert sentiment_counts(["I love it", "Booking is confusing", "It was okay", "no opinion"]) == {
        "positive": 1, "negative": 1, "neutral": 1,
    }


def test_range_start():
    now = utcnow().replace(year=2024, month=2, day=29)
    assert range_start("7d", now) == now - timedelta(days=7)
    assert range_start("90d", now) == now - timedelta(days=90)
    assert range_start("1y", now).date().isoformat() == "2023-02-28"
    assert range_start("bogus", now) == now - timedelta(days=30)


def test_survey_analytics(db_session, org):
    survey = _survey(db_session, org)
    for data, seconds in [
        ({"q1": "Paint", "q2": 5, "q3": "I love the digital workshop community"}, 120),
        ({"q1": ["Paint", "Video"], "q2": 3, "q3": "The equipment booking is confusing"}, 60),
        ({"q1": "Video", "q2": "4", "q3": ""}, None),
    ]:
        submit_response(db_session, survey, data, completion_time_seconds=seconds)

    link = generate_magic_link(db_session, "a@example.com", survey.id, org.id)
    validate_magic_link(db_session, link.token)
    track_magic_link_usage(db_session, link.token, "started")
    generate_magic_link(db_session, "b@example.com", survey.id, org.id)

    result = survey_analytics(db_session, survey, "7d")
    assert result["total_responses"] == 3
    assert result["completion_rate"] == 1.0
    assert result["average_time"] == 90.0
    assert result["response_breakdown"] == {"completed": 3, "partial": 0, "abandoned": 0}
    assert result["distribution_stats"] == {"total_sent": 2, "opened": 1, "clicked": 1}
    assert len(result["time_series"]) == 8
    assert sum(day["responses"] for day in result["time_series"]) == 3

    q1, q2, q3 = result["question_analytics"]
    assert q1["analytics"]["choices"] == [
        {"option": "Paint", "count": 2, "percentage": 50.0},
        {"option": "Video", "count": 2, "percentage": 50.0},
        {"option": "Sculpture", "count": 0, "percentage": 0.0},
    ]
    assert q2["analytics"]["average_rating"] == 4.0
    assert [d["count"] for d in q2["analytics"]["rating_distribution"]] == [0, 0, 1, 1, 1]
    assert q3["response_count"] == 2
    assert q3["analytics"]["sentiment"] == {"positive": 1, "negative": 1, "neutral": 0}
    assert q3["analytics"]["response_stats"]["total_responses"] == 2
    themes = {t["theme"] for t in q3["analytics"]["common_themes"]}
    assert {"Digital Innovation", "Learning & Education", "Community & Collaboration"} <= themes


def test_analytics_without_responses(db_session, org):
    result = survey_analytics(db_session, _survey(db_session, org), "30d")
    assert result["total_responses"] == 0
    assert result["completion_rate"] == 0.0
    assert result["question_analytics"][2]["analytics"] == {}


# API


def test_survey_crud_and_visibility(client, org, make_user):
    _, mod_headers = make_user("mod@oolite.org", "moderator", org)
    _, member_headers = make_user("member@oolite.org", "member", org)

    denied = client.post("/api/v1/organizations/oolite/surveys", json={"title": "X"}, headers=member_headers)
    assert denied.status_code == 403

    r = client.post("/api/v1/organizations/oolite/surveys",
                    json={"title": "Residency Feedback", "form_schema": FORM}, headers=mod_headers)
    assert r.status_code == 201
    survey = r.json()
    assert survey["status"] == "draft"

    # drafts are hidden from the public
    assert client.get(f"/api/v1/surveys/{survey['id']}").status_code == 404
    assert client.get(f"/api/v1/surveys/{survey['id']}", headers=member_headers).status_code == 200

    r = client.patch(f"/api/v1/surveys/{survey['id']}", json={"status": "active"}, headers=mod_headers)
    assert r.json()["status"] == "active"
    assert client.get(f"/api/v1/surveys/{survey['id']}").status_code == 200

    listing = client.get("/api/v1/organizations/oolite/surveys?search=residency", headers=member_headers).json()
    assert listing["pagination"]["total"] == 1
    assert listing["items"][0]["id"] == survey["id"]
    none = client.get("/api/v1/organizations/oolite/surveys?status=closed", headers=member_headers).json()
    assert none["items"] == []


def test_delete_survey_removes_children(client, db_session, org, make_user):
    _, headers = make_user("admin@oolite.org", "org_admin", org)
    survey = _survey(db_session, org)
    invitation = _invite(db_session, survey)
    submit_response(db_session, survey, {}, invitation_token=invitation.magic_token)
    generate_magic_link(db_session, "x@example.com", survey.id, org.id)

    assert client.delete(f"/api/v1/surveys/{survey.id}", headers=headers).json() == {"success": True}
    db_session.expire_all()
    assert db_session.query(Survey).count() == 0
    assert db_session.query(SurveyInvitation).count() == 0
    assert db_session.query(SurveyResponse).count() == 0
    assert db_session.query(MagicLink).count() == 0
    assert client.get(f"/api/v1/surveys/{survey.id}", headers=headers).status_code == 404


def test_public_response_submission(client, db_session, org):
    survey = _survey(db_session, org)
    r = client.post(
        f"/api/v1/surveys/{survey.id}/responses",
        json={"response_data": {"q1": "Paint"}, "respondent_email": "walkin@example.com"},
        headers={"user-agent": "pytest-agent"},
    )
    assert r.status_code == 201
    assert r.json()["respondent_email"] == "walkin@example.com"
    row = db_session.query(SurveyResponse).one()
    assert row.user_agent == "pytest-agent"
    assert row.ip_address


def test_response_errors_over_http(client, db_session, org):
    closed = _survey(db_session, org, status="closed")
    r = client.post(f"/api/v1/surveys/{closed.id}/responses", json={"response_data": {}})
    assert r.status_code == 400
    assert r.json() == {"detail": "Survey is not active"}

    private = _survey(db_session, org, requires_authentication=True)
    r = client.post(f"/api/v1/surveys/{private.id}/responses", json={"response_data": {}})
    assert r.status_code == 401

    assert client.post("/api/v1/surveys/missing/responses", json={"response_data": {}}).status_code == 404


def test_invitations_and_sending(client, db_session, org, make_user):
    _, headers = make_user("mod@oolite.org", "moderator", org)
    survey = _survey(db_session, org)

    r = client.post(
        f"/api/v1/surveys/{survey.id}/invitations",
        json={"invitations": [{"email": "one@example.com"}, {"email": "two@example.com", "role": "artist"}]},
        headers=headers,
    )
    assert r.status_code == 201
    assert [i["status"] for i in r.json()] == ["pending", "pending"]

    fake = FakeResendClient(fail_for={"two@example.com"})
    client.app.dependency_overrides[surveys_api.get_email_service] = lambda: EmailService(
        db_session, client=fake, sleep=lambda s: None
    )
    r = client.post(
        f"/api/v1/surveys/{survey.id}/invitations/send",
        json={"recipients": [
            {"email": "one@example.com", "first_name": "Uno"},
            {"email": "two@example.com"},
            {"email": ""},
        ]},
        headers=headers,
    )
    assert r.status_code == 200
    body = r.json()
    assert body["stats"]["successful"] == 1
    assert body["stats"]["failed"] == 1
    assert body["skipped"] == 1
    assert body["invitations_marked_sent"] == 1

    message = fake.sent[0]
    assert message["subject"] == f"[{org.name}] Survey: Studio Needs"
    assert "Hi Uno," in message["text"]
    assert f"https://app.infra24.test/survey/{survey.id}?token=" in message["text"]

    listing = client.get(f"/api/v1/surveys/{survey.id}/invitations?status=sent", headers=headers).json()
    assert [i["email"] for i in listing["items"]] == ["one@example.com"]


def test_send_requires_recipients(client, db_session, org, make_user):
    _, headers = make_user("mod@oolite.org", "moderator", org)
    survey = _survey(db_session, org)
    r = client.post(f"/api/v1/surveys/{survey.id}/invitations/send",
                    json={"recipients": [{"email": "  "}]}, headers=headers)
    assert r.status_code == 400
    assert r.json()["detail"] == "No valid recipients provided"


def test_magic_link_survey_access(client, db_session, org, make_user):
    _, admin_headers = make_user("admin@oolite.org", "org_admin", org)
    _, mod_headers = make_user("mod@oolite.org", "moderator", org)
    survey = _survey(db_session, org)

    payload = {"email": "respondent@example.com", "metadata": {"first_name": "Rae"}}
    assert client.post(f"/api/v1/surveys/{survey.id}/magic-links", json=payload,
                       headers=mod_headers).status_code == 403
    r = client.post(f"/api/v1/surveys/{survey.id}/magic-links", json=payload, headers=admin_headers)
    assert r.status_code == 201
    token = r.json()["token"]
    assert r.json()["url"].endswith(f"?token={token}")

    access = client.post("/api/v1/survey-access", json={"token": token})
    assert access.status_code == 200
    data = access.json()
    assert data["survey_id"] == survey.id
    assert data["organization_id"] == org.id
    assert data["email"] == "respondent@example.com"
    membership = db_session.query(OrgMembership).filter_by(user_id=data["user_id"]).one()
    assert membership.role == "survey_respondent"

    again = client.post("/api/v1/survey-access", json={"token": token})
    assert again.status_code == 400
    assert again.json()["detail"] == "Invalid or expired link"


def test_responses_listing_and_analytics_api(client, db_session, org, other_org, make_user):
    _, mod_headers = make_user("mod@oolite.org", "moderator", org)
    _, member_headers = make_user("member@oolite.org", "member", org)
    _, outsider_headers = make_user("someone@bakehouse.org", "org_admin", other_org)
    survey = _survey(db_session, org)
    submit_response(db_session, survey, {"q2": 5}, respondent_role="artist")
    submit_response(db_session, survey, {"q2": 1}, respondent_role="staff")

    listing = client.get(f"/api/v1/surveys/{survey.id}/responses?role=artist", headers=member_headers).json()
    assert listing["pagination"]["total"] == 1
    assert client.get(f"/api/v1/surveys/{survey.id}/responses", headers=outsider_headers).status_code == 403

    assert client.get(f"/api/v1/surveys/{survey.id}/analytics", headers=member_headers).status_code == 403
    r = client.get(f"/api/v1/surveys/{survey.id}/analytics?date_range=90d", headers=mod_headers)
    assert r.status_code == 200
    assert r.json()["question_analytics"][1]["analytics"]["average_rating"] == 3.0
    assert client.get(f"/api/v1/surveys/{survey.id}/analytics?date_range=2w",
                      headers=mod_headers).status_code == 422


def test_respondents_cannot_read_other_responses(client, db_session, org, make_user):
    _, respondent_headers = make_user("rae@example.com", "survey_respondent", org)
    survey = _survey(db_session, org)
    submit_response(db_session, survey, {"q3": "private answer"}, respondent_email="other@example.com")

    r = client.get(f"/api/v1/surveys/{survey.id}/responses", headers=respondent_headers)
    assert r.status_code == 403
    assert client.get("/api/v1/organizations/oolite/surveys", headers=respondent_headers).status_code == 403
    course = Course(organization_id=org.id, title="Risograph basics", published=True)
    db_session.add(course)
    db_session.commit()
    assert client.post(f"/api/v1/organizations/oolite/courses/{course.id}/enrollments",
                       headers=respondent_headers).status_code == 403
