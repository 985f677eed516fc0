from datetime import timedelta

from infra24.app.db.core import get_session_factory
from infra24.app.models.core import MagicLink, MagicLinkEvent, OrgMembership, User, utcnow
from infra24.app.services.magic_links import (
    EXPIRED_LINK,
    INVALID_LINK,
    find_or_create_survey_user,
    generate_magic_link,
    track_magic_link_usage,
    validate_magic_link,
)


def _actions(db, token):
    return [e.action for e in db.query(MagicLinkEvent).filter_by(token=token).order_by(MagicLinkEvent.created_at)]


def test_generate_magic_link(db_session, org):
    link = generate_magic_link(db_session, " Person@Example.com ", "survey-1", org.id, metadata={"role": "artist"})
    assert len(link.token) == 64
    assert link.url == f"https://app.infra24.test/survey/survey-1?token={link.token}"
    assert timedelta(hours=23) < link.expires_at - utcnow() <= timedelta(hours=24)

    row = db_session.query(MagicLink).filter_by(token=link.token).one()
    assert row.email == "person@example.com"
    assert row.link_metadata == {"role": "artist"}
    assert _actions(db_session, link.token) == ["generated"]


def test_custom_ttl(db_session, org):
    link = generate_magic_link(db_session, "a@example.com", None, org.id, ttl_hours=2)
    assert link.expires_at - utcnow() <= timedelta(hours=2)
    assert link.url.endswith(f"/survey/None?token={link.token}")


def test_link_validates_once(db_session, org):
    link = generate_magic_link(db_session, "a@example.com", "survey-1", org.id)
    first = validate_magic_link(db_session, link.token)
    assert first.valid
    assert first.data == {
        "email": "a@example.com",
        "survey_id": "survey-1",
        "organization_id": org.id,
        "metadata": {},
    }

    second = validate_magic_link(db_session, link.token)
    assert not second.valid
    assert second.error == INVALID_LINK
    assert _actions(db_session, link.token) == ["generated", "opened"]


def test_concurrent_redemption_succeeds_once(db_session, org):
    link = generate_magic_link(db_session, "a@example.com", "survey-1", org.id)

    # this session has already looked the link up and still sees it unused
    stale = db_session.query(MagicLink).filter_by(token=link.token).one()
    assert stale.used_at is None

    other = get_session_factory()()
    try:
        assert validate_magic_link(other, link.token).valid
    finally:
        other.close()

    late = validate_magic_link(db_session, link.token)
    assert not late.valid
    assert late.error == INVALID_LINK
    assert _actions(db_session, link.token) == ["generated", "opened"]


def test_unknown_and_expired_links(db_session, org):
    assert validate_magic_link(db_session, "does-not-exist").error == INVALID_LINK

    db_session.add(MagicLink(token="stale", email="a@example.com", organization_id=org.id,
                             expires_at=utcnow() - timedelta(minutes=1)))
    db_session.commit()
    result = validate_magic_link(db_session, "stale")
    assert not result.valid
    assert result.error == EXPIRED_LINK
    assert db_session.query(MagicLink).filter_by(token="stale").one().used_at is None


def test_track_ignores_unknown_actions(db_session):
    track_magic_link_usage(db_session, "tok", "started")
    track_magic_link_usage(db_session, "tok", "deleted")
    assert _actions(db_session, "tok") == ["started"]


def test_find_or_create_survey_user(db_session, org, other_org):
    user = find_or_create_survey_user(
        db_session, "New.Person@Example.com", org.id,
        {"first_name": "New", "last_name": "Person", "role": "artist", "ignored": "x"},
    )
    assert user.email == "new.person@example.com"
    assert user.created_via == "survey_magic_link"
    assert user.user_metadata == {"role": "artist"}
    membership = db_session.query(OrgMembership).filter_by(user_id=user.id).one()
    assert membership.role == "survey_respondent"

    again = find_or_create_survey_user(db_session, "new.person@example.com", other_org.id)
    assert again.id == user.id
    assert db_session.query(User).count() == 1
    assert db_session.query(OrgMembership).filter_by(user_id=user.id).count() == 2


def test_existing_membership_keeps_role(db_session, org, make_user):
    user, _ = make_user("mod@oolite.org", "moderator", org)
    find_or_create_survey_user(db_session, "mod@oolite.org", org.id)
    membership = db_session.query(OrgMembership).filter_by(user_id=user.id).one()
    assert membership.role == "moderator"
