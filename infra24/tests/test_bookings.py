"""Bookable resources, conflict detection, availability, the waitlist and calendar export."""

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from infra24.app.core.errors import ConflictError, ValidationFailedError
from infra24.app.models.core import Booking, WaitlistEntry, utcnow
from infra24.app.repositories.bookings import ResourceRepository
from infra24.app.schemas.core import WEEKDAYS
from infra24.app.services.bookings import create_booking, detect_conflicts, generate_slots
from infra24.app.services.ics import escape_text, fold_line, ics_filename

BASE = "/api/v1/organizations/oolite"
NEW_YORK = ZoneInfo("America/New_York")

STUDIO_VISIT = {
    "title": "Studio Visit",
    "type": "person",
    "location": "Oolite Arts, 924 Lincoln Rd",
    "availability_rules": {
        "slot_minutes": 60,
        "windows": [{"host": "mo", "days": list(WEEKDAYS), "start": "10:00", "end": "13:00"}],
    },
}


def _local(day, hour, minute=0):
    """Naive UTC instant of a New York wall-clock time."""
    wall = datetime.combine(day, time(hour, minute), tzinfo=NEW_YORK)
    return wall.astimezone(timezone.utc).replace(tzinfo=None)


def _day(offset=14):
    return date.today() + timedelta(days=offset)


def _book(client, headers, resource_id, day, hour, **extra):
    payload = {
        "resource_id": resource_id,
        "title": "Studio Visit",
        "starts_at": _local(day, hour).isoformat(),
        "ends_at": _local(day, hour + 1).isoformat(),
        **extra,
    }
    return client.post(f"{BASE}/bookings", json=payload, headers=headers)


@pytest.fixture
def studio(client, org, make_user):
    _, mod = make_user("mod@oolite.org", "moderator", org)
    r = client.post(f"{BASE}/resources", json=STUDIO_VISIT, headers=mod)
    assert r.status_code == 201
    return r.json(), mod


# Slot generation


def test_generate_slots_windows_buffers_and_hosts():
    day = _day()
    weekday = WEEKDAYS[day.weekday()]
    rules = {
        "slot_minutes": 60,
        "buffer_after": 30,
        "windows": [
            {"host": "mo", "days": [weekday.capitalize()], "start": "10:00", "end": "13:00"},
            {"host": "ana", "days": [weekday], "start": "10:00", "end": "12:00"},
        ],
    }
    mo_booked = Booking(
        starts_at=_local(day, 10), ends_at=_local(day, 11), participants=1,
        booking_metadata={"host": "mo"},
    )

    slots = generate_slots(rules, [mo_booked], day, day, "America/New_York", now=_local(day, 0))

    # the buffer after mo's booking also takes the 11:00 slot
    assert [(s["start"], s["host"]) for s in slots] == [
        (_local(day, 10), "ana"),
        (_local(day, 11), "ana"),
        (_local(day, 12), "mo"),
    ]
    assert all(s["end"] - s["start"] == timedelta(hours=1) for s in slots)


def test_generate_slots_limits():
    day = _day()
    rules = {
        "slot_minutes": 60,
        "windows": [
            {"host": "mo", "days": list(WEEKDAYS), "start": "10:00", "end": "13:00"},
            {"host": "ana", "days": list(WEEKDAYS), "start": "10:00", "end": "12:00"},
        ],
    }
    early = _local(day, 0)

    hostless = Booking(starts_at=_local(day, 10), ends_at=_local(day, 11), participants=1,
                       booking_metadata={})
    slots = generate_slots(rules, [hostless], day, day, "America/New_York", now=early)
    assert _local(day, 10) not in [s["start"] for s in slots]

    capped = generate_slots({**rules, "max_per_day_per_host": 1}, [], day, day, now=early)
    assert [(s["start"], s["host"]) for s in capped] == [
        (_local(day, 10), "ana"), (_local(day, 10), "mo"),
    ]

    later = generate_slots(rules, [], day, day, now=_local(day, 11, 30))
    assert [(s["start"], s["host"]) for s in later] == [(_local(day, 12), "mo")]

    assert generate_slots({**rules, "blackouts": [{"date": day.isoformat()}]}, [], day, day, now=early) == []
    around = [(day - timedelta(days=1)).isoformat(), (day + timedelta(days=1)).isoformat()]
    assert generate_slots({**rules, "blackouts": [{"range": around}]}, [], day, day, now=early) == []

    with pytest.raises(ValidationFailedError):
        generate_slots({"windows": []}, [], day, day)
    with pytest.raises(ValidationFailedError):
        generate_slots({**rules, "timezone": "Mars/Olympus_Mons"}, [], day, day)


# Conflict detection


def test_shared_resource_conflicts_on_capacity(db_session, org, make_user):
    user, _ = make_user("artist@oolite.org", "member", org)
    repo = ResourceRepository(db_session)
    lab = repo.create(org.id, {"title": "Digital Lab", "type": "space", "capacity": 4})
    start = utcnow() + timedelta(days=3)
    end = start + timedelta(hours=2)

    create_booking(db_session, org.id, lab, user, "Print session", start, end, participants=3)
    assert detect_conflicts(db_session, org.id, lab, start, end, participants=1) == []

    conflicts = detect_conflicts(db_session, org.id, lab, start + timedelta(hours=1), end, participants=2)
    assert [c.type for c in conflicts] == ["capacity_exceeded"]
    assert conflicts[0].message == "Resource capacity exceeded (3/4)"
    assert "Reduce the number of participants" in conflicts[0].suggested_resolutions
    with pytest.raises(ConflictError):
        create_booking(db_session, org.id, lab, user, "Too many", start, end, participants=2)

    # adjacent bookings do not overlap
    assert detect_conflicts(db_session, org.id, lab, end, end + timedelta(hours=1), participants=4) == []

    repo.update(org.id, lab.id, {"is_bookable": False})
    unavailable = detect_conflicts(db_session, org.id, lab, start, end)
    assert [(c.type, c.severity) for c in unavailable] == [("resource_unavailable", "medium")]
    missing = detect_conflicts(db_session, org.id, None, start, end)
    assert [(c.message, c.severity) for c in missing] == [("Resource not found", "critical")]


# Resources and bookings over HTTP


def test_resources_visibility_and_feature_flag(client, org, make_user, studio):
    resource, mod = studio
    _, respondent = make_user("respondent@oolite.org", "survey_respondent", org)

    r = client.post(f"{BASE}/resources", json={"title": "Kiln"}, headers=respondent)
    assert r.status_code == 403

    hidden = client.post(f"{BASE}/resources", json={"title": "Old Press", "is_active": False}, headers=mod)
    assert hidden.status_code == 201

    public = client.get(f"{BASE}/resources")
    assert [x["id"] for x in public.json()] == [resource["id"]]
    assert client.get(f"{BASE}/resources/{hidden.json()['id']}").status_code == 404
    staff = client.get(f"{BASE}/resources", headers=mod)
    assert {x["title"] for x in staff.json()} == {"Studio Visit", "Old Press"}

    r = client.get("/api/v1/organizations/edgezones/resources")
    assert r.status_code == 404
    assert r.json()["detail"] == "Bookings are not enabled for this organization"


def test_booking_conflicts_and_confirmation(client, org, make_user, studio):
    resource, mod = studio
    _, artist = make_user("artist@oolite.org", "member", org)
    _, painter = make_user("painter@oolite.org", "member", org)
    _, respondent = make_user("respondent@oolite.org", "survey_respondent", org)
    day = _day()

    assert _book(client, respondent, resource["id"], day, 10).status_code == 403

    r = _book(client, artist, resource["id"], day, 10, participants=1, notes="Bring portfolio")
    assert r.status_code == 201
    booking = r.json()
    assert booking["status"] == "pending"
    assert booking["user_email"] == "artist@oolite.org"

    clash = _book(client, painter, resource["id"], day, 10)
    assert clash.status_code == 409
    assert clash.json()["detail"] == "Resource is already booked during this time period"
    assert _book(client, painter, resource["id"], day, 11).status_code == 201

    r = client.get(
        f"{BASE}/resources/{resource['id']}/conflicts",
        params={"starts_at": _local(day, 10, 30).isoformat(), "ends_at": _local(day, 11, 30).isoformat()},
        headers=painter,
    )
    conflicts = r.json()
    assert [c["type"] for c in conflicts] == ["double_booking"]
    assert len(conflicts[0]["conflicting_booking_ids"]) == 2

    url = f"{BASE}/bookings/{booking['id']}"
    assert client.get(url, headers=painter).status_code == 403
    assert client.get(url, headers=artist).json()["notes"] == "Bring portfolio"

    assert client.post(f"{url}/confirm", headers=artist).status_code == 403
    r = client.post(f"{url}/confirm", headers=mod)
    assert r.status_code == 200
    assert r.json()["status"] == "confirmed"
    assert client.post(f"{url}/confirm", headers=mod).status_code == 409

    mine = client.get(f"{BASE}/bookings", headers=artist).json()
    assert [b["id"] for b in mine] == [booking["id"]]
    everyone = client.get(f"{BASE}/bookings", headers=mod, params={"status": "confirmed"}).json()
    assert [b["id"] for b in everyone] == [booking["id"]]


def test_availability_skips_held_slots(client, org, make_user, studio):
    resource, mod = studio
    _, artist = make_user("artist@oolite.org", "member", org)
    day = _day()
    assert _book(client, artist, resource["id"], day, 11).status_code == 201

    url = f"{BASE}/resources/{resource['id']}/availability"
    r = client.get(url, params={"start_date": day.isoformat(), "end_date": day.isoformat()})
    assert r.status_code == 200
    body = r.json()
    assert body["timezone"] == "America/New_York"
    assert body["slot_minutes"] == 60
    assert [(s["start"], s["host"]) for s in body["slots"]] == [
        (_local(day, 10).isoformat(), "mo"),
        (_local(day, 12).isoformat(), "mo"),
    ]

    backwards = {"start_date": day.isoformat(), "end_date": (day - timedelta(days=1)).isoformat()}
    assert client.get(url, params=backwards).status_code == 400

    bare = client.post(f"{BASE}/resources", json={"title": "Darkroom"}, headers=mod).json()
    r = client.get(
        f"{BASE}/resources/{bare['id']}/availability",
        params={"start_date": day.isoformat(), "end_date": day.isoformat()},
    )
    assert r.status_code == 400
    assert r.json()["detail"] == "No availability windows configured for this resource"

    client.patch(f"{BASE}/resources/{resource['id']}", json={"is_bookable": False}, headers=mod)
    r = client.get(url, params={"start_date": day.isoformat(), "end_date": day.isoformat()})
    assert r.status_code == 404


def test_reschedule(client, org, make_user, studio):
    resource, _ = studio
    _, artist = make_user("artist@oolite.org", "member", org)
    _, painter = make_user("painter@oolite.org", "member", org)
    day = _day()
    booking = _book(client, artist, resource["id"], day, 10).json()
    assert _book(client, painter, resource["id"], day, 11).status_code == 201
    url = f"{BASE}/bookings/{booking['id']}/reschedule"

    def _move(hour, headers=artist):
        return client.post(url, json={
            "starts_at": _local(day, hour).isoformat(),
            "ends_at": _local(day, hour + 1).isoformat(),
        }, headers=headers)

    assert _move(12, headers=painter).status_code == 403
    assert _move(11).status_code == 409

    r = _move(12)
    assert r.status_code == 200
    moved = r.json()
    assert moved["starts_at"] == _local(day, 12).isoformat()
    assert moved["metadata"]["sequence"] == 1
    assert moved["metadata"]["rescheduled_from"]["starts_at"] == _local(day, 10).isoformat()

    past = utcnow() - timedelta(days=1)
    r = client.post(url, json={
        "starts_at": past.isoformat(), "ends_at": (past + timedelta(hours=1)).isoformat(),
    }, headers=artist)
    assert r.status_code == 400
    assert r.json()["detail"] == "New booking time must be in the future"

    assert client.post(f"{BASE}/bookings/{booking['id']}/cancel", headers=artist).status_code == 200
    assert _move(10).status_code == 400


# Waitlist


def test_cancellation_promotes_waitlist(client, db_session, org, make_user, studio):
    resource, mod = studio
    _, holder = make_user("holder@oolite.org", "member", org)
    _, first = make_user("first@oolite.org", "member", org, first_name="Ana")
    _, second = make_user("second@oolite.org", "member", org)
    day = _day()
    booking = _book(client, holder, resource["id"], day, 10).json()
    assert _book(client, first, resource["id"], day, 10).status_code == 409

    waitlist_url = f"{BASE}/resources/{resource['id']}/waitlist"
    wanted = {
        "requested_start": _local(day, 10).isoformat(),
        "requested_end": _local(day, 11).isoformat(),
    }
    r = client.post(waitlist_url, json=wanted, headers=first)
    assert r.status_code == 201
    first_entry = r.json()
    assert first_entry["priority"] == 1
    assert first_entry["user_name"] == "Ana User"
    assert client.post(waitlist_url, json=wanted, headers=first).status_code == 409
    second_entry = client.post(waitlist_url, json=wanted, headers=second).json()
    assert second_entry["priority"] == 2

    assert client.get(waitlist_url, headers=first).status_code == 403
    queue = client.get(waitlist_url, headers=mod).json()
    assert [e["id"] for e in queue] == [first_entry["id"], second_entry["id"]]

    slot = {
        "start": _local(day, 10).isoformat(),
        "end": _local(day, 11).isoformat(),
        "host": "mo",
    }
    early = client.post(f"{BASE}/waitlist/{first_entry['id']}/book", json={"slot": slot}, headers=first)
    assert early.status_code == 409
    assert early.json()["detail"] == "Entry is not in notified status"

    r = client.post(f"{BASE}/bookings/{booking['id']}/cancel", json={"reason": "Travel"}, headers=holder)
    assert r.status_code == 200
    body = r.json()
    assert body["booking"]["status"] == "cancelled"
    assert body["booking"]["cancellation_reason"] == "Travel"
    notified = body["waitlist_notifications"]
    assert [n["entry_id"] for n in notified] == [first_entry["id"], second_entry["id"]]
    assert notified[0]["resource_title"] == "Studio Visit"
    assert notified[0]["available_slots"][0]["start"] == _local(day, 10).isoformat()

    other = client.post(f"{BASE}/waitlist/{first_entry['id']}/book", json={"slot": slot}, headers=second)
    assert other.status_code == 404

    r = client.post(f"{BASE}/waitlist/{first_entry['id']}/book", json={"slot": slot}, headers=first)
    assert r.status_code == 201
    rebooked = r.json()
    assert rebooked["metadata"]["waitlist_entry_id"] == first_entry["id"]
    assert db_session.get(WaitlistEntry, first_entry["id"]).status == "booked"

    entry = db_session.get(WaitlistEntry, second_entry["id"])
    entry.expires_at = utcnow() - timedelta(minutes=1)
    db_session.commit()
    late = client.post(f"{BASE}/waitlist/{second_entry['id']}/book", json={"slot": slot}, headers=second)
    assert late.status_code == 400
    assert late.json()["detail"] == "Waitlist notification has expired"
    assert db_session.get(WaitlistEntry, second_entry["id"]).status == "expired"

    assert client.post(f"{BASE}/bookings/{booking['id']}/cancel", headers=holder).status_code == 409


def test_leave_waitlist(client, org, make_user, studio):
    resource, _ = studio
    _, artist = make_user("artist@oolite.org", "member", org)
    day = _day()
    entry = client.post(f"{BASE}/resources/{resource['id']}/waitlist", json={
        "requested_start": _local(day, 12).isoformat(),
        "requested_end": _local(day, 13).isoformat(),
    }, headers=artist).json()

    assert client.delete(f"{BASE}/waitlist/{entry['id']}", headers=artist).json() == {"success": True}
    assert client.delete(f"{BASE}/waitlist/{entry['id']}", headers=artist).status_code == 409


# Calendar export


def test_booking_ics_export(client, org, make_user, studio):
    resource, mod = studio
    _, artist = make_user("artist@oolite.org", "member", org)
    _, painter = make_user("painter@oolite.org", "member", org)
    day = _day()
    booking = _book(client, artist, resource["id"], day, 10, description="Portfolio review").json()
    client.post(f"{BASE}/bookings/{booking['id']}/confirm", headers=mod)

    url = f"{BASE}/bookings/{booking['id']}/ics"
    assert client.get(url, headers=painter).status_code == 403
    r = client.get(url, headers=artist)
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/calendar")
    assert r.headers["content-disposition"] == f'attachment; filename="studio-visit-{_local(day, 10).date().isoformat()}.ics"'

    lines = r.text.replace("\r\n ", "").split("\r\n")
    assert lines[0] == "BEGIN:VCALENDAR"
    assert f"UID:{booking['id']}@oolite.infra24.com" in lines
    assert f"DTSTART:{_local(day, 10).strftime('%Y%m%dT%H%M%SZ')}" in lines
    assert "STATUS:CONFIRMED" in lines
    assert "LOCATION:Oolite Arts\\, 924 Lincoln Rd" in lines
    assert lines.count("BEGIN:VALARM") == 2

    client.post(f"{BASE}/bookings/{booking['id']}/cancel", headers=artist)
    lines = client.get(url, headers=artist).text.replace("\r\n ", "").split("\r\n")
    assert "STATUS:CANCELLED" in lines
    assert "SUMMARY:[CANCELLED] Studio Visit" in lines
    assert "BEGIN:VALARM" not in lines

    feed = client.get(f"{BASE}/bookings/calendar.ics", headers=artist)
    assert feed.status_code == 200
    assert "BEGIN:VEVENT" not in feed.text


def test_ics_text_helpers():
    assert escape_text("a,b;c\\d\ne") == "a\\,b\\;c\\\\d\\ne"
    long_line = "DESCRIPTION:" + "x" * 200
    folded = fold_line(long_line)
    assert all(len(part) <= 75 for part in folded.split("\r\n"))
    assert folded.replace("\r\n ", "") == long_line
    assert ics_filename("Open Studio: Night #2!", date(2026, 3, 1)) == "open-studio-night-2-2026-03-01.ics"
    assert ics_filename("Kiln", date(2026, 3, 1), cancelled=True) == "cancelled-kiln-2026-03-01.ics"
