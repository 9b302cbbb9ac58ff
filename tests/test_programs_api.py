from __future__ import annotations
from datetime import date

import pytest
from flask import g
from sqlalchemy import select

from app import create_app
from extensions import db
from models import (
    Enrollment, Lesson, Notification, NotificationPreference, Organization, OrganizationFollower,
    OrganizationMember, Program, ProgramLocation, ProgramTeacher, RecurringSchedule, TermPeriod,
)
from blueprints.auth.identity import StaticTokenVerifier
from blueprints.programs.repository import ProgramRepository
from blueprints.programs.errors import StorageError

OWNER = {"Authorization": "Bearer tok-owner"}
STRANGER = {"Authorization": "Bearer tok-stranger"}
MEMBER = {"Authorization": "Bearer tok-member"}


@pytest.fixture()
def app_ctx():
    app = create_app("dev")
    app.config.update(TESTING=True, SQLALCHEMY_DATABASE_URI="sqlite:///:memory:", TASKS_EAGER=True)
    app.extensions["token_verifier"] = StaticTokenVerifier({
        "tok-owner": "owner-1",
        "tok-stranger": "stranger",
        "tok-member": "member-1",
    })
    with app.app_context():
        db.create_all()
        org = Organization(name="Dansstudio", owner_id="owner-1")
        db.session.add(org); db.session.commit()
        db.session.add(OrganizationMember(organization_id=org.id, user_id="member-1", role="member"))
        db.session.commit()
        yield app, org.id
        db.drop_all()


@pytest.fixture()
def client(app_ctx):
    app = app_ctx[0]

    # Фикстура держит один app context на весь тест, поэтому g общий для всех
    # запросов клиента; Flask-Login кэширует пользователя в g._login_user.
    @app.before_request
    def _reset_login_cache():
        g.pop("_login_user", None)

    return app.test_client()


def _recurring(org_id, **over):
    body = {
        "program": {"organization_id": org_id, "program_type": "recurring", "title": "Salsa"},
        "schedule": {"weekday": 1, "start_time": "18:00", "end_time": "19:00",
                     "season_start": "2025-01-06", "season_end": "2025-01-27"},
        "location_ids": ["loc-a"],
        "teacher_ids": ["t-1", "t-2"],
    }
    body.update(over)
    return body


def _one_off(org_id, **over):
    body = {
        "program": {"organization_id": org_id, "program_type": "workshop", "title": "Bachata day"},
        "workshop_details": {"date": "2025-05-03", "start_time": "13:00", "end_time": "16:00"},
        "location_ids": ["loc-a"],
        "teacher_ids": [],
    }
    body.update(over)
    return body


def _lessons(program_id):
    return db.session.execute(
        select(Lesson).where(Lesson.program_id == program_id).order_by(Lesson.date)
    ).scalars().all()


def test_create_recurring_materializes_lessons(client, app_ctx):
    app, org_id = app_ctx
    rv = client.post("/api/v1/programs", headers=OWNER, json=_recurring(org_id))
    assert rv.status_code == 201, rv.get_json()
    program = rv.get_json()["program"]
    assert program["program_type"] == "recurring"
    assert program["location_ids"] == ["loc-a"]
    assert sorted(program["teacher_ids"]) == ["t-1", "t-2"]

    lessons = _lessons(program["id"])
    assert [l.date for l in lessons] == [date(2025, 1, 6), date(2025, 1, 13), date(2025, 1, 20), date(2025, 1, 27)]
    assert {(l.duration_minutes, l.location_id, l.teacher_id) for l in lessons} == {(60, "loc-a", "t-1")}
    assert lessons[0].title == "Salsa - Les 1"


def test_create_one_off_with_legacy_field_names(client, app_ctx):
    app, org_id = app_ctx
    rv = client.post("/api/v1/programs", headers=OWNER, json=_one_off(org_id))
    assert rv.status_code == 201, rv.get_json()
    program = rv.get_json()["program"]
    assert program["program_type"] == "one_off"
    assert program["schedule"] == {"date": "2025-05-03", "start_time": "13:00", "end_time": "16:00"}
    lessons = _lessons(program["id"])
    assert [(l.title, l.duration_minutes) for l in lessons] == [("Bachata day", 180)]


def test_get_program_with_lessons(client, app_ctx):
    app, org_id = app_ctx
    pid = client.post("/api/v1/programs", headers=OWNER, json=_recurring(org_id)).get_json()["program"]["id"]
    rv = client.get(f"/api/v1/programs/{pid}")
    assert rv.status_code == 200
    body = rv.get_json()["program"]
    assert body["schedule"]["weekday"] == 1
    assert [l["date"] for l in body["lessons"]][:2] == ["2025-01-06", "2025-01-13"]
    assert client.get("/api/v1/programs/9999").status_code == 404


def test_two_locations_rejected_without_leftovers(client, app_ctx):
    app, org_id = app_ctx
    rv = client.post("/api/v1/programs", headers=OWNER, json=_recurring(org_id, location_ids=["a", "b"]))
    assert rv.status_code == 400
    assert rv.get_json()["error"] == "only_one_location_allowed"
    assert Program.query.count() == 0
    assert RecurringSchedule.query.count() == 0


def test_missing_token(client, app_ctx):
    app, org_id = app_ctx
    rv = client.post("/api/v1/programs", json=_recurring(org_id))
    assert rv.status_code == 400
    assert rv.get_json()["error"] == "missing_access_token"
    rv = client.put("/api/v1/programs/1", json=_recurring(org_id))
    assert rv.status_code == 400
    assert rv.get_json()["error"] == "missing_required_fields"


def test_token_in_body_and_invalid_token(client, app_ctx):
    app, org_id = app_ctx
    rv = client.post("/api/v1/programs", json=_recurring(org_id, access_token="bogus"))
    assert rv.status_code == 401
    assert rv.get_json()["error"] == "invalid_token"
    rv = client.post("/api/v1/programs", json=_recurring(org_id, access_token="tok-owner"))
    assert rv.status_code == 201


def test_unauthorized_principal(client, app_ctx):
    app, org_id = app_ctx
    rv = client.post("/api/v1/programs", headers=STRANGER, json=_recurring(org_id))
    assert rv.status_code == 403
    assert rv.get_json()["error"] == "unauthorized"
    # обычная роль участника не даёт прав
    rv = client.post("/api/v1/programs", headers=MEMBER, json=_recurring(org_id))
    assert rv.status_code == 403
    assert Program.query.count() == 0


def test_invalid_schedule_is_validation_error(client, app_ctx):
    app, org_id = app_ctx
    body = _recurring(org_id)
    body["schedule"]["end_time"] = "17:00"
    rv = client.post("/api/v1/programs", headers=OWNER, json=body)
    assert rv.status_code == 422
    assert rv.get_json()["error"] == "validation_error"


def test_missing_schedule(client, app_ctx):
    app, org_id = app_ctx
    body = _recurring(org_id)
    del body["schedule"]
    rv = client.post("/api/v1/programs", headers=OWNER, json=body)
    assert rv.status_code == 400
    assert rv.get_json()["error"] == "missing_required_fields"


def test_location_only_update_notifies_enrolled(client, app_ctx):
    app, org_id = app_ctx
    pid = client.post("/api/v1/programs", headers=OWNER, json=_recurring(org_id)).get_json()["program"]["id"]
    db.session.add_all([
        Enrollment(program_id=pid, user_id="student-1", status="active"),
        Enrollment(program_id=pid, user_id="student-2", status="cancelled"),
        Enrollment(program_id=pid, user_id="owner-1", status="active"),
    ])
    db.session.add(NotificationPreference(user_id="student-1", category="program_updates", channel="in_app"))
    db.session.commit()

    rv = client.put(f"/api/v1/programs/{pid}", headers=OWNER, json=_recurring(org_id, location_ids=["loc-b"]))
    assert rv.status_code == 200, rv.get_json()
    assert rv.get_json() == {"success": True, "changes": {"schedule_changed": False, "location_changed": True}}

    rows = Notification.query.all()
    assert [(n.user_id, n.title, n.message) for n in rows] == [
        ("student-1", "Programma gewijzigd", "Salsa werd aangepast (locatie)."),
    ]
    assert ProgramLocation.query.filter_by(program_id=pid).one().location_id == "loc-b"
    assert {l.location_id for l in _lessons(pid)} == {"loc-b"}


def test_update_without_changes_sends_nothing(client, app_ctx):
    app, org_id = app_ctx
    pid = client.post("/api/v1/programs", headers=OWNER, json=_recurring(org_id)).get_json()["program"]["id"]
    db.session.add(Enrollment(program_id=pid, user_id="student-1"))
    db.session.commit()
    rv = client.put(f"/api/v1/programs/{pid}", headers=OWNER, json=_recurring(org_id))
    assert rv.get_json()["changes"] == {"schedule_changed": False, "location_changed": False}
    assert Notification.query.count() == 0


def test_recurring_update_is_idempotent_rebuild(client, app_ctx):
    app, org_id = app_ctx
    pid = client.post("/api/v1/programs", headers=OWNER, json=_recurring(org_id)).get_json()["program"]["id"]
    body = _recurring(org_id, programId=pid)
    body["schedule"].update(weekday=3, season_end="2025-02-28")

    assert client.put("/api/v1/programs", headers=OWNER, json=body).status_code == 200
    first = [(l.date, l.title, l.duration_minutes) for l in _lessons(pid)]
    assert client.put("/api/v1/programs", headers=OWNER, json=body).status_code == 200
    second = [(l.date, l.title, l.duration_minutes) for l in _lessons(pid)]

    assert first == second
    assert first[0][0] == date(2025, 1, 8)
    assert len(first) == 8


def test_recurring_update_discards_lesson_overrides(client, app_ctx):
    app, org_id = app_ctx
    pid = client.post("/api/v1/programs", headers=OWNER, json=_recurring(org_id)).get_json()["program"]["id"]
    lesson = _lessons(pid)[1]
    lesson.teacher_id = "substitute"
    db.session.commit()
    client.put(f"/api/v1/programs/{pid}", headers=OWNER, json=_recurring(org_id))
    assert "substitute" not in {l.teacher_id for l in _lessons(pid)}


def test_one_off_update_moves_lesson_in_place(client, app_ctx):
    app, org_id = app_ctx
    pid = client.post("/api/v1/programs", headers=OWNER, json=_one_off(org_id)).get_json()["program"]["id"]
    (before,) = _lessons(pid)
    body = _one_off(org_id, teacher_ids=["t-9"])
    body["workshop_details"] = {"date": "2025-05-10", "start_time": "10:00", "end_time": "11:30"}

    rv = client.put(f"/api/v1/programs/{pid}", headers=OWNER, json=body)
    assert rv.status_code == 200
    assert rv.get_json()["changes"]["schedule_changed"] is True
    (after,) = _lessons(pid)
    assert after.id == before.id
    assert (after.date, after.duration_minutes, after.teacher_id) == (date(2025, 5, 10), 90, "t-9")


def test_update_kind_mismatch(client, app_ctx):
    app, org_id = app_ctx
    pid = client.post("/api/v1/programs", headers=OWNER, json=_one_off(org_id)).get_json()["program"]["id"]
    rv = client.put(f"/api/v1/programs/{pid}", headers=OWNER, json=_recurring(org_id))
    assert rv.status_code == 400
    assert rv.get_json()["error"] == "program_type_mismatch"


def test_update_checks_stored_organization(client, app_ctx):
    app, org_id = app_ctx
    other = Organization(name="Other", owner_id="stranger")
    db.session.add(other); db.session.commit()
    pid = client.post("/api/v1/programs", headers=OWNER, json=_recurring(org_id)).get_json()["program"]["id"]
    # владелец другой организации подставляет свою организацию в черновик
    rv = client.put(f"/api/v1/programs/{pid}", headers=STRANGER, json=_recurring(other.id))
    assert rv.status_code == 403


def test_update_unknown_program(client, app_ctx):
    app, org_id = app_ctx
    rv = client.put("/api/v1/programs/404", headers=OWNER, json=_recurring(org_id))
    assert rv.status_code == 404
    assert rv.get_json()["error"] == "program_not_found"
    rv = client.put("/api/v1/programs", headers=OWNER, json=_recurring(org_id))
    assert rv.get_json()["error"] == "missing_required_fields"


def test_update_two_locations_leaves_program_untouched(client, app_ctx):
    app, org_id = app_ctx
    pid = client.post("/api/v1/programs", headers=OWNER, json=_recurring(org_id)).get_json()["program"]["id"]
    body = _recurring(org_id, location_ids=["x", "y"])
    body["program"]["title"] = "Renamed"
    rv = client.put(f"/api/v1/programs/{pid}", headers=OWNER, json=body)
    assert rv.get_json()["error"] == "only_one_location_allowed"
    assert db.session.get(Program, pid).title == "Salsa"


def test_new_public_program_notifies_followers(client, app_ctx):
    app, org_id = app_ctx
    db.session.add_all([
        OrganizationFollower(organization_id=org_id, user_id="fan"),
        OrganizationFollower(organization_id=org_id, user_id="owner-1"),
    ])
    db.session.commit()
    client.post("/api/v1/programs", headers=OWNER, json=_recurring(org_id))
    assert [(n.user_id, n.title) for n in Notification.query.all()] == [("fan", "Nieuw programma")]


def test_term_period_explicit_and_active(client, app_ctx):
    app, org_id = app_ctx
    other = Organization(name="Other", owner_id="x")
    db.session.add(other); db.session.commit()
    active = TermPeriod(organization_id=org_id, name="2025", is_active=True)
    foreign = TermPeriod(organization_id=other.id, name="alien", is_active=True)
    db.session.add_all([active, foreign]); db.session.commit()

    body = _recurring(org_id)
    body["program"]["term_period_id"] = foreign.id
    pid = client.post("/api/v1/programs", headers=OWNER, json=body).get_json()["program"]["id"]
    repo = ProgramRepository()
    # чужой период отбрасывается, берётся активный период организации
    assert repo.program_term_period_id(pid) == active.id
    assert {l.term_period_id for l in _lessons(pid)} == {active.id}


def test_term_periods_disabled_by_config(client, app_ctx):
    app, org_id = app_ctx
    app.config["TERM_PERIODS_ENABLED"] = False
    db.session.add(TermPeriod(organization_id=org_id, name="2025", is_active=True)); db.session.commit()
    pid = client.post("/api/v1/programs", headers=OWNER, json=_recurring(org_id)).get_json()["program"]["id"]
    assert ProgramRepository().program_term_period_id(pid) is None


def test_details_failure_removes_program(client, app_ctx, monkeypatch):
    app, org_id = app_ctx

    def broken(self, kind, program_id, rule):
        raise StorageError(details="disk full")

    monkeypatch.setattr(ProgramRepository, "insert_schedule", broken)
    rv = client.post("/api/v1/programs", headers=OWNER, json=_recurring(org_id))
    assert rv.status_code == 500
    assert rv.get_json()["error"] == "details_insert_failed"
    assert Program.query.count() == 0


def test_teacher_link_failure_is_not_fatal(client, app_ctx, monkeypatch):
    app, org_id = app_ctx

    def broken(self, *args, **kwargs):
        raise StorageError(details="constraint")

    monkeypatch.setattr(ProgramRepository, "insert_teachers", broken)
    rv = client.post("/api/v1/programs", headers=OWNER, json=_recurring(org_id))
    assert rv.status_code == 201
    assert ProgramTeacher.query.count() == 0
    assert len(_lessons(rv.get_json()["program"]["id"])) == 4


def test_program_insert_failure(client, app_ctx, monkeypatch):
    app, org_id = app_ctx

    def broken(self, values):
        raise StorageError(details="boom")

    monkeypatch.setattr(ProgramRepository, "insert_program", broken)
    rv = client.post("/api/v1/programs", headers=OWNER, json=_recurring(org_id))
    assert rv.status_code == 500
    assert rv.get_json()["error"] == "program_insert_failed"


def test_duplicate_teacher_ids_are_linked_once(client, app_ctx):
    app, org_id = app_ctx
    pid = client.post("/api/v1/programs", headers=OWNER,
                      json=_recurring(org_id, teacher_ids=["t-1", "t-2"])).get_json()["program"]["id"]
    rv = client.put(f"/api/v1/programs/{pid}", headers=OWNER,
                    json=_recurring(org_id, teacher_ids=["t-1", "t-1", "t-3"]))
    assert rv.status_code == 200
    links = ProgramTeacher.query.filter_by(program_id=pid).all()
    assert sorted(t.teacher_id for t in links) == ["t-1", "t-3"]
    assert {l.teacher_id for l in _lessons(pid)} == {"t-1"}


def test_duplicate_teacher_ids_on_create(client, app_ctx):
    app, org_id = app_ctx
    rv = client.post("/api/v1/programs", headers=OWNER, json=_recurring(org_id, teacher_ids=["t-5", "t-5"]))
    assert rv.status_code == 201
    assert rv.get_json()["program"]["teacher_ids"] == ["t-5"]


@pytest.mark.parametrize("field", ["location_ids", "teacher_ids"])
def test_scalar_id_list_is_validation_error(client, app_ctx, field):
    app, org_id = app_ctx
    rv = client.post("/api/v1/programs", headers=OWNER, json=_recurring(org_id, **{field: "loc-a"}))
    assert rv.status_code == 422
    assert rv.get_json()["error"] == "validation_error"
    assert Program.query.count() == 0
    assert ProgramTeacher.query.count() == 0


def test_lesson_insert_failure_is_not_fatal(client, app_ctx, monkeypatch):
    app, org_id = app_ctx

    def broken(self, drafts):
        raise StorageError(details="lessons table locked")

    monkeypatch.setattr(ProgramRepository, "insert_lessons", broken)
    rv = client.post("/api/v1/programs", headers=OWNER, json=_recurring(org_id))
    assert rv.status_code == 201
    pid = rv.get_json()["program"]["id"]
    assert db.session.get(Program, pid) is not None
    assert _lessons(pid) == []
    # связи после неудачных занятий всё равно созданы
    assert ProgramLocation.query.filter_by(program_id=pid).one().location_id == "loc-a"
    assert ProgramTeacher.query.filter_by(program_id=pid).count() == 2


def test_location_link_failure_is_not_fatal(client, app_ctx, monkeypatch):
    app, org_id = app_ctx

    def broken(self, program_id, location_ids):
        raise StorageError(details="constraint")

    monkeypatch.setattr(ProgramRepository, "insert_locations", broken)
    rv = client.post("/api/v1/programs", headers=OWNER, json=_recurring(org_id))
    assert rv.status_code == 201
    pid = rv.get_json()["program"]["id"]
    assert db.session.get(Program, pid) is not None
    assert ProgramLocation.query.count() == 0
    assert len(_lessons(pid)) == 4
