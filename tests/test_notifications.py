from __future__ import annotations

import pytest

from app import create_app
from extensions import db
from models import (
    Enrollment, Notification, NotificationPreference, Organization, OrganizationFollower,
)
from blueprints.auth.identity import StaticTokenVerifier
from blueprints.notifications import handlers
from blueprints.notifications.services import (
    Category, Channel, NotificationDispatcher, PreferenceResolver, Scope, resolve_audience,
)
from blueprints.programs.changes import ChangeSet
from blueprints.programs.events import CREATED, UPDATED, ProgramEvent


@pytest.fixture()
def app_ctx():
    app = create_app("dev")
    app.config.update(TESTING=True, SQLALCHEMY_DATABASE_URI="sqlite:///:memory:", TASKS_EAGER=True)
    app.extensions["token_verifier"] = StaticTokenVerifier({"tok-u1": "u1", "tok-u2": "u2"})
    with app.app_context():
        db.create_all()
        org = Organization(name="Studio", owner_id="owner")
        db.session.add(org); db.session.commit()
        yield app, org.id
        db.drop_all()


@pytest.fixture()
def client(app_ctx):
    return app_ctx[0].test_client()


def _pref(user_id, category, channel="push", scope=None, disable_all=False):
    db.session.add(NotificationPreference(
        user_id=user_id, category=category, channel=channel, scope=scope, disable_all=disable_all,
    ))


class RecordingSender:
    def __init__(self, fail_push=False):
        self.batches = []
        self.fail_push = fail_push

    def __call__(self, batch):
        if self.fail_push and batch.push:
            raise RuntimeError("push backend down")
        self.batches.append(batch)


def test_defaults_without_record(app_ctx):
    r = PreferenceResolver()
    assert r.resolve_channel("nobody", Category.NEW_PROGRAMS) is Channel.PUSH
    assert r.resolve_channel("nobody", Category.PROGRAM_UPDATES) is Channel.PUSH
    assert r.resolve_scope("nobody", Category.NEW_PROGRAMS) is Scope.ALL


def test_disable_all_mutes_every_category(app_ctx):
    _pref("u1", "new_programs", channel="in_app", disable_all=True)
    db.session.commit()
    r = PreferenceResolver()
    assert r.resolve_channel("u1", Category.NEW_PROGRAMS) is Channel.NONE
    # записи по program_updates нет, но disable_all действует всё равно
    assert r.resolve_channel("u1", Category.PROGRAM_UPDATES) is Channel.NONE


def test_unknown_stored_channel_falls_back_to_default(app_ctx):
    _pref("u1", "program_updates", channel="carrier-pigeon")
    db.session.commit()
    assert PreferenceResolver().resolve_channel("u1", Category.PROGRAM_UPDATES) is Channel.PUSH


def test_dispatch_partitions_into_two_batches(app_ctx):
    _pref("a", "program_updates", channel="in_app")
    _pref("b", "program_updates", channel="push")
    _pref("c", "program_updates", channel="none")
    db.session.commit()
    sender = RecordingSender()
    report = NotificationDispatcher(sender=sender).dispatch(
        ["a", "b", "c", "d", "a"], Category.PROGRAM_UPDATES, "T", "M", deep_link="/program/1",
    )
    assert len(sender.batches) == 2
    in_app, push = sender.batches
    assert (in_app.user_ids, in_app.in_app, in_app.push) == (["a"], True, False)
    assert (push.user_ids, push.in_app, push.push) == (["b", "d"], True, True)
    assert report.skipped == ["c"]
    assert not report.failed


def test_single_bucket_sends_single_batch(app_ctx):
    sender = RecordingSender()
    NotificationDispatcher(sender=sender).dispatch(["x", "y"], Category.NEW_PROGRAMS, "T", "M")
    assert len(sender.batches) == 1 and sender.batches[0].push


def test_failed_batch_does_not_block_other(app_ctx):
    _pref("a", "program_updates", channel="in_app")
    db.session.commit()
    sender = RecordingSender(fail_push=True)
    report = NotificationDispatcher(sender=sender).dispatch(["a", "b"], Category.PROGRAM_UPDATES, "T", "M")
    assert [b.user_ids for b in report.sent] == [["a"]]
    assert [b.user_ids for b in report.failed] == [["b"]]


def test_new_program_audience_respects_scope(app_ctx):
    app, org_id = app_ctx
    for uid in ("actor", "all-user", "workshops-user"):
        db.session.add(OrganizationFollower(organization_id=org_id, user_id=uid))
    _pref("workshops-user", "new_programs", scope="workshops")
    db.session.commit()
    recurring = resolve_audience(Category.NEW_PROGRAMS, organization_id=org_id, exclude="actor",
                                 program_kind="recurring")
    one_off = resolve_audience(Category.NEW_PROGRAMS, organization_id=org_id, exclude="actor",
                               program_kind="one_off")
    assert recurring == ["all-user"]
    assert sorted(one_off) == ["all-user", "workshops-user"]


def test_update_audience_is_active_enrollees_without_actor(app_ctx):
    db.session.add_all([
        Enrollment(program_id=5, user_id="s1", status="active"),
        Enrollment(program_id=5, user_id="s1", status="active"),
        Enrollment(program_id=5, user_id="s2", status="cancelled"),
        Enrollment(program_id=5, user_id="actor", status="active"),
        Enrollment(program_id=6, user_id="s3", status="active"),
    ])
    db.session.commit()
    audience = resolve_audience(Category.PROGRAM_UPDATES, organization_id=1, exclude="actor", program_id=5)
    assert audience == ["s1"]


def test_updated_message_lists_changed_parts():
    assert handlers.updated_message("Salsa", ChangeSet(False, True)) == "Salsa werd aangepast (locatie)."
    assert handlers.updated_message("Salsa", ChangeSet(True, False)) == "Salsa werd aangepast (tijd/datum)."
    assert handlers.updated_message("Salsa", ChangeSet(True, True)) == "Salsa werd aangepast (tijd/datum en locatie)."


def test_created_handler_writes_in_app_rows(app_ctx):
    app, org_id = app_ctx
    db.session.add_all([
        OrganizationFollower(organization_id=org_id, user_id="fan"),
        OrganizationFollower(organization_id=org_id, user_id="actor"),
    ])
    db.session.commit()
    event = ProgramEvent(name=CREATED, program_id=11, organization_id=org_id, actor_id="actor",
                         title="Salsa", kind="recurring", is_public=True)
    report = handlers.on_program_created(event)
    assert report is not None and len(report.sent) == 1
    rows = Notification.query.all()
    assert [(n.user_id, n.type, n.title, n.message, n.url) for n in rows] == [
        ("fan", "announcement", "Nieuw programma", "Salsa", "/program/11"),
    ]
    assert rows[0].action_type == "view_program"
    assert rows[0].action_data == {"program_id": 11, "organization_id": org_id}


def test_private_program_is_not_announced(app_ctx):
    app, org_id = app_ctx
    db.session.add(OrganizationFollower(organization_id=org_id, user_id="fan"))
    db.session.commit()
    event = ProgramEvent(name=CREATED, program_id=12, organization_id=org_id, actor_id="actor",
                         title="Private", kind="recurring", is_public=False)
    assert handlers.on_program_created(event) is None
    assert Notification.query.count() == 0


def test_updated_handler_skips_without_changes(app_ctx):
    app, org_id = app_ctx
    db.session.add(Enrollment(program_id=5, user_id="s1"))
    db.session.commit()
    event = ProgramEvent(name=UPDATED, program_id=5, organization_id=org_id, actor_id="actor",
                         title="Salsa", kind="recurring", changes=ChangeSet())
    assert handlers.on_program_updated(event) is None
    assert Notification.query.count() == 0


def test_preferences_api_defaults_and_upsert(client, app_ctx):
    h = {"Authorization": "Bearer tok-u1"}
    rv = client.get("/api/v1/notification-preferences", headers=h)
    assert rv.status_code == 200
    assert rv.get_json()["preferences"] == {
        "disable_all": False,
        "new_programs_scope": "all",
        "new_programs_channel": "push",
        "program_updates_channel": "push",
    }

    rv = client.put("/api/v1/notification-preferences", headers=h, json={
        "new_programs_channel": "in_app",
        "new_programs_scope": "workshops",
        "program_updates_channel": "bogus",
    })
    assert rv.status_code == 200
    prefs = rv.get_json()["preferences"]
    assert prefs["new_programs_channel"] == "in_app"
    assert prefs["new_programs_scope"] == "workshops"
    assert prefs["program_updates_channel"] == "push"

    # повторный PUT обновляет, а не плодит строки
    client.put("/api/v1/notification-preferences", headers=h, json={"disable_all": True})
    assert NotificationPreference.query.filter_by(user_id="u1").count() == 2
    assert PreferenceResolver().resolve_channel("u1", Category.NEW_PROGRAMS) is Channel.NONE


def test_preferences_api_requires_token(client):
    rv = client.get("/api/v1/notification-preferences")
    assert rv.status_code == 400
    assert rv.get_json()["error"] == "missing_access_token"
    rv = client.get("/api/v1/notification-preferences", headers={"Authorization": "Bearer nope"})
    assert rv.status_code == 401
    assert rv.get_json()["error"] == "invalid_token"


def test_inbox_lists_only_own_notifications(client, app_ctx):
    db.session.add_all([
        Notification(user_id="u1", type="info", title="A", message="a"),
        Notification(user_id="u2", type="info", title="B", message="b"),
    ])
    db.session.commit()
    rv = client.get("/api/v1/notifications", headers={"Authorization": "Bearer tok-u1"})
    assert rv.status_code == 200
    assert [n["title"] for n in rv.get_json()["notifications"]] == ["A"]
