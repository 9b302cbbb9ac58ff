# blueprints/notifications/handlers.py
from __future__ import annotations
import logging
from typing import Optional

from blueprints.programs import events
from blueprints.programs.changes import ChangeSet
from .services import Category, DispatchReport, NotificationDispatcher, resolve_audience

log = logging.getLogger(__name__)

NEW_PROGRAM_TITLE = "Nieuw programma"
UPDATED_PROGRAM_TITLE = "Programma gewijzigd"


def deep_link(program_id: int) -> str:
    return f"/program/{program_id}"


def change_parts(changes: ChangeSet) -> list[str]:
    parts = []
    if changes.schedule_changed:
        parts.append("tijd/datum")
    if changes.location_changed:
        parts.append("locatie")
    return parts


def updated_message(title: str, changes: ChangeSet) -> str:
    return f"{title} werd aangepast ({' en '.join(change_parts(changes))})."


def _action_data(event: events.ProgramEvent) -> dict:
    return {"program_id": event.program_id, "organization_id": event.organization_id}


def on_program_created(event: events.ProgramEvent,
                       dispatcher: Optional[NotificationDispatcher] = None) -> Optional[DispatchReport]:
    if not event.is_public:
        return None
    dispatcher = dispatcher or NotificationDispatcher()
    audience = resolve_audience(
        Category.NEW_PROGRAMS,
        organization_id=event.organization_id,
        exclude=event.actor_id,
        program_kind=event.kind,
        resolver=dispatcher.resolver,
    )
    if not audience:
        return None
    report = dispatcher.dispatch(
        audience, Category.NEW_PROGRAMS, NEW_PROGRAM_TITLE, event.title,
        deep_link=deep_link(event.program_id), action_data=_action_data(event),
    )
    log.info("new program %s: %d batches sent, %d failed",
             event.program_id, len(report.sent), len(report.failed))
    return report


def on_program_updated(event: events.ProgramEvent,
                       dispatcher: Optional[NotificationDispatcher] = None) -> Optional[DispatchReport]:
    if not event.changes.any:
        return None
    dispatcher = dispatcher or NotificationDispatcher()
    audience = resolve_audience(
        Category.PROGRAM_UPDATES,
        organization_id=event.organization_id,
        exclude=event.actor_id,
        program_id=event.program_id,
    )
    if not audience:
        return None
    report = dispatcher.dispatch(
        audience, Category.PROGRAM_UPDATES, UPDATED_PROGRAM_TITLE,
        updated_message(event.title, event.changes),
        deep_link=deep_link(event.program_id), action_data=_action_data(event),
    )
    log.info("program %s updated: %d batches sent, %d failed",
             event.program_id, len(report.sent), len(report.failed))
    return report


def register() -> None:
    events.subscribe(events.CREATED, on_program_created)
    events.subscribe(events.UPDATED, on_program_updated)
