# blueprints/programs/events.py
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from extensions import tasks
from .changes import ChangeSet

log = logging.getLogger(__name__)

CREATED = "program.created"
UPDATED = "program.updated"


@dataclass(frozen=True)
class ProgramEvent:
    name: str
    program_id: int
    organization_id: int
    actor_id: Optional[str]
    title: str
    kind: str
    is_public: bool = True
    changes: ChangeSet = field(default_factory=ChangeSet)


Handler = Callable[[ProgramEvent], object]
_handlers: dict[str, List[Handler]] = {}


def subscribe(name: str, handler: Handler) -> Handler:
    bucket = _handlers.setdefault(name, [])
    if handler not in bucket:
        bucket.append(handler)
    return handler


def handlers_for(name: str) -> List[Handler]:
    return list(_handlers.get(name, ()))


def publish(event: ProgramEvent) -> None:
    """Отдать событие подписчикам в фоне; ответ на запрос их не ждёт."""
    for handler in handlers_for(event.name):
        log.debug("publish %s #%s -> %s", event.name, event.program_id, handler.__name__)
        tasks.submit(handler, event)
