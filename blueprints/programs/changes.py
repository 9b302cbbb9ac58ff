# blueprints/programs/changes.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Sequence

from models import ProgramKind

RECURRING_FIELDS = ("weekday", "start_time", "end_time", "season_start", "season_end")
ONE_OFF_FIELDS = ("date", "start_time", "end_time")


@dataclass(frozen=True)
class ProgramSnapshot:
    kind: str
    schedule: dict = field(default_factory=dict)
    location_ids: tuple = ()


@dataclass(frozen=True)
class ChangeSet:
    schedule_changed: bool = False
    location_changed: bool = False

    @property
    def any(self) -> bool:
        return self.schedule_changed or self.location_changed


def _norm(val: Any) -> str:
    # отсутствующее значение == пустая строка, так unset→set считается изменением
    return "" if val is None else str(val)


def _watched(kind: str) -> Sequence[str]:
    if kind == ProgramKind.RECURRING.value:
        return RECURRING_FIELDS
    if kind == ProgramKind.ONE_OFF.value:
        return ONE_OFF_FIELDS
    return ()


def snapshot_from(kind: str, schedule: Optional[object], location_ids: Iterable[str]) -> ProgramSnapshot:
    """Снимок из строки расписания (ORM) или правила материализатора."""
    values = {}
    for name in _watched(kind):
        values[name] = getattr(schedule, name, None) if schedule is not None else None
    return ProgramSnapshot(kind=kind, schedule=values, location_ids=tuple(x for x in location_ids if x))


def detect(previous: ProgramSnapshot, next_: ProgramSnapshot) -> ChangeSet:
    location_changed = sorted(previous.location_ids) != sorted(next_.location_ids)
    schedule_changed = any(
        _norm(previous.schedule.get(name)) != _norm(next_.schedule.get(name))
        for name in _watched(next_.kind)
    )
    return ChangeSet(schedule_changed=schedule_changed, location_changed=location_changed)
