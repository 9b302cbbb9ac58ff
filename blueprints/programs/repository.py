# blueprints/programs/repository.py
from __future__ import annotations
import logging
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from flask import current_app
from sqlalchemy import delete, insert, inspect, select, update
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import (
    Lesson, Program, ProgramKind, ProgramLocation, ProgramTeacher,
    RecurringSchedule, SingleOccurrenceSchedule, TermPeriod,
)
from .errors import MissingOptionalColumn, StorageError
from .materializer import LessonDraft, SingleRule, WeeklyRule

log = logging.getLogger(__name__)

# колонки, которых может не быть в ещё не мигрированной базе
OPTIONAL_COLUMNS: Dict[str, Sequence[str]] = {
    "programs": ("term_period_id",),
    "lessons": ("term_period_id",),
}


class SchemaCapabilities:
    """Один раз смотрит на живую схему и кэширует набор колонок по таблицам."""

    def __init__(self):
        self._columns: Dict[str, Optional[frozenset]] = {}
        self._lock = threading.Lock()

    def _load(self, table: str) -> Optional[frozenset]:
        with self._lock:
            if table not in self._columns:
                insp = inspect(db.engine)
                if insp.has_table(table):
                    self._columns[table] = frozenset(c["name"] for c in insp.get_columns(table))
                else:
                    self._columns[table] = None
            return self._columns[table]

    def has_table(self, table: str) -> bool:
        return self._load(table) is not None

    def has_column(self, table: str, column: str) -> bool:
        cols = self._load(table)
        return bool(cols) and column in cols

    def invalidate(self, table: Optional[str] = None) -> None:
        with self._lock:
            if table is None:
                self._columns.clear()
            else:
                self._columns.pop(table, None)


def capabilities() -> SchemaCapabilities:
    return current_app.extensions.setdefault("schema_capabilities", SchemaCapabilities())


def _error_detail(ex: Exception) -> str:
    orig = getattr(ex, "orig", None)
    return str(orig) if orig is not None else str(ex)


def _names_column(ex: Exception, column: str) -> bool:
    return column.lower() in _error_detail(ex).lower()


def classify_degradation(table: str, ex: StorageError, columns: Sequence[str]) -> Optional[MissingOptionalColumn]:
    """Ошибка записи, в тексте которой названа переданная опциональная колонка."""
    cause = ex.__cause__ if ex.__cause__ is not None else ex
    for column in columns:
        if _names_column(cause, column):
            return MissingOptionalColumn(table, column, details=ex.details)
    return None


def _without(row: dict, names: Iterable[str]) -> dict:
    drop = set(names)
    return {k: v for k, v in row.items() if k not in drop}


class ProgramRepository:
    """Обёртка над хранилищем: каждая запись идёт отдельной транзакцией.

    Многошаговых транзакций нет, откат делает вызывающий код (компенсацией).
    """

    def __init__(self, caps: Optional[SchemaCapabilities] = None):
        self.caps = caps or capabilities()

    # ---------- общие помощники ----------
    def _write(self, fn: Callable[[], Any]) -> Any:
        try:
            out = fn()
            db.session.commit()
            return out
        except SQLAlchemyError as ex:
            db.session.rollback()
            raise StorageError(details=_error_detail(ex)) from ex

    def _insert_rows(self, model, rows: List[dict]) -> Optional[int]:
        """Вставка с учётом опциональных колонок.

        Сначала режем колонки, которых по кэшу схемы нет. Если кэш устарел и
        база ругается на опциональную колонку, которую мы передали, повторяем
        ту же вставку один раз без неё.
        """
        if not rows:
            return None
        table = model.__table__.name
        optional = OPTIONAL_COLUMNS.get(table, ())
        # None в опциональной колонке не передаём вовсе
        supplied = [c for c in optional if any(r.get(c) is not None for r in rows)]
        strip = {c for c in optional if c not in supplied}
        strip |= {c for c in supplied if not self.caps.has_column(table, c)}
        if strip & set(supplied):
            log.info("schema lacks %s.%s, value dropped", table, ",".join(sorted(strip & set(supplied))))
        try:
            return self._write(lambda: self._exec_insert(model, [_without(r, strip) for r in rows]))
        except StorageError as ex:
            degraded = classify_degradation(table, ex, [c for c in supplied if c not in strip])
            if degraded is None:
                raise
            log.warning("insert into %s rejected column %s, retrying without it", degraded.table, degraded.column)
            self.caps.invalidate(table)
            strip.add(degraded.column)
            return self._write(lambda: self._exec_insert(model, [_without(r, strip) for r in rows]))

    @staticmethod
    def _exec_insert(model, rows: List[dict]) -> Optional[int]:
        if len(rows) == 1:
            res = db.session.execute(insert(model.__table__).values(**rows[0]))
            pk = res.inserted_primary_key
            return pk[0] if pk else None
        db.session.execute(insert(model.__table__), rows)
        return None

    # ---------- программы ----------
    def get_program(self, program_id: int) -> Optional[Program]:
        return db.session.get(Program, program_id)

    def insert_program(self, values: dict) -> int:
        return self._insert_rows(Program, [values])

    def update_program(self, program_id: int, values: dict) -> None:
        values = _without(values, OPTIONAL_COLUMNS["programs"])
        self._write(lambda: db.session.execute(
            update(Program.__table__).where(Program.__table__.c.id == program_id).values(**values)
        ))

    def delete_program(self, program_id: int) -> None:
        self._write(lambda: db.session.execute(
            delete(Program.__table__).where(Program.__table__.c.id == program_id)
        ))

    def program_term_period_id(self, program_id: int) -> Optional[int]:
        if not self.caps.has_column("programs", "term_period_id"):
            return None
        col = Program.__table__.c.term_period_id
        try:
            return db.session.execute(
                select(col).where(Program.__table__.c.id == program_id)
            ).scalar_one_or_none()
        except SQLAlchemyError as ex:
            # кэш схемы устарел: колонку успели убрать
            db.session.rollback()
            self.caps.invalidate("programs")
            log.warning("programs.term_period_id unreadable: %s", _error_detail(ex))
            return None

    # ---------- расписание ----------
    @staticmethod
    def _schedule_model(kind: str):
        if kind == ProgramKind.RECURRING.value:
            return RecurringSchedule
        return SingleOccurrenceSchedule

    def get_schedule(self, kind: str, program_id: int):
        return db.session.get(self._schedule_model(kind), program_id)

    def insert_schedule(self, kind: str, program_id: int, rule: WeeklyRule | SingleRule) -> None:
        if isinstance(rule, WeeklyRule):
            row = {
                "program_id": program_id, "weekday": rule.weekday,
                "start_time": rule.start_time, "end_time": rule.end_time,
                "season_start": rule.season_start, "season_end": rule.season_end,
            }
        else:
            row = {"program_id": program_id, "date": rule.date,
                   "start_time": rule.start_time, "end_time": rule.end_time}
        self._insert_rows(self._schedule_model(kind), [row])

    def delete_schedule(self, kind: str, program_id: int) -> None:
        model = self._schedule_model(kind)
        self._write(lambda: db.session.execute(
            delete(model.__table__).where(model.__table__.c.program_id == program_id)
        ))

    # ---------- локации и преподаватели ----------
    def location_ids(self, program_id: int) -> List[str]:
        rows = db.session.execute(
            select(ProgramLocation.location_id).where(ProgramLocation.program_id == program_id)
        ).scalars().all()
        return list(rows)

    def insert_locations(self, program_id: int, location_ids: Sequence[str]) -> None:
        self._insert_rows(ProgramLocation, [{"program_id": program_id, "location_id": x} for x in location_ids])

    def delete_locations(self, program_id: int) -> None:
        self._write(lambda: db.session.execute(
            delete(ProgramLocation.__table__).where(ProgramLocation.__table__.c.program_id == program_id)
        ))

    def teacher_ids(self, program_id: int) -> List[str]:
        rows = db.session.execute(
            select(ProgramTeacher.teacher_id).where(ProgramTeacher.program_id == program_id)
        ).scalars().all()
        return list(rows)

    def insert_teachers(self, program_id: int, organization_id: int,
                        teacher_ids: Sequence[str], assigned_by: Optional[str]) -> None:
        self._insert_rows(ProgramTeacher, [
            {"program_id": program_id, "teacher_id": t,
             "organization_id": organization_id, "assigned_by": assigned_by}
            for t in teacher_ids
        ])

    def delete_teachers(self, program_id: int) -> None:
        self._write(lambda: db.session.execute(
            delete(ProgramTeacher.__table__).where(ProgramTeacher.__table__.c.program_id == program_id)
        ))

    # ---------- занятия ----------
    def lessons(self, program_id: int) -> List[Lesson]:
        return list(db.session.execute(
            select(Lesson).where(Lesson.program_id == program_id).order_by(Lesson.date.asc(), Lesson.id.asc())
        ).scalars().all())

    def insert_lessons(self, drafts: Sequence[LessonDraft]) -> int:
        rows = [d.as_row() for d in drafts]
        self._insert_rows(Lesson, rows)
        return len(rows)

    def delete_lessons(self, program_id: int) -> None:
        self._write(lambda: db.session.execute(
            delete(Lesson.__table__).where(Lesson.__table__.c.program_id == program_id)
        ))

    def update_lessons(self, program_id: int, values: dict) -> int:
        res = self._write(lambda: db.session.execute(
            update(Lesson.__table__).where(Lesson.__table__.c.program_id == program_id).values(**values)
        ))
        return res.rowcount or 0

    # ---------- учебные периоды ----------
    def term_period_belongs(self, term_period_id: int, organization_id: int) -> bool:
        row = db.session.execute(
            select(TermPeriod.id).where(TermPeriod.id == term_period_id,
                                        TermPeriod.organization_id == organization_id)
        ).first()
        return row is not None

    def active_term_period_id(self, organization_id: int) -> Optional[int]:
        return db.session.execute(
            select(TermPeriod.id)
            .where(TermPeriod.organization_id == organization_id, TermPeriod.is_active.is_(True))
            .order_by(TermPeriod.id.desc())
            .limit(1)
        ).scalar_one_or_none()
