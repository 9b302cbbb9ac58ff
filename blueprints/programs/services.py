# blueprints/programs/services.py
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import Organization, Program, ProgramKind
from blueprints.auth.policy import AuthorizationPolicy, default_policy
from . import events
from .changes import ChangeSet, detect, snapshot_from
from .errors import (
    AuthorizationError, NotFoundError, StorageError, ValidationError,
)
from .materializer import OwnerContext, SingleRule, materialize
from .repository import ProgramRepository
from .schemas import ProgramDraft, ScheduleDraft

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrganizationSettings:
    """Настройки организации, прочитанные один раз на запрос."""
    organization_id: int
    term_periods_enabled: bool = False


def load_settings(organization_id: int) -> OrganizationSettings:
    enabled = bool(current_app.config.get("TERM_PERIODS_ENABLED", True))
    if enabled:
        org = db.session.get(Organization, organization_id)
        enabled = bool(org and org.term_periods_enabled)
    return OrganizationSettings(organization_id=organization_id, term_periods_enabled=enabled)


@dataclass
class UpdateResult:
    program_id: int
    changes: ChangeSet
    lessons: int


def _check_locations(location_ids: Sequence[str]) -> Optional[str]:
    if len(location_ids) > 1:
        raise ValidationError("only_one_location_allowed")
    return location_ids[0] if location_ids else None


class ProgramLifecycleManager:
    """Создание и изменение программы вместе с расписанием и занятиями.

    Запись идёт отдельными шагами без общей транзакции: основные шаги при
    сбое компенсируются вручную, производные шаги не обязательны.
    """

    def __init__(self, repo: Optional[ProgramRepository] = None,
                 policy: Optional[AuthorizationPolicy] = None,
                 publish: Optional[Callable[[events.ProgramEvent], None]] = None,
                 settings_loader: Callable[[int], OrganizationSettings] = load_settings):
        self.repo = repo or ProgramRepository()
        self.policy = policy or default_policy()
        self.publish = publish or events.publish
        self.settings_loader = settings_loader

    # ---------- общие шаги ----------
    def _authorize(self, principal_id: str, organization_id: int) -> str:
        decision = self.policy.evaluate(principal_id, organization_id)
        if not decision:
            log.info("principal %s denied for organization %s", principal_id, organization_id)
            raise AuthorizationError()
        return decision.signal

    def resolve_term_period(self, settings: OrganizationSettings, requested: Optional[int]) -> Optional[int]:
        """Явный период организации, иначе активный, иначе ничего."""
        if not settings.term_periods_enabled:
            return None
        if not self.repo.caps.has_table("term_periods"):
            return None
        try:
            if requested is not None and self.repo.term_period_belongs(requested, settings.organization_id):
                return requested
            return self.repo.active_term_period_id(settings.organization_id)
        except SQLAlchemyError as ex:
            db.session.rollback()
            log.warning("term period lookup failed for org %s: %s", settings.organization_id, ex)
            return None

    def _materialize(self, program_id: int, title: str, rule, location_id, teacher_ids, term_period_id) -> int:
        owner = OwnerContext(
            program_id=program_id,
            title=title,
            location_id=location_id,
            teacher_id=teacher_ids[0] if teacher_ids else None,
            term_period_id=term_period_id,
        )
        drafts = materialize(rule, owner)
        if not drafts:
            return 0
        return self.repo.insert_lessons(drafts)

    def _link_teachers(self, program_id: int, organization_id: int,
                       teacher_ids: Sequence[str], principal_id: str) -> None:
        teacher_ids = list(dict.fromkeys(t for t in teacher_ids if t))
        if not teacher_ids:
            return
        try:
            self.repo.insert_teachers(program_id, organization_id, teacher_ids, principal_id)
        except StorageError as ex:
            log.warning("teacher links for program %s failed: %s", program_id, ex.details)

    def _link_location(self, program_id: int, location_id: Optional[str]) -> None:
        if not location_id:
            return
        try:
            self.repo.insert_locations(program_id, [location_id])
        except StorageError as ex:
            log.warning("location link for program %s failed: %s", program_id, ex.details)

    # ---------- create ----------
    def create(self, principal_id: str, draft: ProgramDraft, schedule: Optional[ScheduleDraft],
               location_ids: Sequence[str] = (), teacher_ids: Sequence[str] = ()) -> Program:
        # 1) входные данные целиком до любой записи
        location_id = _check_locations(location_ids)
        if schedule is None:
            raise ValidationError("missing_required_fields", details={"missing": ["schedule"]})
        kind = draft.program_type.value
        organization_id = draft.organization_id

        # 2) права
        signal = self._authorize(principal_id, organization_id)
        log.debug("create program in org %s granted by %s", organization_id, signal)

        # 3) учебный период
        settings = self.settings_loader(organization_id)
        term_period_id = self.resolve_term_period(settings, draft.term_period_id)

        # 4) программа
        values = draft.row_values()
        values.update(organization_id=organization_id, kind=kind, term_period_id=term_period_id)
        try:
            program_id = self.repo.insert_program(values)
        except StorageError as ex:
            raise StorageError("program_insert_failed", details=ex.details) from ex

        # 5) расписание, при сбое убираем только что вставленную программу
        rule = schedule.to_rule()
        try:
            self.repo.insert_schedule(kind, program_id, rule)
        except StorageError as ex:
            try:
                self.repo.delete_program(program_id)
            except StorageError as cleanup:
                log.error("compensation failed, program %s left without schedule: %s",
                          program_id, cleanup.details)
            raise StorageError("details_insert_failed", details=ex.details) from ex

        # 6) производные данные: ошибки только в лог
        self._link_location(program_id, location_id)
        try:
            count = self._materialize(program_id, draft.title, rule, location_id, teacher_ids, term_period_id)
            log.info("program %s: %d lessons materialized", program_id, count)
        except StorageError as ex:
            log.warning("lesson materialization for program %s failed: %s", program_id, ex.details)
        self._link_teachers(program_id, organization_id, teacher_ids, principal_id)

        # 7) фоновые эффекты
        self.publish(events.ProgramEvent(
            name=events.CREATED,
            program_id=program_id,
            organization_id=organization_id,
            actor_id=principal_id,
            title=draft.title,
            kind=kind,
            is_public=draft.is_public,
        ))
        return self.repo.get_program(program_id)

    # ---------- update ----------
    def update(self, principal_id: str, program_id: Optional[int], draft: ProgramDraft,
               schedule: Optional[ScheduleDraft], location_ids: Sequence[str] = (),
               teacher_ids: Sequence[str] = ()) -> UpdateResult:
        if program_id is None or schedule is None:
            raise ValidationError("missing_required_fields")
        program = self.repo.get_program(program_id)
        if program is None:
            raise NotFoundError()

        # 1) снимок до изменений
        kind = program.kind
        organization_id = program.organization_id
        previous = snapshot_from(kind, self.repo.get_schedule(kind, program_id), self.repo.location_ids(program_id))

        # 2) права по организации сохранённой программы
        self._authorize(principal_id, organization_id)
        if draft.program_type.value != kind:
            raise ValidationError("program_type_mismatch", details={"stored": kind})
        location_id = _check_locations(location_ids)

        # 3) поля программы
        try:
            self.repo.update_program(program_id, draft.row_values())
        except StorageError as ex:
            raise StorageError("program_update_failed", details=ex.details) from ex

        # 4) расписание: удалить и вставить заново
        rule = schedule.to_rule()
        try:
            self.repo.delete_schedule(kind, program_id)
            self.repo.insert_schedule(kind, program_id, rule)
        except StorageError as ex:
            raise StorageError("details_update_failed", details=ex.details) from ex

        # 5) занятия
        if kind == ProgramKind.RECURRING.value:
            lessons = self._rebuild_lessons(program_id, draft.title, rule, location_id, teacher_ids)
        else:
            lessons = self._move_single_lesson(program_id, draft.title, rule, location_id, teacher_ids)

        # 6) связи
        try:
            self.repo.delete_locations(program_id)
        except StorageError as ex:
            log.warning("location links for program %s not cleared: %s", program_id, ex.details)
        self._link_location(program_id, location_id)
        try:
            self.repo.delete_teachers(program_id)
        except StorageError as ex:
            log.warning("teacher links for program %s not cleared: %s", program_id, ex.details)
        self._link_teachers(program_id, organization_id, teacher_ids, principal_id)

        # 7) что поменялось
        changes = detect(previous, snapshot_from(kind, rule, [location_id] if location_id else []))
        if changes.any:
            self.publish(events.ProgramEvent(
                name=events.UPDATED,
                program_id=program_id,
                organization_id=organization_id,
                actor_id=principal_id,
                title=draft.title,
                kind=kind,
                is_public=draft.is_public,
                changes=changes,
            ))
        return UpdateResult(program_id=program_id, changes=changes, lessons=lessons)

    def _rebuild_lessons(self, program_id: int, title: str, rule, location_id, teacher_ids) -> int:
        # расписание главнее: ручные правки отдельных занятий теряются
        try:
            self.repo.delete_lessons(program_id)
            term_period_id = self.repo.program_term_period_id(program_id)
            return self._materialize(program_id, title, rule, location_id, teacher_ids, term_period_id)
        except StorageError as ex:
            log.warning("lesson rebuild for program %s failed: %s", program_id, ex.details)
            return 0

    def _move_single_lesson(self, program_id: int, title: str, rule: SingleRule, location_id, teacher_ids) -> int:
        drafts = materialize(rule, OwnerContext(
            program_id=program_id, title=title, location_id=location_id,
            teacher_id=teacher_ids[0] if teacher_ids else None,
        ))
        lesson = drafts[0]
        try:
            moved = self.repo.update_lessons(program_id, {
                "date": lesson.date,
                "start_time": lesson.start_time,
                "duration_minutes": lesson.duration_minutes,
                "teacher_id": lesson.teacher_id,
            })
            if moved:
                return moved
            term_period_id = self.repo.program_term_period_id(program_id)
            return self._materialize(program_id, title, rule, location_id, teacher_ids, term_period_id)
        except StorageError as ex:
            log.warning("lesson update for program %s failed: %s", program_id, ex.details)
            return 0


def lesson_rows(program_id: int, repo: Optional[ProgramRepository] = None) -> List[dict]:
    repo = repo or ProgramRepository()
    return [{
        "id": l.id,
        "title": l.title,
        "date": l.date.isoformat(),
        "start_time": l.start_time.strftime("%H:%M"),
        "duration_minutes": l.duration_minutes,
        "location_id": l.location_id,
        "teacher_id": l.teacher_id,
    } for l in repo.lessons(program_id)]


def program_payload(program: Program, repo: Optional[ProgramRepository] = None) -> dict:
    repo = repo or ProgramRepository()
    schedule = repo.get_schedule(program.kind, program.id)
    sched = None
    if schedule is not None:
        if program.kind == ProgramKind.RECURRING.value:
            sched = {
                "weekday": schedule.weekday,
                "start_time": schedule.start_time.strftime("%H:%M"),
                "end_time": schedule.end_time.strftime("%H:%M"),
                "season_start": schedule.season_start.isoformat() if schedule.season_start else None,
                "season_end": schedule.season_end.isoformat() if schedule.season_end else None,
            }
        else:
            sched = {
                "date": schedule.date.isoformat(),
                "start_time": schedule.start_time.strftime("%H:%M"),
                "end_time": schedule.end_time.strftime("%H:%M"),
            }
    return {
        "id": program.id,
        "organization_id": program.organization_id,
        "program_type": program.kind,
        "title": program.title,
        "description": program.description,
        "style": program.style,
        "level": program.level,
        "min_age": program.min_age,
        "max_age": program.max_age,
        "price": program.price,
        "capacity": program.capacity,
        "waitlist_enabled": program.waitlist_enabled,
        "is_public": program.is_public,
        "is_trial": program.is_trial,
        "accepts_payment": program.accepts_payment,
        "accepts_class_passes": program.accepts_class_passes,
        "linked_form_id": program.linked_form_id,
        "term_period_id": repo.program_term_period_id(program.id),
        "schedule": sched,
        "location_ids": repo.location_ids(program.id),
        "teacher_ids": repo.teacher_ids(program.id),
    }
