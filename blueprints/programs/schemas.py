from __future__ import annotations
import datetime as dt
from datetime import date, time
from typing import List, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from models import ProgramKind
from .materializer import SingleRule, WeeklyRule, normalize_weekday

# старые клиенты присылают group/workshop
_KIND_ALIASES = {
    "group": ProgramKind.RECURRING.value,
    "workshop": ProgramKind.ONE_OFF.value,
}


# ---------- Program ----------
class ProgramDraft(BaseModel):
    organization_id: int
    program_type: ProgramKind
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    style: Optional[str] = Field(None, max_length=120)
    level: Optional[str] = Field(None, max_length=120)
    min_age: Optional[int] = Field(None, ge=0)
    max_age: Optional[int] = Field(None, ge=0)
    price: Optional[float] = Field(None, ge=0)
    capacity: Optional[int] = Field(None, ge=0)
    waitlist_enabled: bool = False
    show_capacity_to_users: bool = True
    is_public: bool = True
    is_trial: bool = False
    accepts_payment: bool = False
    accepts_class_passes: bool = False
    linked_form_id: Optional[str] = None
    term_period_id: Optional[int] = None

    @field_validator("program_type", mode="before")
    @classmethod
    def _legacy_kind(cls, v):
        if isinstance(v, str):
            return _KIND_ALIASES.get(v, v)
        return v

    @field_validator("title")
    @classmethod
    def _strip_title(cls, v: str):
        v = v.strip()
        if not v:
            raise ValueError("title_required")
        return v

    def row_values(self) -> dict:
        """Поля строки programs (без organization_id/kind/term_period_id)."""
        return {
            "title": self.title,
            "description": self.description or None,
            "style": self.style or None,
            "level": self.level or None,
            "min_age": self.min_age,
            "max_age": self.max_age,
            "price": self.price,
            "capacity": self.capacity or None,
            # лист ожидания имеет смысл только при положительной вместимости
            "waitlist_enabled": bool(self.waitlist_enabled and self.capacity and self.capacity > 0),
            "show_capacity_to_users": self.show_capacity_to_users,
            "is_public": self.is_public,
            "is_trial": self.is_trial,
            "accepts_payment": self.accepts_payment,
            "accepts_class_passes": self.accepts_class_passes,
            "linked_form_id": self.linked_form_id or None,
        }


# ---------- Schedules ----------
class RecurringScheduleDraft(BaseModel):
    weekday: int = Field(ge=0, le=7)
    start_time: time
    end_time: time
    season_start: Optional[date] = None
    season_end: Optional[date] = None

    @field_validator("weekday")
    @classmethod
    def _normalize(cls, v: int):
        return normalize_weekday(v)

    @model_validator(mode="after")
    def check_range(self):
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be > start_time")
        if self.season_start and self.season_end and self.season_end < self.season_start:
            raise ValueError("season_end must be >= season_start")
        return self

    def to_rule(self) -> WeeklyRule:
        return WeeklyRule(
            weekday=self.weekday, start_time=self.start_time, end_time=self.end_time,
            season_start=self.season_start, season_end=self.season_end,
        )


class SingleOccurrenceDraft(BaseModel):
    date: dt.date
    start_time: time
    end_time: time

    @model_validator(mode="after")
    def check_range(self):
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be > start_time")
        return self

    def to_rule(self) -> SingleRule:
        return SingleRule(date=self.date, start_time=self.start_time, end_time=self.end_time)


ScheduleDraft = Union[RecurringScheduleDraft, SingleOccurrenceDraft]


def parse_schedule(kind: ProgramKind | str, payload: dict) -> ScheduleDraft:
    if ProgramKind(kind) is ProgramKind.RECURRING:
        return RecurringScheduleDraft.model_validate(payload)
    return SingleOccurrenceDraft.model_validate(payload)


# ---------- Requests ----------
class ProgramRequest(BaseModel):
    program: ProgramDraft
    schedule: Optional[dict] = None
    # старые имена полей расписания
    group_details: Optional[dict] = None
    workshop_details: Optional[dict] = None
    location_ids: List[str] = Field(default_factory=list)
    teacher_ids: List[str] = Field(default_factory=list)

    @field_validator("location_ids", "teacher_ids", mode="before")
    @classmethod
    def _ids(cls, v):
        if v is None:
            return []
        if not isinstance(v, (list, tuple)):
            # строку и прочие скаляры не перебираем, ошибку даст сам List[str]
            return v
        return list(dict.fromkeys(str(x) for x in v if x not in (None, "")))

    def schedule_payload(self) -> Optional[dict]:
        if self.schedule is not None:
            return self.schedule
        if self.program.program_type is ProgramKind.RECURRING:
            return self.group_details
        return self.workshop_details

    def schedule_draft(self) -> Optional[ScheduleDraft]:
        payload = self.schedule_payload()
        if payload is None:
            return None
        return parse_schedule(self.program.program_type, payload)
