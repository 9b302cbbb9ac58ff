# blueprints/programs/materializer.py
from __future__ import annotations
from dataclasses import dataclass, asdict
from datetime import date, time, timedelta
from typing import Iterator, List, Optional, Union


# ===== правила расписания =====
@dataclass(frozen=True)
class WeeklyRule:
    weekday: int                  # 0=Sun .. 6=Sat, уже нормализован
    start_time: time
    end_time: time
    season_start: Optional[date] = None
    season_end: Optional[date] = None   # включительно


@dataclass(frozen=True)
class SingleRule:
    date: date
    start_time: time
    end_time: time


ScheduleRule = Union[WeeklyRule, SingleRule]


@dataclass(frozen=True)
class OwnerContext:
    program_id: int
    title: str
    location_id: Optional[str] = None
    teacher_id: Optional[str] = None
    term_period_id: Optional[int] = None


@dataclass
class LessonDraft:
    program_id: int
    title: str
    date: date
    start_time: time
    duration_minutes: int
    location_id: Optional[str] = None
    teacher_id: Optional[str] = None
    term_period_id: Optional[int] = None

    def as_row(self) -> dict:
        return asdict(self)


def normalize_weekday(value: int) -> int:
    """1..7 (Пн-первый) и 0..6 (Вс-первый) сводятся к 0..6 Вс-первый."""
    return int(value) % 7


def sunday_first_weekday(d: date) -> int:
    # date.weekday(): 0=Mon .. 6=Sun
    return (d.weekday() + 1) % 7


def duration_minutes(start: time, end: time) -> int:
    # naive wall-clock: секунды не учитываем
    return (end.hour * 60 + end.minute) - (start.hour * 60 + start.minute)


def first_matching_date(start: date, weekday: int) -> date:
    cur = start
    for _ in range(7):
        if sunday_first_weekday(cur) == weekday:
            return cur
        cur += timedelta(days=1)
    raise ValueError(f"weekday out of range: {weekday}")


def iter_weekly(rule: WeeklyRule, owner: OwnerContext) -> Iterator[LessonDraft]:
    if rule.season_start is None or rule.season_end is None:
        return
    minutes = duration_minutes(rule.start_time, rule.end_time)
    cur = first_matching_date(rule.season_start, rule.weekday)
    n = 1
    while cur <= rule.season_end:
        yield LessonDraft(
            program_id=owner.program_id,
            title=f"{owner.title} - Les {n}",
            date=cur,
            start_time=rule.start_time,
            duration_minutes=minutes,
            location_id=owner.location_id,
            teacher_id=owner.teacher_id,
            term_period_id=owner.term_period_id,
        )
        n += 1
        cur += timedelta(days=7)


def materialize(rule: ScheduleRule, owner: OwnerContext) -> List[LessonDraft]:
    """Развернуть правило расписания в упорядоченный список занятий.

    Чистая функция: ничего не пишет в БД, можно вызывать повторно.
    Без границ сезона еженедельное правило даёт пустой список.
    start_time < end_time проверяется раньше, на уровне схем.
    """
    if isinstance(rule, WeeklyRule):
        return list(iter_weekly(rule, owner))
    if isinstance(rule, SingleRule):
        return [LessonDraft(
            program_id=owner.program_id,
            title=owner.title,
            date=rule.date,
            start_time=rule.start_time,
            duration_minutes=duration_minutes(rule.start_time, rule.end_time),
            location_id=owner.location_id,
            teacher_id=owner.teacher_id,
            term_period_id=owner.term_period_id,
        )]
    raise TypeError(f"unsupported schedule rule: {type(rule).__name__}")
