from __future__ import annotations
import datetime as dt
from enum import Enum as PyEnum

from sqlalchemy import (
    Boolean, Date, DateTime, Float, ForeignKey, Index, Integer, String, Text, Time,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from extensions import db


class ProgramKind(str, PyEnum):
    RECURRING = "recurring"   # еженедельный курс
    ONE_OFF = "one_off"       # разовое событие (воркшоп)


class Program(db.Model):
    __tablename__ = "programs"

    id: Mapped[int] = mapped_column(primary_key=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    # строковое поле, чтобы не зависеть от конкретного типа БД
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    style: Mapped[str | None] = mapped_column(String(120))
    level: Mapped[str | None] = mapped_column(String(120))
    min_age: Mapped[int | None] = mapped_column(Integer)
    max_age: Mapped[int | None] = mapped_column(Integer)
    price: Mapped[float | None] = mapped_column(Float)
    capacity: Mapped[int | None] = mapped_column(Integer)
    waitlist_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    show_capacity_to_users: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_public: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_trial: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    accepts_payment: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    accepts_class_passes: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    linked_form_id: Mapped[str | None] = mapped_column(String(64))
    # опциональная колонка: в старых базах её может не быть, поэтому без FK и deferred
    term_period_id: Mapped[int | None] = mapped_column(Integer, nullable=True, deferred=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=dt.datetime.utcnow, nullable=False)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime, default=dt.datetime.utcnow, onupdate=dt.datetime.utcnow, nullable=False)

    lessons = relationship("Lesson", back_populates="program", order_by="Lesson.date", passive_deletes=True)

    def __repr__(self):
        return f"<Program {self.title}>"


class RecurringSchedule(db.Model):
    __tablename__ = "recurring_schedules"

    program_id: Mapped[int] = mapped_column(ForeignKey("programs.id", ondelete="CASCADE"), primary_key=True)
    weekday: Mapped[int] = mapped_column(Integer, nullable=False)  # 0=Sun .. 6=Sat
    start_time: Mapped[dt.time] = mapped_column(Time, nullable=False)
    end_time: Mapped[dt.time] = mapped_column(Time, nullable=False)
    season_start: Mapped[dt.date | None] = mapped_column(Date)
    season_end: Mapped[dt.date | None] = mapped_column(Date)


class SingleOccurrenceSchedule(db.Model):
    __tablename__ = "single_occurrence_schedules"

    program_id: Mapped[int] = mapped_column(ForeignKey("programs.id", ondelete="CASCADE"), primary_key=True)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    start_time: Mapped[dt.time] = mapped_column(Time, nullable=False)
    end_time: Mapped[dt.time] = mapped_column(Time, nullable=False)


class ProgramLocation(db.Model):
    __tablename__ = "program_locations"

    program_id: Mapped[int] = mapped_column(ForeignKey("programs.id", ondelete="CASCADE"), primary_key=True)
    location_id: Mapped[str] = mapped_column(String(64), primary_key=True)


class ProgramTeacher(db.Model):
    __tablename__ = "program_teachers"

    program_id: Mapped[int] = mapped_column(ForeignKey("programs.id", ondelete="CASCADE"), primary_key=True)
    teacher_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    assigned_by: Mapped[str | None] = mapped_column(String(64))


class Lesson(db.Model):
    __tablename__ = "lessons"

    id: Mapped[int] = mapped_column(primary_key=True)
    program_id: Mapped[int] = mapped_column(ForeignKey("programs.id", ondelete="CASCADE"), nullable=False)
    location_id: Mapped[str | None] = mapped_column(String(64))
    teacher_id: Mapped[str | None] = mapped_column(String(64))
    term_period_id: Mapped[int | None] = mapped_column(Integer, nullable=True, deferred=True)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    start_time: Mapped[dt.time] = mapped_column(Time, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)

    program = relationship("Program", back_populates="lessons")

    __table_args__ = (
        Index("ix_lessons_program_date", "program_id", "date"),
    )


class Enrollment(db.Model):
    __tablename__ = "enrollments"

    id: Mapped[int] = mapped_column(primary_key=True)
    program_id: Mapped[int] = mapped_column(ForeignKey("programs.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=dt.datetime.utcnow, nullable=False)
