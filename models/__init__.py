from extensions import db

from .organization import (
    Organization, OrganizationMember, RoleGrant, OrganizationFollower, TermPeriod,
)
from .program import (
    ProgramKind, Program, RecurringSchedule, SingleOccurrenceSchedule,
    ProgramLocation, ProgramTeacher, Lesson, Enrollment,
)
from .notification import NotificationPreference, Notification

__all__ = [
    "db",
    "Organization", "OrganizationMember", "RoleGrant", "OrganizationFollower", "TermPeriod",
    "ProgramKind", "Program", "RecurringSchedule", "SingleOccurrenceSchedule",
    "ProgramLocation", "ProgramTeacher", "Lesson", "Enrollment",
    "NotificationPreference", "Notification",
]
