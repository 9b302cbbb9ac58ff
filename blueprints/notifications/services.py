# blueprints/notifications/services.py
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import insert, select

from extensions import db
from models import (
    Enrollment, Notification, NotificationPreference, OrganizationFollower, ProgramKind,
)
from .push import PushGateway

log = logging.getLogger(__name__)


class Category(str, Enum):
    NEW_PROGRAMS = "new_programs"
    PROGRAM_UPDATES = "program_updates"


class Channel(str, Enum):
    NONE = "none"
    IN_APP = "in_app"
    PUSH = "push"          # push + in-app


class Scope(str, Enum):
    ALL = "all"
    WORKSHOPS = "workshops"


DEFAULT_CHANNEL = Channel.PUSH
DEFAULT_SCOPE = Scope.ALL

ALLOWED_NOTIFICATION_TYPES = {"info", "warning", "announcement", "teacher_invitation", "studio_admin_invitation"}
CATEGORY_TYPES = {
    Category.NEW_PROGRAMS: "announcement",
    Category.PROGRAM_UPDATES: "info",
}


# ===== предпочтения =====
@dataclass
class UserPreferences:
    disable_all: bool = False
    channels: Dict[str, str] = field(default_factory=dict)
    scopes: Dict[str, str] = field(default_factory=dict)

    def channel(self, category: Category) -> Channel:
        if self.disable_all:
            return Channel.NONE
        raw = self.channels.get(category.value)
        try:
            return Channel(raw) if raw else DEFAULT_CHANNEL
        except ValueError:
            return DEFAULT_CHANNEL

    def scope(self, category: Category) -> Scope:
        raw = self.scopes.get(category.value)
        try:
            return Scope(raw) if raw else DEFAULT_SCOPE
        except ValueError:
            return DEFAULT_SCOPE


class PreferenceResolver:
    """Каналы по пользователям; без записи действует push + in-app и scope "all"."""

    def __init__(self):
        self._cache: Dict[str, UserPreferences] = {}

    def load(self, user_ids: Iterable[str]) -> None:
        missing = [u for u in dict.fromkeys(user_ids) if u and u not in self._cache]
        if not missing:
            return
        rows = db.session.execute(
            select(NotificationPreference).where(NotificationPreference.user_id.in_(missing))
        ).scalars().all()
        for uid in missing:
            self._cache[uid] = UserPreferences()
        for r in rows:
            prefs = self._cache[r.user_id]
            # disable_all на любой строке глушит пользователя целиком
            prefs.disable_all = prefs.disable_all or bool(r.disable_all)
            prefs.channels[r.category] = r.channel
            if r.scope:
                prefs.scopes[r.category] = r.scope

    def preferences(self, user_id: str) -> UserPreferences:
        if user_id not in self._cache:
            self.load([user_id])
        return self._cache[user_id]

    def resolve_channel(self, user_id: str, category: Category) -> Channel:
        return self.preferences(user_id).channel(category)

    def resolve_scope(self, user_id: str, category: Category) -> Scope:
        return self.preferences(user_id).scope(category)


def preferences_payload(user_id: str) -> dict:
    prefs = PreferenceResolver().preferences(user_id)
    return {
        "disable_all": prefs.disable_all,
        "new_programs_scope": prefs.scope(Category.NEW_PROGRAMS).value,
        "new_programs_channel": (prefs.channels.get(Category.NEW_PROGRAMS.value) or DEFAULT_CHANNEL.value),
        "program_updates_channel": (prefs.channels.get(Category.PROGRAM_UPDATES.value) or DEFAULT_CHANNEL.value),
    }


def _coerce(enum_cls, value, default):
    try:
        return enum_cls(value).value
    except ValueError:
        return default.value


def save_preferences(user_id: str, body: dict) -> dict:
    """Upsert строк по категориям; мусорные значения заменяются дефолтами."""
    disable_all = body.get("disable_all")
    disable_all = disable_all if isinstance(disable_all, bool) else False
    wanted = {
        Category.NEW_PROGRAMS: (
            _coerce(Channel, body.get("new_programs_channel"), DEFAULT_CHANNEL),
            _coerce(Scope, body.get("new_programs_scope"), DEFAULT_SCOPE),
        ),
        Category.PROGRAM_UPDATES: (
            _coerce(Channel, body.get("program_updates_channel"), DEFAULT_CHANNEL),
            None,
        ),
    }
    for category, (channel, scope) in wanted.items():
        row = NotificationPreference.query.filter_by(user_id=user_id, category=category.value).first()
        if not row:
            row = NotificationPreference(user_id=user_id, category=category.value)
            db.session.add(row)
        row.disable_all = disable_all
        row.channel = channel
        row.scope = scope
    db.session.commit()
    return preferences_payload(user_id)


# ===== аудитория =====
def follower_ids(organization_id: int) -> List[str]:
    return list(db.session.execute(
        select(OrganizationFollower.user_id).where(OrganizationFollower.organization_id == organization_id)
    ).scalars().all())


def active_enrollee_ids(program_id: int) -> List[str]:
    return list(db.session.execute(
        select(Enrollment.user_id).where(Enrollment.program_id == program_id, Enrollment.status == "active")
    ).scalars().all())


def resolve_audience(category: Category, *, organization_id: int, exclude: Optional[str],
                     program_id: Optional[int] = None, program_kind: Optional[str] = None,
                     resolver: Optional[PreferenceResolver] = None) -> List[str]:
    """Получатели без автора изменения, порядок стабильный, без дублей."""
    if category is Category.NEW_PROGRAMS:
        candidates = follower_ids(organization_id)
    elif category is Category.PROGRAM_UPDATES:
        if program_id is None:
            return []
        candidates = active_enrollee_ids(program_id)
    else:
        return []

    audience = [u for u in dict.fromkeys(candidates) if u and u != exclude]
    if category is Category.NEW_PROGRAMS and audience:
        resolver = resolver or PreferenceResolver()
        resolver.load(audience)
        audience = [
            u for u in audience
            if not (resolver.resolve_scope(u, category) is Scope.WORKSHOPS
                    and program_kind != ProgramKind.ONE_OFF.value)
        ]
    return audience


# ===== рассылка =====
@dataclass
class NotificationBatch:
    user_ids: List[str]
    category: Category
    title: str
    message: str
    deep_link: Optional[str]
    in_app: bool
    push: bool
    action_type: Optional[str] = "view_program"
    action_data: Optional[dict] = None

    @property
    def notification_type(self) -> str:
        t = CATEGORY_TYPES.get(self.category, "info")
        return t if t in ALLOWED_NOTIFICATION_TYPES else "info"


@dataclass
class DispatchReport:
    sent: List[NotificationBatch] = field(default_factory=list)
    failed: List[NotificationBatch] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)   # канал none


def create_notifications_and_push(batch: NotificationBatch, gateway: Optional[PushGateway] = None) -> dict:
    user_ids = [u for u in dict.fromkeys(batch.user_ids) if u]
    if not user_ids or not (batch.in_app or batch.push):
        return {"created": 0, "pushed": 0}
    created = 0
    if batch.in_app:
        rows = [{
            "user_id": uid,
            "type": batch.notification_type,
            "title": batch.title,
            "message": batch.message,
            "action_type": batch.action_type,
            "action_data": batch.action_data,
            "url": batch.deep_link,
            "read": False,
        } for uid in user_ids]
        try:
            db.session.execute(insert(Notification), rows)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        created = len(rows)
    pushed = 0
    if batch.push:
        gateway = gateway or PushGateway.from_config()
        try:
            pushed = gateway.send(user_ids, {"title": batch.title, "body": batch.message, "url": batch.deep_link})
        except Exception as ex:
            # in-app уже создан, push не обязателен
            log.warning("push delivery failed for %d users: %s", len(user_ids), ex)
    return {"created": created, "pushed": pushed}


Sender = Callable[[NotificationBatch], object]


class NotificationDispatcher:
    """Делит аудиторию по каналам и шлёт не больше двух пачек.

    Пачки независимы: падение одной не мешает другой и наружу не выходит.
    """

    def __init__(self, resolver: Optional[PreferenceResolver] = None, sender: Optional[Sender] = None):
        self.resolver = resolver or PreferenceResolver()
        self.sender = sender or create_notifications_and_push

    def partition(self, audience: Sequence[str], category: Category) -> Dict[Channel, List[str]]:
        self.resolver.load(audience)
        buckets: Dict[Channel, List[str]] = {Channel.IN_APP: [], Channel.PUSH: [], Channel.NONE: []}
        for uid in dict.fromkeys(audience):
            if not uid:
                continue
            buckets[self.resolver.resolve_channel(uid, category)].append(uid)
        return buckets

    def dispatch(self, audience: Sequence[str], category: Category, title: str, message: str,
                 deep_link: Optional[str] = None, action_data: Optional[dict] = None) -> DispatchReport:
        report = DispatchReport()
        buckets = self.partition(audience, category)
        report.skipped = buckets[Channel.NONE]
        for channel, push in ((Channel.IN_APP, False), (Channel.PUSH, True)):
            ids = buckets[channel]
            if not ids:
                continue
            batch = NotificationBatch(
                user_ids=ids, category=category, title=title, message=message,
                deep_link=deep_link, in_app=True, push=push, action_data=action_data,
            )
            try:
                self.sender(batch)
                report.sent.append(batch)
            except Exception:
                log.warning("notification batch %s/%s failed", category.value, channel.value, exc_info=True)
                report.failed.append(batch)
        return report
