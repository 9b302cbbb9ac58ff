# blueprints/auth/policy.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Iterable, List, Optional, Protocol, Sequence

from flask import current_app
from sqlalchemy import select

from extensions import db
from models import Organization, OrganizationMember, RoleGrant

ADMIN_ROLE = "studio_admin"


@dataclass(frozen=True)
class AuthorizationDecision:
    signal: Optional[str] = None   # какой источник дал доступ

    @property
    def allowed(self) -> bool:
        return self.signal is not None

    def __bool__(self) -> bool:
        return self.allowed


class SignalSource(Protocol):
    name: str

    def holds(self, principal_id: str, organization_id: int) -> bool:
        ...


class AdminRoleSignal:
    name = "admin_role"

    def __init__(self, role: str = ADMIN_ROLE):
        self.role = role

    def holds(self, principal_id: str, organization_id: int) -> bool:
        row = db.session.execute(
            select(RoleGrant.id).where(
                RoleGrant.user_id == principal_id,
                RoleGrant.role == self.role,
                RoleGrant.organization_id == organization_id,
            ).limit(1)
        ).first()
        return row is not None


class OwnerSignal:
    name = "organization_owner"

    def holds(self, principal_id: str, organization_id: int) -> bool:
        owner_id = db.session.execute(
            select(Organization.owner_id).where(Organization.id == organization_id)
        ).scalar_one_or_none()
        return owner_id is not None and owner_id == principal_id


class MemberRoleSignal:
    name = "member_role"

    def __init__(self, roles: Iterable[str]):
        self.roles = frozenset(roles)

    def holds(self, principal_id: str, organization_id: int) -> bool:
        role = db.session.execute(
            select(OrganizationMember.role).where(
                OrganizationMember.organization_id == organization_id,
                OrganizationMember.user_id == principal_id,
            )
        ).scalar_one_or_none()
        return role is not None and str(role) in self.roles


class AuthorizationPolicy:
    """Доступ есть, если держится хотя бы один из сигналов.

    Источники опрашиваются по порядку до первого положительного, одинаково
    для создания и изменения программы.
    """

    def __init__(self, sources: Sequence[SignalSource]):
        self.sources: List[SignalSource] = list(sources)

    def evaluate(self, principal_id: str, organization_id: int) -> AuthorizationDecision:
        if not principal_id or organization_id is None:
            return AuthorizationDecision()
        for src in self.sources:
            if src.holds(principal_id, organization_id):
                return AuthorizationDecision(signal=src.name)
        return AuthorizationDecision()

    def is_authorized(self, principal_id: str, organization_id: int) -> bool:
        return self.evaluate(principal_id, organization_id).allowed


def default_policy() -> AuthorizationPolicy:
    roles = current_app.config.get("MEMBER_ADMIN_ROLES", ("owner", "admin", ADMIN_ROLE))
    return AuthorizationPolicy([AdminRoleSignal(), OwnerSignal(), MemberRoleSignal(roles)])
