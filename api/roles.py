"""Role resolution: which roles a user currently holds and what they satisfy.

Roles form a strict order admin ⊇ foreman ⊇ worker. Guest is the
fail-closed default and satisfies nothing but itself.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from api.models_users import UserRoleAssignment

logger = logging.getLogger(__name__)


class Role(str, Enum):
    admin = "admin"
    foreman = "foreman"
    worker = "worker"
    guest = "guest"

    @property
    def rank(self) -> int:
        return _RANKS[self]

    def satisfies(self, required: "Role") -> bool:
        """True if holding this role is enough for a `required` check."""
        required = Role(required)
        if required is Role.guest:
            return True
        if self is Role.guest:
            return False
        return self.rank >= required.rank


_RANKS = {Role.guest: 0, Role.worker: 1, Role.foreman: 2, Role.admin: 3}


def _as_utc(value: datetime) -> datetime:
    # SQLite returns naive datetimes; stored values are UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_assignment_live(row, now: Optional[datetime] = None) -> bool:
    """Active flag set and expiry (if any) still in the future."""
    if not row.is_active:
        return False
    if row.expires_at is None:
        return True
    now = now or datetime.now(timezone.utc)
    return _as_utc(row.expires_at) > _as_utc(now)


@dataclass(frozen=True)
class RoleSet:
    """Qualifying roles of one user, in assignment order. `loaded` is False when the lookup failed."""

    roles: tuple = ()
    loaded: bool = True

    @classmethod
    def from_assignments(cls, rows: Iterable, now: Optional[datetime] = None) -> "RoleSet":
        now = now or datetime.now(timezone.utc)
        qualifying = []
        for row in rows:
            if not is_assignment_live(row, now):
                continue
            try:
                qualifying.append(Role(row.role))
            except ValueError:
                logger.warning(f"Ignoring unknown role '{row.role}' on assignment {getattr(row, 'id', None)}")
        return cls(tuple(qualifying))

    def has_role(self, role: Role) -> bool:
        return Role(role) in self.roles

    @property
    def is_admin(self) -> bool:
        return self.has_role(Role.admin)

    @property
    def is_foreman(self) -> bool:
        return self.has_role(Role.foreman)

    @property
    def is_worker(self) -> bool:
        return self.has_role(Role.worker)

    @property
    def primary_role(self) -> Role:
        return self.roles[0] if self.roles else Role.guest

    @property
    def highest_role(self) -> Role:
        if not self.roles:
            return Role.guest
        return max(self.roles, key=lambda r: r.rank)

    def satisfies(self, required: Role) -> bool:
        """Any qualifying role is enough for `required` (admin covers everything)."""
        if Role(required) is Role.guest:
            return True
        return any(role.satisfies(required) for role in self.roles)


def load_role_set(db: Session, user_id: Optional[int], now: Optional[datetime] = None) -> RoleSet:
    """Fetch and filter a user's role rows. Errors degrade to an empty, unloaded set (guest)."""
    if user_id is None:
        return RoleSet()
    try:
        rows = (
            db.query(UserRoleAssignment)
            .filter(UserRoleAssignment.user_id == user_id)
            .order_by(UserRoleAssignment.id)
            .all()
        )
    except SQLAlchemyError as e:
        logger.error(f"Role lookup failed for user_id={user_id}: {e}")
        return RoleSet(loaded=False)
    return RoleSet.from_assignments(rows, now)
