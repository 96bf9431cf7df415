"""CRUD operations for user accounts and role assignments"""
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.orm import Session

from api.auth import hash_password
from api.models_users import User, UserRoleAssignment
from api.roles import Role, is_assignment_live
from api.schemas_auth import RoleGrantIn, UserCreateIn


def get_user_by_id(db: Session, user_id: int) -> Optional[User]:
    """Get user by primary key"""
    return db.query(User).filter(User.id == user_id).first()


def get_user_by_username(db: Session, username: str) -> Optional[User]:
    return db.query(User).filter(User.username == username).first()


def get_user_by_telegram_id(db: Session, telegram_id: int) -> Optional[User]:
    """Get user by telegram_id"""
    return db.query(User).filter(User.telegram_id == telegram_id).first()


def list_users(db: Session, active_only: bool = False, skip: int = 0, limit: int = 100) -> List[User]:
    query = db.query(User)
    if active_only:
        query = query.filter(User.is_active == True)  # noqa: E712
    return query.order_by(User.id).offset(skip).limit(limit).all()


def create_user(db: Session, data: UserCreateIn, created_by: Optional[int] = None) -> User:
    """Create user plus its first role row. Caller commits."""
    user = User(
        username=data.username,
        full_name=data.full_name,
        password_hash=hash_password(data.password) if data.password else None,
        telegram_id=data.telegram_id,
        is_active=True,
    )
    db.add(user)
    db.flush()  # Get user.id

    db.add(UserRoleAssignment(user_id=user.id, role=Role(data.role).value, created_by=created_by))
    return user


def grant_role(db: Session, data: RoleGrantIn, granted_by: Optional[int] = None) -> UserRoleAssignment:
    assignment = UserRoleAssignment(
        user_id=data.user_id,
        role=Role(data.role).value,
        is_active=True,
        expires_at=data.expires_at,
        notes=data.notes,
        created_by=granted_by,
    )
    db.add(assignment)
    db.flush()
    return assignment


def revoke_role(db: Session, assignment_id: int) -> Optional[UserRoleAssignment]:
    assignment = db.query(UserRoleAssignment).filter(UserRoleAssignment.id == assignment_id).first()
    if assignment:
        assignment.is_active = False
    return assignment


def list_role_assignments(db: Session, user_id: Optional[int] = None) -> List[UserRoleAssignment]:
    query = db.query(UserRoleAssignment)
    if user_id is not None:
        query = query.filter(UserRoleAssignment.user_id == user_id)
    return query.order_by(UserRoleAssignment.id).all()


def stale_role_assignments(db: Session, now: Optional[datetime] = None) -> List[UserRoleAssignment]:
    """Rows still flagged active although their expiry has passed."""
    now = now or datetime.now(timezone.utc)
    rows = (
        db.query(UserRoleAssignment)
        .filter(UserRoleAssignment.is_active == True, UserRoleAssignment.expires_at.isnot(None))  # noqa: E712
        .all()
    )
    return [row for row in rows if not is_assignment_live(row, now)]


def active_admins(db: Session) -> List[User]:
    """Active users holding a live admin role (notification recipients)."""
    rows = (
        db.query(UserRoleAssignment)
        .join(User, User.id == UserRoleAssignment.user_id)
        .filter(UserRoleAssignment.role == Role.admin.value, User.is_active == True)  # noqa: E712
        .all()
    )
    seen = {}
    for row in rows:
        if is_assignment_live(row) and row.user_id not in seen:
            seen[row.user_id] = row.user
    return list(seen.values())
