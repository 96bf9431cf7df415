"""Settings endpoints: system settings, users and roles, audit log, security overview.

All admin-only except the public settings read.
"""
import logging
import os
import platform
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from api import crud_users
from api.config import settings
from api.db import get_db
from api.deps_auth import SecureAuth, require_admin, require_authenticated
from api.models import AIProvider, AuditLog, SystemSetting
from api.models_users import User, UserRoleAssignment, UserTwoFactor
from api.roles import Role
from api.schemas_auth import RoleAssignmentOut, RoleGrantIn, UserCreateIn, UserOut
from api.schemas_settings import AuditLogOut, SettingIn, SettingOut
from api.utils.audit import model_to_dict, write_audit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/settings", tags=["settings"])

ROLE_CHANGE_ACTIONS = ("ROLE_GRANTED", "ROLE_REVOKED")


@router.get("/general")
async def get_general_settings(auth: SecureAuth = Depends(require_admin)):
    """General settings (read-only, from environment)."""
    return {
        "company_name": settings.COMPANY_NAME,
        "timezone": settings.TZ,
        "editable": False,
        "note": "Для изменения настроек отредактируйте переменные окружения (.env)",
    }


@router.get("/system")
async def get_system_info(
    auth: SecureAuth = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """System information (database, integrations, platform)."""
    db_exists = os.path.exists(settings.DB_PATH)
    configured_keys = [
        provider_type for provider_type in ("openai", "anthropic", "deepseek", "google", "azure")
        if settings.provider_api_key(provider_type)
    ]

    return {
        "database": {
            "path": settings.DB_PATH,
            "exists": db_exists,
            "size_bytes": os.path.getsize(settings.DB_PATH) if db_exists else 0,
        },
        "integrations": {
            "telegram_bot": "configured" if settings.TELEGRAM_BOT_TOKEN else "not_configured",
            "telegram_chat": "configured" if settings.TELEGRAM_CHAT_ID else "not_configured",
            "ai_providers": db.query(AIProvider).filter(AIProvider.is_active == True).count(),  # noqa: E712
            "ai_keys": configured_keys,
        },
        "platform": {
            "os": platform.system() + " " + platform.release(),
            "python": platform.python_version(),
        },
        "generated_at": datetime.now(timezone.utc).isoformat(),
    }


# --- Key/value system settings ---

@router.get("", response_model=list[SettingOut])
async def list_settings(
    category: Optional[str] = Query(None),
    auth: SecureAuth = Depends(require_admin),
    db: Session = Depends(get_db)
):
    query = db.query(SystemSetting)
    if category:
        query = query.filter(SystemSetting.category == category)
    return query.order_by(SystemSetting.category, SystemSetting.key).all()


@router.get("/public", response_model=list[SettingOut])
async def list_public_settings(
    auth: SecureAuth = Depends(require_authenticated),
    db: Session = Depends(get_db)
):
    return (
        db.query(SystemSetting)
        .filter(SystemSetting.is_public == True)  # noqa: E712
        .order_by(SystemSetting.key)
        .all()
    )


@router.put("/values/{key}", response_model=SettingOut)
async def put_setting(
    key: str,
    data: SettingIn,
    auth: SecureAuth = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Create or replace one setting."""
    row = db.query(SystemSetting).filter(SystemSetting.key == key).first()
    old_values = model_to_dict(row) if row else None
    if row is None:
        row = SystemSetting(key=key)
        db.add(row)

    for field, value in data.model_dump().items():
        setattr(row, field, value)
    row.updated_by = auth.user_id
    db.flush()

    write_audit(db, "SETTING_UPDATE", auth.user_id, "system_settings", row.id,
                old_values=old_values, new_values=model_to_dict(row))
    db.commit()
    db.refresh(row)
    return row


# --- Users and roles ---

@router.get("/users", response_model=list[UserOut])
async def list_users(
    active_only: bool = Query(False),
    auth: SecureAuth = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return crud_users.list_users(db, active_only=active_only, limit=500)


@router.post("/users", response_model=UserOut, status_code=status.HTTP_201_CREATED)
async def create_user(
    data: UserCreateIn,
    auth: SecureAuth = Depends(require_admin),
    db: Session = Depends(get_db)
):
    if crud_users.get_user_by_username(db, data.username):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Username '{data.username}' already taken"
        )
    if data.telegram_id is not None and crud_users.get_user_by_telegram_id(db, data.telegram_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Telegram account already linked to another user"
        )

    user = crud_users.create_user(db, data, created_by=auth.user_id)
    write_audit(db, "USER_CREATE", auth.user_id, "users", user.id,
                new_values={"username": user.username, "role": Role(data.role).value})
    db.commit()
    db.refresh(user)
    return user


@router.get("/roles", response_model=list[RoleAssignmentOut])
async def list_roles(
    user_id: Optional[int] = Query(None),
    auth: SecureAuth = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return crud_users.list_role_assignments(db, user_id)


@router.post("/roles", response_model=RoleAssignmentOut, status_code=status.HTTP_201_CREATED)
async def grant_role(
    data: RoleGrantIn,
    auth: SecureAuth = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Grant a role; `expires_at` makes it temporary."""
    if not crud_users.get_user_by_id(db, data.user_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )
    if data.expires_at is not None:
        expires = data.expires_at if data.expires_at.tzinfo else data.expires_at.replace(tzinfo=timezone.utc)
        if expires <= datetime.now(timezone.utc):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="expires_at must be in the future"
            )
        data = data.model_copy(update={"expires_at": expires.astimezone(timezone.utc)})

    assignment = crud_users.grant_role(db, data, granted_by=auth.user_id)
    write_audit(db, "ROLE_GRANTED", auth.user_id, "user_roles", assignment.id,
                new_values=model_to_dict(assignment))
    db.commit()
    db.refresh(assignment)
    logger.info(f"Role {assignment.role} granted to user_id={assignment.user_id} by user_id={auth.user_id}")
    return assignment


@router.delete("/roles/{assignment_id}", response_model=RoleAssignmentOut)
async def revoke_role(
    assignment_id: int,
    auth: SecureAuth = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Deactivate a role row. The last live admin role cannot be revoked."""
    assignment = db.query(UserRoleAssignment).filter(UserRoleAssignment.id == assignment_id).first()
    if not assignment:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Role assignment not found"
        )

    if assignment.role == Role.admin.value and assignment.is_active:
        admins = crud_users.active_admins(db)
        if [u.id for u in admins] == [assignment.user_id]:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Cannot revoke the last active admin role"
            )

    old_values = model_to_dict(assignment)
    crud_users.revoke_role(db, assignment_id)
    write_audit(db, "ROLE_REVOKED", auth.user_id, "user_roles", assignment.id,
                old_values=old_values, new_values=model_to_dict(assignment))
    db.commit()
    db.refresh(assignment)
    return assignment


# --- Audit and security ---

@router.get("/audit-log", response_model=list[AuditLogOut])
async def get_audit_log(
    action: Optional[str] = Query(None),
    table_name: Optional[str] = Query(None),
    user_id: Optional[int] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    auth: SecureAuth = Depends(require_admin),
    db: Session = Depends(get_db)
):
    query = db.query(AuditLog)
    if action:
        query = query.filter(AuditLog.action == action)
    if table_name:
        query = query.filter(AuditLog.table_name == table_name)
    if user_id is not None:
        query = query.filter(AuditLog.user_id == user_id)
    return query.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).limit(limit).all()


@router.get("/security")
async def get_security_overview(
    auth: SecureAuth = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """
    Security overview.

    `stale_roles` lists temporary roles whose expiry passed while the row
    is still flagged active; they no longer grant anything but should be
    revoked explicitly.
    `two_factor` counts active users with 2FA enabled and names the
    admins who have not enabled it.
    """
    since = datetime.now(timezone.utc) - timedelta(hours=24)
    stale = crud_users.stale_role_assignments(db)
    admins = crud_users.active_admins(db)
    with_2fa = {
        row.user_id for row in db.query(UserTwoFactor.user_id)
        .join(User, User.id == UserTwoFactor.user_id)
        .filter(UserTwoFactor.is_enabled == True, User.is_active == True)  # noqa: E712
        .all()
    }

    return {
        "total_users": db.query(User).count(),
        "active_users": db.query(User).filter(User.is_active == True).count(),  # noqa: E712
        "admin_users": len(admins),
        "recent_role_changes": db.query(AuditLog).filter(
            AuditLog.action.in_(ROLE_CHANGE_ACTIONS),
            AuditLog.timestamp >= since.replace(tzinfo=None)
        ).count(),
        "stale_roles": [RoleAssignmentOut.model_validate(r).model_dump(mode="json") for r in stale],
        "two_factor": {
            "users_with_2fa": len(with_2fa),
            "admins_without_2fa": sorted(a.username for a in admins if a.id not in with_2fa),
        },
        "generated_at": datetime.now(timezone.utc).isoformat(),
    }
