"""
Unified authentication dependency: identity + role set → one capability object.

Supports dual-mode auth:
- JWT Bearer token (web interface, role rows loaded from DB)
- X-Admin-Secret header (automation: monitoring cron, bot service)

Every endpoint gates access through `require_access(Role.X)`, which
relies on `Role.satisfies` so an active admin passes any narrower check.
"""
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from api.ai_context import AIContext, get_ai_context
from api.auth import verify_token
from api.config import settings
from api.db import get_db
from api.models_users import User
from api.roles import Role, RoleSet, load_role_set

# HTTP Bearer security (missing header → anonymous, not an error)
security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class SecureAuth:
    """Read-only capability object consumed by every endpoint for access gating."""

    user: Optional[User]
    role_set: RoleSet
    source: str = "anonymous"  # "jwt" | "secret" | "anonymous"

    @property
    def roles_loaded(self) -> bool:
        return self.role_set.loaded

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None or self.source == "secret"

    @property
    def is_fully_loaded(self) -> bool:
        return self.is_authenticated and self.roles_loaded

    @property
    def user_id(self) -> Optional[int]:
        return self.user.id if self.user is not None else None

    @property
    def primary_role(self) -> Role:
        return self.role_set.primary_role

    def has_role(self, role: Role) -> bool:
        return self.role_set.has_role(role)

    def require_role(self, role: Role) -> bool:
        """Exact role or admin."""
        return self.has_role(role) or self.has_role(Role.admin)

    @property
    def can_access_admin(self) -> bool:
        return self.role_set.satisfies(Role.admin)

    @property
    def can_access_foreman(self) -> bool:
        return self.role_set.satisfies(Role.foreman)

    @property
    def can_access_worker(self) -> bool:
        return self.role_set.satisfies(Role.worker)

    @property
    def ai_context(self) -> AIContext:
        if not self.is_authenticated:
            return get_ai_context(Role.guest)
        return get_ai_context(self.role_set.highest_role)

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "username": self.user.username if self.user is not None else None,
            "full_name": self.user.full_name if self.user is not None else None,
            "source": self.source,
            "roles": [role.value for role in self.role_set.roles],
            "primary_role": self.primary_role.value,
            "is_authenticated": self.is_authenticated,
            "is_fully_loaded": self.is_fully_loaded,
            "is_admin": self.role_set.is_admin,
            "is_foreman": self.role_set.is_foreman,
            "is_worker": self.role_set.is_worker,
            "can_access_admin": self.can_access_admin,
            "can_access_foreman": self.can_access_foreman,
            "can_access_worker": self.can_access_worker,
        }


ANONYMOUS = SecureAuth(user=None, role_set=RoleSet())


async def get_secure_auth(
    x_admin_secret: str | None = Header(default=None, alias="X-Admin-Secret"),
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: Session = Depends(get_db),
) -> SecureAuth:
    """
    Resolve the caller into a SecureAuth.

    Auth flow:
    1. X-Admin-Secret present → must match INTERNAL_ADMIN_SECRET (else 401)
    2. No Bearer token → anonymous (guest); endpoints decide whether that is enough
    3. Bearer token → user must exist (401) and be active (403)
    """
    if x_admin_secret is not None:
        if settings.INTERNAL_ADMIN_SECRET is not None and x_admin_secret == settings.INTERNAL_ADMIN_SECRET:
            return SecureAuth(user=None, role_set=RoleSet((Role.admin,)), source="secret")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid X-Admin-Secret header",
        )

    if credentials is None:
        return ANONYMOUS

    payload = verify_token(credentials.credentials, token_type="access")
    user = db.query(User).filter(User.id == int(payload["user_id"])).first()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found"
        )
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account disabled"
        )

    return SecureAuth(user=user, role_set=load_role_set(db, user.id), source="jwt")


def require_access(required: Role):
    """Dependency factory: 401 when anonymous, 403 when no held role satisfies `required`."""
    async def access_checker(auth: SecureAuth = Depends(get_secure_auth)) -> SecureAuth:
        if not auth.is_authenticated:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Authentication required"
            )
        if not auth.role_set.satisfies(required):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Insufficient permissions (required: {Role(required).value}, current: {auth.primary_role.value})"
            )
        return auth

    return access_checker


# Convenience dependencies
require_admin = require_access(Role.admin)
require_foreman = require_access(Role.foreman)
require_worker = require_access(Role.worker)
require_authenticated = require_access(Role.guest)
