"""Authentication and user-management schemas."""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from api.roles import Role


class PasswordLoginIn(BaseModel):
    """Password-based login request."""
    username: str = Field(..., min_length=3, max_length=100)
    password: str = Field(..., min_length=8, max_length=255)
    otp_code: Optional[str] = Field(None, max_length=32)  # required once 2FA is enabled


class TokenResponse(BaseModel):
    """JWT token response."""
    access_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds
    user_id: int
    username: str
    full_name: Optional[str] = None
    primary_role: str


class UserCreateIn(BaseModel):
    """Create user account (admin)."""
    username: str = Field(..., min_length=3, max_length=100)
    full_name: Optional[str] = Field(None, max_length=200)
    password: Optional[str] = Field(None, min_length=8, max_length=255)
    telegram_id: Optional[int] = Field(None, gt=0)
    role: Role = Role.worker


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    full_name: Optional[str] = None
    telegram_id: Optional[int] = None
    is_active: bool
    created_at: datetime


class RoleGrantIn(BaseModel):
    """Grant a (possibly temporary) role."""
    user_id: int
    role: Role
    expires_at: Optional[datetime] = None
    notes: Optional[str] = Field(None, max_length=500)


class RoleAssignmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    role: str
    is_active: bool
    expires_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_by: Optional[int] = None
    created_at: datetime


class TwoFactorCodeIn(BaseModel):
    """Six-digit TOTP code or a one-time backup code."""
    code: str = Field(..., min_length=6, max_length=32)


class TwoFactorSetupOut(BaseModel):
    secret: str
    provisioning_uri: str
    backup_codes: list[str]
