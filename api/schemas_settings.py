"""System settings and audit log schemas."""
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class SettingIn(BaseModel):
    value: Any = None
    category: str = Field("general", max_length=50)
    description: Optional[str] = None
    is_public: bool = False


class SettingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    key: str
    value: Any = None
    category: str
    description: Optional[str] = None
    is_public: bool
    updated_by: Optional[int] = None


class AuditLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: Optional[int] = None
    action: str
    table_name: Optional[str] = None
    record_id: Optional[str] = None
    old_values: Optional[dict] = None
    new_values: Optional[dict] = None
    timestamp: datetime
