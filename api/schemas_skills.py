"""Skill taxonomy, worker skill and certification schemas."""
from datetime import date
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class SkillCreateIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    category: str = Field("general", max_length=50)
    description: Optional[str] = None


class SkillOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    category: str
    description: Optional[str] = None


class WorkerSkillIn(BaseModel):
    skill_id: int
    level: int = Field(1, ge=1, le=5)
    years_experience: Optional[int] = Field(None, ge=0)
    certified: bool = False
    notes: Optional[str] = None


class WorkerSkillOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    worker_id: int
    skill_id: int
    level: int
    years_experience: Optional[int] = None
    certified: bool
    notes: Optional[str] = None


class CertificationIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    issuing_organization: Optional[str] = Field(None, max_length=200)
    issue_date: Optional[date] = None
    expiration_date: Optional[date] = None
    certificate_url: Optional[str] = Field(None, max_length=500)
    status: Literal["active", "expired", "revoked"] = "active"


class CertificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    worker_id: int
    name: str
    issuing_organization: Optional[str] = None
    issue_date: Optional[date] = None
    expiration_date: Optional[date] = None
    certificate_url: Optional[str] = None
    status: str
