"""Project, client, task and assignment schemas."""
from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

ProjectStatus = Literal["planning", "active", "on_hold", "completed", "cancelled"]
ClientStatus = Literal["active", "inactive", "potential"]
Priority = Literal["low", "medium", "high"]
TaskStatus = Literal["todo", "in_progress", "completed", "cancelled"]


class ProjectCreateIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    address: Optional[str] = Field(None, max_length=300)
    description: Optional[str] = None
    budget: Optional[Decimal] = Field(None, ge=0)
    actual_cost: Optional[Decimal] = Field(Decimal("0"), ge=0)
    progress_percentage: int = Field(0, ge=0, le=100)
    priority: Priority = "medium"
    status: ProjectStatus = "planning"
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    client_id: Optional[int] = None

    @model_validator(mode="after")
    def check_dates(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class ProjectUpdateIn(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    address: Optional[str] = Field(None, max_length=300)
    description: Optional[str] = None
    budget: Optional[Decimal] = Field(None, ge=0)
    actual_cost: Optional[Decimal] = Field(None, ge=0)
    progress_percentage: Optional[int] = Field(None, ge=0, le=100)
    priority: Optional[Priority] = None
    status: Optional[ProjectStatus] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    client_id: Optional[int] = None


class ProjectOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    address: Optional[str] = None
    description: Optional[str] = None
    budget: Optional[float] = None
    actual_cost: Optional[float] = None
    progress_percentage: int
    priority: str
    status: str
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    client_id: Optional[int] = None
    client_name: Optional[str] = None
    created_at: datetime


class ClientCreateIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    contact_person: Optional[str] = Field(None, max_length=200)
    phone: Optional[str] = Field(None, max_length=32)
    email: Optional[str] = Field(None, max_length=200, pattern=r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
    address: Optional[str] = Field(None, max_length=300)
    company_type: Optional[str] = Field(None, max_length=50)
    status: ClientStatus = "active"
    notes: Optional[str] = None


class ClientUpdateIn(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    contact_person: Optional[str] = Field(None, max_length=200)
    phone: Optional[str] = Field(None, max_length=32)
    email: Optional[str] = Field(None, max_length=200, pattern=r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
    address: Optional[str] = Field(None, max_length=300)
    company_type: Optional[str] = Field(None, max_length=50)
    status: Optional[ClientStatus] = None
    notes: Optional[str] = None


class ClientOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    contact_person: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    company_type: Optional[str] = None
    status: str
    notes: Optional[str] = None
    created_at: datetime


class TaskCreateIn(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    status: TaskStatus = "todo"
    priority: Priority = "medium"
    assigned_worker_id: Optional[int] = None
    estimated_hours: Optional[float] = Field(None, ge=0)
    actual_hours: Optional[float] = Field(None, ge=0)
    start_date: Optional[date] = None
    due_date: Optional[date] = None


class TaskUpdateIn(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[Priority] = None
    assigned_worker_id: Optional[int] = None
    estimated_hours: Optional[float] = Field(None, ge=0)
    actual_hours: Optional[float] = Field(None, ge=0)
    due_date: Optional[date] = None


class TaskOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    project_id: int
    title: str
    description: Optional[str] = None
    status: str
    priority: str
    assigned_worker_id: Optional[int] = None
    estimated_hours: Optional[float] = None
    actual_hours: Optional[float] = None
    start_date: Optional[date] = None
    due_date: Optional[date] = None
    completed_date: Optional[date] = None


class AssignWorkersIn(BaseModel):
    """Assign several workers to one project at once."""
    worker_ids: list[int] = Field(..., min_length=1)
    foreman_id: Optional[int] = None
    role: str = Field("worker", max_length=100)
    start_date: Optional[date] = None


class AssignmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    worker_id: int
    project_id: int
    foreman_id: Optional[int] = None
    role: str
    start_date: date
    end_date: Optional[date] = None


class RecommendationsIn(BaseModel):
    """Skill names the project needs; empty means every skill a worker holds counts."""
    model_config = ConfigDict(populate_by_name=True)

    required_skills: list[str] = Field(default_factory=list, alias="requiredSkills")
    include_insights: bool = Field(True, alias="includeInsights")
