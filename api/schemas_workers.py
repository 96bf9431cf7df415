"""Worker, attendance and payment schemas."""
from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

WorkerStatus = Literal["active", "inactive", "on_leave", "fired"]
AttendanceStatus = Literal["present", "absent", "sick", "vacation"]


class WorkerCreateIn(BaseModel):
    full_name: str = Field(..., min_length=1, max_length=200)
    phone: Optional[str] = Field(None, max_length=32)
    daily_rate: Decimal = Field(Decimal("0"), ge=0)
    status: WorkerStatus = "active"
    position: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None


class WorkerUpdateIn(BaseModel):
    """Partial update: only provided fields change."""
    full_name: Optional[str] = Field(None, min_length=1, max_length=200)
    phone: Optional[str] = Field(None, max_length=32)
    daily_rate: Optional[Decimal] = Field(None, ge=0)
    status: Optional[WorkerStatus] = None
    position: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None


class WorkerOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    full_name: str
    phone: Optional[str] = None
    daily_rate: float
    status: str
    position: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


class WorkerListOut(BaseModel):
    workers: list[WorkerOut]
    total: int
    page: int
    page_size: int


class WorkerBalanceOut(BaseModel):
    worker_id: int
    present_days: int
    daily_rate: float
    total_earned: float
    total_paid: float
    outstanding_balance: float


class WorkerRatingOut(BaseModel):
    worker_id: int
    full_name: str
    overall_rating: float
    attendance_rate: float
    work_days: int
    total_earned: float
    total_paid: float
    reliability: float
    performance: float
    badge: str


class AttendanceUpsertIn(BaseModel):
    """Insert or overwrite the (worker_id, date) record."""
    worker_id: int
    date: date
    status: AttendanceStatus
    hours_worked: Optional[float] = Field(8, ge=0, le=24)
    project_id: Optional[int] = None
    notes: Optional[str] = None


class AttendanceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    worker_id: int
    project_id: Optional[int] = None
    date: date
    status: str
    hours_worked: Optional[float] = None
    notes: Optional[str] = None


class PaymentCreateIn(BaseModel):
    worker_id: int
    date: date
    amount: Decimal = Field(..., gt=0)
    description: Optional[str] = Field(None, max_length=500)


class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    worker_id: int
    date: date
    amount: float
    description: Optional[str] = None
    created_at: datetime
