"""Expense category and expense schemas."""
from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

CategoryType = Literal["general", "materials", "labor", "equipment", "transport", "other"]


class CategoryCreateIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: CategoryType = "general"
    description: Optional[str] = None


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: str
    description: Optional[str] = None


class ExpenseCreateIn(BaseModel):
    """Shared body for project and worker expenses; the owner comes from the URL."""
    category_id: int
    amount: Decimal = Field(..., gt=0)
    date: date
    description: Optional[str] = None
    receipt_url: Optional[str] = Field(None, max_length=500)


class ProjectExpenseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    project_id: int
    category_id: int
    amount: float
    date: date
    description: Optional[str] = None
    receipt_url: Optional[str] = None
    created_at: datetime


class WorkerExpenseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    worker_id: int
    category_id: int
    amount: float
    date: date
    description: Optional[str] = None
    receipt_url: Optional[str] = None
    created_at: datetime
