"""Expense endpoints: categories, project expenses and worker expenses."""
import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from api.db import get_db
from api.deps_auth import SecureAuth, require_admin, require_foreman
from api.endpoints_projects import get_project_or_404
from api.endpoints_workers import get_worker_or_404
from api.models import ExpenseCategory, ProjectExpense, WorkerExpense
from api.schemas_expenses import (
    CategoryCreateIn,
    CategoryOut,
    ExpenseCreateIn,
    ProjectExpenseOut,
    WorkerExpenseOut,
)
from api.utils.audit import model_to_dict, write_audit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/expenses", tags=["expenses"])


def _check_category(db: Session, category_id: int) -> ExpenseCategory:
    category = db.query(ExpenseCategory).filter(ExpenseCategory.id == category_id).first()
    if not category:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Expense category not found"
        )
    return category


def _date_range(query, model, date_from: Optional[date], date_to: Optional[date]):
    if date_from:
        query = query.filter(model.date >= date_from)
    if date_to:
        query = query.filter(model.date <= date_to)
    return query


# --- Categories ---

@router.get("/categories", response_model=list[CategoryOut])
async def list_categories(
    auth: SecureAuth = Depends(require_foreman),
    db: Session = Depends(get_db)
):
    return db.query(ExpenseCategory).order_by(ExpenseCategory.name).all()


@router.post("/categories", response_model=CategoryOut, status_code=status.HTTP_201_CREATED)
async def create_category(
    data: CategoryCreateIn,
    auth: SecureAuth = Depends(require_admin),
    db: Session = Depends(get_db)
):
    if db.query(ExpenseCategory).filter(ExpenseCategory.name == data.name).first():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Expense category '{data.name}' already exists"
        )

    category = ExpenseCategory(**data.model_dump())
    db.add(category)
    db.flush()
    write_audit(db, "EXPENSE_CATEGORY_CREATE", auth.user_id, "expense_categories", category.id,
                new_values=model_to_dict(category))
    db.commit()
    db.refresh(category)
    return category


# --- Project expenses ---

@router.get("/projects/{project_id}", response_model=list[ProjectExpenseOut])
async def list_project_expenses(
    project_id: int,
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    auth: SecureAuth = Depends(require_foreman),
    db: Session = Depends(get_db)
):
    get_project_or_404(db, project_id)
    query = db.query(ProjectExpense).filter(ProjectExpense.project_id == project_id)
    query = _date_range(query, ProjectExpense, date_from, date_to)
    return query.order_by(ProjectExpense.date.desc(), ProjectExpense.id.desc()).all()


@router.post("/projects/{project_id}", response_model=ProjectExpenseOut, status_code=status.HTTP_201_CREATED)
async def create_project_expense(
    project_id: int,
    data: ExpenseCreateIn,
    auth: SecureAuth = Depends(require_admin),
    db: Session = Depends(get_db)
):
    get_project_or_404(db, project_id)
    _check_category(db, data.category_id)

    expense = ProjectExpense(project_id=project_id, **data.model_dump())
    db.add(expense)
    db.flush()
    write_audit(db, "PROJECT_EXPENSE_CREATE", auth.user_id, "project_expenses", expense.id,
                new_values=model_to_dict(expense))
    db.commit()
    db.refresh(expense)
    return expense


@router.delete("/projects/{project_id}/{expense_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_project_expense(
    project_id: int,
    expense_id: int,
    auth: SecureAuth = Depends(require_admin),
    db: Session = Depends(get_db)
):
    expense = db.query(ProjectExpense).filter(
        ProjectExpense.id == expense_id,
        ProjectExpense.project_id == project_id
    ).first()
    if not expense:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Expense not found"
        )
    snapshot = model_to_dict(expense)
    db.delete(expense)
    write_audit(db, "PROJECT_EXPENSE_DELETE", auth.user_id, "project_expenses", expense_id, old_values=snapshot)
    db.commit()
    return None


# --- Worker expenses ---

@router.get("/workers/{worker_id}", response_model=list[WorkerExpenseOut])
async def list_worker_expenses(
    worker_id: int,
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    auth: SecureAuth = Depends(require_foreman),
    db: Session = Depends(get_db)
):
    get_worker_or_404(db, worker_id)
    query = db.query(WorkerExpense).filter(WorkerExpense.worker_id == worker_id)
    query = _date_range(query, WorkerExpense, date_from, date_to)
    return query.order_by(WorkerExpense.date.desc(), WorkerExpense.id.desc()).all()


@router.post("/workers/{worker_id}", response_model=WorkerExpenseOut, status_code=status.HTTP_201_CREATED)
async def create_worker_expense(
    worker_id: int,
    data: ExpenseCreateIn,
    auth: SecureAuth = Depends(require_admin),
    db: Session = Depends(get_db)
):
    get_worker_or_404(db, worker_id)
    _check_category(db, data.category_id)

    expense = WorkerExpense(worker_id=worker_id, **data.model_dump())
    db.add(expense)
    db.flush()
    write_audit(db, "WORKER_EXPENSE_CREATE", auth.user_id, "worker_expenses", expense.id,
                new_values=model_to_dict(expense))
    db.commit()
    db.refresh(expense)
    return expense


@router.delete("/workers/{worker_id}/{expense_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_worker_expense(
    worker_id: int,
    expense_id: int,
    auth: SecureAuth = Depends(require_admin),
    db: Session = Depends(get_db)
):
    expense = db.query(WorkerExpense).filter(
        WorkerExpense.id == expense_id,
        WorkerExpense.worker_id == worker_id
    ).first()
    if not expense:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Expense not found"
        )
    snapshot = model_to_dict(expense)
    db.delete(expense)
    write_audit(db, "WORKER_EXPENSE_DELETE", auth.user_id, "worker_expenses", expense_id, old_values=snapshot)
    db.commit()
    return None
