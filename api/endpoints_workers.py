"""Worker management endpoints (CRUD + RBAC, balance and rating)."""
import logging
from collections import defaultdict
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from api.db import get_db
from api.deps_auth import SecureAuth, require_admin, require_foreman
from api.models import (
    Attendance,
    Certification,
    Payment,
    ProjectTask,
    Worker,
    WorkerAssignment,
    WorkerExpense,
    WorkerSkill,
)
from api.rating import RatingVariant, calculate_worker_rating, count_present_days, outstanding_balance, rank_workers
from api.schemas_workers import (
    WorkerBalanceOut,
    WorkerCreateIn,
    WorkerListOut,
    WorkerOut,
    WorkerRatingOut,
    WorkerUpdateIn,
)
from api.utils.audit import model_to_dict, write_audit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/workers", tags=["workers"])


def get_worker_or_404(db: Session, worker_id: int) -> Worker:
    worker = db.query(Worker).filter(Worker.id == worker_id).first()
    if not worker:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Worker not found"
        )
    return worker


def find_worker_by_name(db: Session, name: str) -> Optional[Worker]:
    """Fuzzy lookup: case-insensitive substring of full_name, first match wins."""
    name = (name or "").strip()
    if not name:
        return None
    return (
        db.query(Worker)
        .filter(func.lower(Worker.full_name).contains(name.lower()))
        .order_by(Worker.id)
        .first()
    )


@router.get("", response_model=WorkerListOut)
async def list_workers(
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    status_filter: Optional[str] = Query(None, alias="status", pattern="^(active|inactive|on_leave|fired)$"),
    search: Optional[str] = Query(None, max_length=100),
    auth: SecureAuth = Depends(require_foreman),
    db: Session = Depends(get_db)
):
    """List workers with pagination and filtering (foreman+)."""
    query = db.query(Worker)

    if status_filter:
        query = query.filter(Worker.status == status_filter)

    if search:
        query = query.filter(func.lower(Worker.full_name).contains(search.lower()))

    total = query.count()
    offset = (page - 1) * page_size
    workers = query.order_by(Worker.full_name).offset(offset).limit(page_size).all()

    return WorkerListOut(
        workers=[WorkerOut.model_validate(w) for w in workers],
        total=total,
        page=page,
        page_size=page_size
    )


@router.post("", response_model=WorkerOut, status_code=status.HTTP_201_CREATED)
async def create_worker(
    data: WorkerCreateIn,
    auth: SecureAuth = Depends(require_admin),
    db: Session = Depends(get_db)
):
    worker = Worker(**data.model_dump())
    db.add(worker)
    db.flush()
    write_audit(db, "WORKER_CREATE", auth.user_id, "workers", worker.id, new_values=model_to_dict(worker))
    db.commit()
    db.refresh(worker)
    logger.info(f"Worker {worker.id} created by user_id={auth.user_id}")
    return worker


@router.get("/ratings", response_model=list[WorkerRatingOut])
async def list_worker_ratings(
    variant: RatingVariant = Query(RatingVariant.dashboard),
    include_inactive: bool = Query(False),
    auth: SecureAuth = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Ratings of all workers, best first."""
    query = db.query(Worker)
    if not include_inactive:
        query = query.filter(Worker.status == "active")
    workers = query.all()

    attendance_by_worker = defaultdict(list)
    for row in db.query(Attendance).all():
        attendance_by_worker[row.worker_id].append(row)

    payments_by_worker = defaultdict(list)
    for row in db.query(Payment).all():
        payments_by_worker[row.worker_id].append(row)

    ratings = rank_workers(workers, attendance_by_worker, payments_by_worker, variant)
    return [r.to_dict() for r in ratings]


@router.get("/{worker_id}", response_model=WorkerOut)
async def get_worker(
    worker_id: int,
    auth: SecureAuth = Depends(require_foreman),
    db: Session = Depends(get_db)
):
    return get_worker_or_404(db, worker_id)


@router.put("/{worker_id}", response_model=WorkerOut)
async def update_worker(
    worker_id: int,
    data: WorkerUpdateIn,
    auth: SecureAuth = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Update worker details (admin only). Last write wins."""
    worker = get_worker_or_404(db, worker_id)
    old_values = model_to_dict(worker)

    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(worker, field, value)

    write_audit(db, "WORKER_UPDATE", auth.user_id, "workers", worker.id,
                old_values=old_values, new_values=model_to_dict(worker))
    db.commit()
    db.refresh(worker)
    return worker


@router.delete("/{worker_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_worker(
    worker_id: int,
    auth: SecureAuth = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """
    Delete worker and dependent rows in one transaction.

    Blocked (409, nothing deleted) while the worker has an active
    project assignment (end_date is NULL).
    """
    worker = get_worker_or_404(db, worker_id)

    active_assignments = db.query(WorkerAssignment).filter(
        WorkerAssignment.worker_id == worker_id,
        WorkerAssignment.end_date.is_(None)
    ).count()
    if active_assignments:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=(
                f"Cannot delete worker '{worker.full_name}': {active_assignments} active project "
                f"assignment(s). End the assignments first."
            )
        )

    snapshot = model_to_dict(worker)
    try:
        for model in (Attendance, Payment, WorkerSkill, WorkerExpense, Certification, WorkerAssignment):
            db.query(model).filter(model.worker_id == worker_id).delete(synchronize_session=False)
        db.query(WorkerAssignment).filter(WorkerAssignment.foreman_id == worker_id).update(
            {WorkerAssignment.foreman_id: None}, synchronize_session=False
        )
        db.query(ProjectTask).filter(ProjectTask.assigned_worker_id == worker_id).update(
            {ProjectTask.assigned_worker_id: None}, synchronize_session=False
        )
        db.delete(worker)
        write_audit(db, "WORKER_DELETE", auth.user_id, "workers", worker_id, old_values=snapshot)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Worker {worker_id} delete rolled back: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Worker deletion failed; no changes were applied"
        )

    logger.info(f"Worker {worker_id} deleted by user_id={auth.user_id}")
    return None


def _worker_rows(db: Session, worker_id: int):
    attendance = db.query(Attendance).filter(Attendance.worker_id == worker_id).all()
    payments = db.query(Payment).filter(Payment.worker_id == worker_id).all()
    return attendance, payments


@router.get("/{worker_id}/balance", response_model=WorkerBalanceOut)
async def get_worker_balance(
    worker_id: int,
    auth: SecureAuth = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Earned (present days × rate) minus paid; never stored."""
    worker = get_worker_or_404(db, worker_id)
    attendance, payments = _worker_rows(db, worker_id)
    present_days = count_present_days(attendance)
    balance = outstanding_balance(worker, attendance, payments)
    total_paid = sum(float(p.amount) for p in payments)

    return WorkerBalanceOut(
        worker_id=worker.id,
        present_days=present_days,
        daily_rate=float(worker.daily_rate or 0),
        total_earned=present_days * float(worker.daily_rate or 0),
        total_paid=total_paid,
        outstanding_balance=float(balance),
    )


@router.get("/{worker_id}/rating", response_model=WorkerRatingOut)
async def get_worker_rating(
    worker_id: int,
    variant: RatingVariant = Query(RatingVariant.dashboard),
    auth: SecureAuth = Depends(require_admin),
    db: Session = Depends(get_db)
):
    worker = get_worker_or_404(db, worker_id)
    attendance, payments = _worker_rows(db, worker_id)
    return calculate_worker_rating(worker, attendance, payments, variant).to_dict()
