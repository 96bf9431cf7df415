"""
Dashboard API endpoints for StroyManager.
Provides headline KPIs and recent activity for admin/foreman users.

Money totals are admin-only; foremen get the same payload with the
financial keys set to null.
"""
from collections import defaultdict
from datetime import date, datetime, timezone

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func
from sqlalchemy.orm import Session

from api.db import get_db
from api.deps_auth import SecureAuth, require_foreman
from api.models import Attendance, AuditLog, Payment, Project, Worker
from api.rating import RatingVariant, rank_workers

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


@router.get("/summary")
async def get_dashboard_summary(
    top: int = Query(5, ge=0, le=50, description="How many top-rated workers to include"),
    auth: SecureAuth = Depends(require_foreman),
    db: Session = Depends(get_db)
):
    """
    Get dashboard summary KPIs.

    Returns:
        - workers_total / workers_active
        - present_today: attendance rows with status "present" for today
        - active_projects: projects in status "active"
        - payments_this_month: sum of payments since the 1st (admin only)
        - top_workers: best dashboard ratings (admin only)
        - generated_at
    """
    today = date.today()
    month_start = today.replace(day=1)

    workers_total = db.query(func.count(Worker.id)).scalar() or 0
    workers_active = db.query(func.count(Worker.id)).filter(Worker.status == "active").scalar() or 0
    present_today = db.query(func.count(Attendance.id)).filter(
        Attendance.date == today,
        Attendance.status == "present"
    ).scalar() or 0
    active_projects = db.query(func.count(Project.id)).filter(Project.status == "active").scalar() or 0

    payments_this_month = None
    top_workers = None
    if auth.role_set.is_admin:
        paid = db.query(func.sum(Payment.amount)).filter(
            Payment.date >= month_start,
            Payment.date <= today
        ).scalar() or 0
        payments_this_month = float(paid)

        workers = db.query(Worker).filter(Worker.status == "active").all()
        attendance_by_worker = defaultdict(list)
        for row in db.query(Attendance).all():
            attendance_by_worker[row.worker_id].append(row)
        payments_by_worker = defaultdict(list)
        for row in db.query(Payment).all():
            payments_by_worker[row.worker_id].append(row)
        ranked = rank_workers(workers, attendance_by_worker, payments_by_worker, RatingVariant.dashboard)
        top_workers = [r.to_dict() for r in ranked[:top]]

    return {
        "workers_total": workers_total,
        "workers_active": workers_active,
        "present_today": present_today,
        "active_projects": active_projects,
        "payments_this_month": payments_this_month,
        "top_workers": top_workers,
        "generated_at": datetime.now(timezone.utc).isoformat()
    }


@router.get("/recent")
async def get_dashboard_recent(
    limit: int = Query(10, ge=1, le=50),
    auth: SecureAuth = Depends(require_foreman),
    db: Session = Depends(get_db)
):
    """
    Latest audit entries as an activity feed.

    Returns array of { id, action, table_name, record_id, user_id, created_at }
    """
    items = db.query(AuditLog).order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).limit(limit).all()
    return [
        {
            "id": item.id,
            "action": item.action,
            "table_name": item.table_name,
            "record_id": item.record_id,
            "user_id": item.user_id,
            "created_at": item.timestamp.isoformat() if item.timestamp else None
        }
        for item in items
    ]
