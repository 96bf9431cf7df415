"""Attendance endpoints: one record per (worker, date), written by upsert."""
import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from api.db import get_db
from api.deps_auth import SecureAuth, require_admin, require_foreman
from api.endpoints_workers import get_worker_or_404
from api.models import Attendance, Project
from api.schemas_workers import AttendanceOut, AttendanceUpsertIn
from api.utils.audit import model_to_dict, write_audit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/attendance", tags=["attendance"])

DEFAULT_HOURS = 8


def upsert_attendance(
    db: Session,
    worker_id: int,
    day: date,
    status: str,
    hours_worked: Optional[float] = DEFAULT_HOURS,
    project_id: Optional[int] = None,
    notes: Optional[str] = None,
) -> Attendance:
    """Insert or overwrite the (worker_id, day) row. Caller commits."""
    record = db.query(Attendance).filter(
        Attendance.worker_id == worker_id,
        Attendance.date == day
    ).first()

    if record is None:
        record = Attendance(worker_id=worker_id, date=day)
        db.add(record)

    record.status = status
    record.hours_worked = hours_worked if hours_worked is not None else DEFAULT_HOURS
    record.project_id = project_id
    record.notes = notes
    db.flush()
    return record


@router.get("", response_model=list[AttendanceOut])
async def list_attendance(
    worker_id: Optional[int] = Query(None),
    on_date: Optional[date] = Query(None, alias="date"),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    auth: SecureAuth = Depends(require_foreman),
    db: Session = Depends(get_db)
):
    query = db.query(Attendance)
    if worker_id is not None:
        query = query.filter(Attendance.worker_id == worker_id)
    if on_date is not None:
        query = query.filter(Attendance.date == on_date)
    if date_from is not None:
        query = query.filter(Attendance.date >= date_from)
    if date_to is not None:
        query = query.filter(Attendance.date <= date_to)
    return query.order_by(Attendance.date.desc(), Attendance.worker_id).all()


@router.put("", response_model=AttendanceOut)
async def put_attendance(
    data: AttendanceUpsertIn,
    auth: SecureAuth = Depends(require_foreman),
    db: Session = Depends(get_db)
):
    """Upsert keyed on (worker_id, date): a second write replaces the first."""
    get_worker_or_404(db, data.worker_id)
    if data.project_id is not None and not db.query(Project).filter(Project.id == data.project_id).first():
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Project not found"
        )

    record = upsert_attendance(
        db,
        worker_id=data.worker_id,
        day=data.date,
        status=data.status,
        hours_worked=data.hours_worked,
        project_id=data.project_id,
        notes=data.notes,
    )
    write_audit(db, "ATTENDANCE_UPSERT", auth.user_id, "attendance", record.id, new_values=model_to_dict(record))
    db.commit()
    db.refresh(record)
    return record


@router.delete("/{attendance_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_attendance(
    attendance_id: int,
    auth: SecureAuth = Depends(require_admin),
    db: Session = Depends(get_db)
):
    record = db.query(Attendance).filter(Attendance.id == attendance_id).first()
    if not record:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Attendance record not found"
        )
    write_audit(db, "ATTENDANCE_DELETE", auth.user_id, "attendance", record.id, old_values=model_to_dict(record))
    db.delete(record)
    db.commit()
    return None
