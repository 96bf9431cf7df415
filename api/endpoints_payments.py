"""Payroll ledger endpoints (append-only)."""
import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from api.db import get_db
from api.deps_auth import SecureAuth, require_admin
from api.endpoints_workers import get_worker_or_404
from api.models import Payment
from api.schemas_workers import PaymentCreateIn, PaymentOut
from api.utils.audit import model_to_dict, write_audit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments", tags=["payments"])


@router.get("", response_model=list[PaymentOut])
async def list_payments(
    worker_id: Optional[int] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    auth: SecureAuth = Depends(require_admin),
    db: Session = Depends(get_db)
):
    query = db.query(Payment)
    if worker_id is not None:
        query = query.filter(Payment.worker_id == worker_id)
    if date_from is not None:
        query = query.filter(Payment.date >= date_from)
    if date_to is not None:
        query = query.filter(Payment.date <= date_to)
    return query.order_by(Payment.date.desc(), Payment.id.desc()).limit(limit).all()


@router.post("", response_model=PaymentOut, status_code=status.HTTP_201_CREATED)
async def create_payment(
    data: PaymentCreateIn,
    auth: SecureAuth = Depends(require_admin),
    db: Session = Depends(get_db)
):
    get_worker_or_404(db, data.worker_id)
    payment = Payment(**data.model_dump())
    db.add(payment)
    db.flush()
    write_audit(db, "PAYMENT_CREATE", auth.user_id, "payments", payment.id, new_values=model_to_dict(payment))
    db.commit()
    db.refresh(payment)
    logger.info(f"Payment {payment.id} ({payment.amount}) to worker {payment.worker_id}")
    return payment
