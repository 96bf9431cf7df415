"""Derived worker rating: attendance and payroll reconciliation → 0-100 score + badge.

Two weightings exist. DASHBOARD is the ranking-table formula, DETAIL is
the one shown on a single worker's card. Both are pure functions of the
rows passed in.
"""
from dataclasses import asdict, dataclass
from decimal import Decimal
from enum import Enum
from typing import Iterable, Sequence


class RatingVariant(str, Enum):
    dashboard = "dashboard"
    detail = "detail"


# (excellent, good, average) lower bounds
BADGE_THRESHOLDS = {
    RatingVariant.dashboard: (90, 75, 60),
    RatingVariant.detail: (85, 70, 50),
}


@dataclass(frozen=True)
class WorkerRating:
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

    def to_dict(self) -> dict:
        return asdict(self)


def _num(value) -> float:
    return float(value) if value is not None else 0.0


def badge_for(score: float, variant: RatingVariant = RatingVariant.dashboard) -> str:
    excellent, good, average = BADGE_THRESHOLDS[RatingVariant(variant)]
    if score >= excellent:
        return "excellent"
    if score >= good:
        return "good"
    if score >= average:
        return "average"
    return "needs_improvement"


def count_present_days(attendance: Iterable) -> int:
    return sum(1 for row in attendance if row.status == "present")


def outstanding_balance(worker, attendance: Sequence, payments: Sequence) -> Decimal:
    """present-days × daily_rate − Σ payments; computed, never stored."""
    earned = Decimal(count_present_days(attendance)) * Decimal(str(worker.daily_rate or 0))
    paid = sum((Decimal(str(p.amount)) for p in payments), Decimal("0"))
    return earned - paid


def calculate_worker_rating(
    worker,
    attendance: Sequence,
    payments: Sequence,
    variant: RatingVariant = RatingVariant.dashboard,
) -> WorkerRating:
    variant = RatingVariant(variant)
    total_rows = len(attendance)
    present_days = count_present_days(attendance)

    attendance_rate = present_days / total_rows * 100 if total_rows else 0.0
    total_earned = present_days * _num(worker.daily_rate)
    total_paid = sum(_num(p.amount) for p in payments)

    reliability = min(attendance_rate, 100.0)
    payment_ratio = total_paid / total_earned * 100 if total_earned > 0 else 0.0
    capped_ratio = min(payment_ratio, 100.0)

    if variant is RatingVariant.detail:
        performance = (reliability + capped_ratio) / 2
        overall = (attendance_rate + performance) / 2
    else:
        performance = reliability * 0.7 + capped_ratio * 0.3
        overall = reliability * 0.6 + performance * 0.4

    return WorkerRating(
        worker_id=worker.id,
        full_name=worker.full_name,
        overall_rating=round(overall, 1),
        attendance_rate=round(attendance_rate, 1),
        work_days=present_days,
        total_earned=round(total_earned, 2),
        total_paid=round(total_paid, 2),
        reliability=round(reliability, 1),
        performance=round(performance, 1),
        badge=badge_for(overall, variant),
    )


def rank_workers(
    workers: Iterable,
    attendance_by_worker: dict,
    payments_by_worker: dict,
    variant: RatingVariant = RatingVariant.dashboard,
) -> list[WorkerRating]:
    """Ratings for every worker, best first."""
    ratings = [
        calculate_worker_rating(
            worker,
            attendance_by_worker.get(worker.id, []),
            payments_by_worker.get(worker.id, []),
            variant,
        )
        for worker in workers
    ]
    return sorted(ratings, key=lambda r: r.overall_rating, reverse=True)
