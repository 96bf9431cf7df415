"""Report export endpoints (CSV / JSON)."""
import csv
import io
import logging
from collections import OrderedDict
from datetime import date, datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.orm import Session, joinedload

from api.db import get_db
from api.deps_auth import SecureAuth, require_admin
from api.models import Attendance, Project, ProjectExpense
from api.schemas_ai import ReportExportIn, ReportFilters

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/reports", tags=["reports"])

DEFAULT_START_DATE = date(2024, 1, 1)
REPORT_FORMATS = ("csv", "json")


def _period(filters: ReportFilters):
    return filters.start_date or DEFAULT_START_DATE, filters.end_date or date.today()


def _num(value) -> float:
    return float(value) if value is not None else 0.0


def projects_financial(db: Session, filters: ReportFilters) -> list:
    """Одна строка на проект: бюджет, фактическая стоимость, прибыль, расходы."""
    query = db.query(Project).options(joinedload(Project.client))
    if filters.project_id is not None:
        query = query.filter(Project.id == filters.project_id)

    expenses = {}
    for expense in db.query(ProjectExpense).all():
        expenses[expense.project_id] = expenses.get(expense.project_id, 0.0) + _num(expense.amount)

    rows = []
    for p in query.order_by(Project.id).all():
        budget = _num(p.budget)
        actual = _num(p.actual_cost)
        rows.append({
            "Проект": p.name,
            "Клиент": p.client.name if p.client else "Не указан",
            "Бюджет": budget,
            "Фактическая стоимость": actual,
            "Прибыль": round(budget - actual, 2),
            "Рентабельность %": round((budget - actual) / budget * 100, 2) if budget else 0,
            "Прогресс %": p.progress_percentage or 0,
            "Статус": p.status,
            "Дата начала": p.start_date.isoformat() if p.start_date else "",
            "Дата окончания": p.end_date.isoformat() if p.end_date else "",
            "Общие расходы": round(expenses.get(p.id, 0.0), 2),
        })
    return rows


def workers_performance(db: Session, filters: ReportFilters) -> list:
    """
    Одна строка на работника за период (только дни со статусом present).

    Заработок за день = ставка × часы / 8.
    """
    start, end = _period(filters)
    query = (
        db.query(Attendance)
        .options(joinedload(Attendance.worker), joinedload(Attendance.project))
        .filter(Attendance.date >= start, Attendance.date <= end, Attendance.status == "present")
    )
    if filters.project_id is not None:
        query = query.filter(Attendance.project_id == filters.project_id)

    stats = OrderedDict()
    for record in query.order_by(Attendance.date, Attendance.id).all():
        worker = record.worker
        entry = stats.setdefault(worker.id, {
            "name": worker.full_name,
            "position": worker.position or "Не указана",
            "rate": _num(worker.daily_rate),
            "hours": 0.0,
            "days": 0,
            "projects": set(),
            "earnings": 0.0,
        })
        hours = record.hours_worked or 8
        entry["hours"] += hours
        entry["days"] += 1
        entry["projects"].add(record.project.name if record.project else None)
        entry["earnings"] += entry["rate"] * hours / 8

    return [
        {
            "Работник": s["name"],
            "Должность": s["position"],
            "Дневная ставка": s["rate"],
            "Общие часы": s["hours"],
            "Рабочие дни": s["days"],
            "Средние часы в день": round(s["hours"] / s["days"], 2),
            "Проекты": len(s["projects"] - {None}),
            "Общий заработок": round(s["earnings"], 2),
            "Средний дневной заработок": round(s["earnings"] / s["days"], 2),
        }
        for s in stats.values()
    ]


def expenses_breakdown(db: Session, filters: ReportFilters) -> list:
    """Расходы проектов за период с категориями."""
    start, end = _period(filters)
    query = (
        db.query(ProjectExpense)
        .options(joinedload(ProjectExpense.project), joinedload(ProjectExpense.category))
        .filter(ProjectExpense.date >= start, ProjectExpense.date <= end)
    )
    if filters.project_id is not None:
        query = query.filter(ProjectExpense.project_id == filters.project_id)

    return [
        {
            "Проект": e.project.name if e.project else "Не указан",
            "Категория": e.category.name if e.category else "Не указана",
            "Тип категории": e.category.type if e.category else "general",
            "Сумма": _num(e.amount),
            "Дата": e.date.isoformat(),
            "Описание": e.description or "",
        }
        for e in query.order_by(ProjectExpense.date, ProjectExpense.id).all()
    ]


REPORT_BUILDERS = {
    "projects_financial": (projects_financial, "financial_report"),
    "workers_performance": (workers_performance, "workers_performance"),
    "expenses_breakdown": (expenses_breakdown, "expenses_breakdown"),
}


def rows_to_csv(rows: list) -> str:
    """Header row from the first row's keys; quoting by the csv module."""
    output = io.StringIO()
    if not rows:
        return ""
    writer = csv.DictWriter(output, fieldnames=list(rows[0].keys()), quoting=csv.QUOTE_MINIMAL,
                            lineterminator="\n")
    writer.writeheader()
    writer.writerows(rows)
    return output.getvalue()


@router.post("/export")
async def export_report(
    req: ReportExportIn,
    auth: SecureAuth = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """
    Экспорт отчёта.

    Типы: projects_financial, workers_performance, expenses_breakdown.
    Форматы: csv (вложение) или json ({reportType, generatedAt, totalRecords, data}).
    Период по умолчанию: 2024-01-01 .. сегодня.
    """
    if req.report_type not in REPORT_BUILDERS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown report type: {req.report_type}"
        )
    if req.format not in REPORT_FORMATS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown format: {req.format}"
        )

    builder, prefix = REPORT_BUILDERS[req.report_type]
    rows = builder(db, req.filters)
    filename = f"{prefix}_{date.today().isoformat()}"
    logger.info(f"Report {req.report_type} ({req.format}): {len(rows)} rows for user_id={auth.user_id}")

    if req.format == "json":
        return JSONResponse(
            content={
                "reportType": req.report_type,
                "generatedAt": datetime.now(timezone.utc).isoformat(),
                "totalRecords": len(rows),
                "data": rows,
            },
            headers={"Content-Disposition": f'attachment; filename="{filename}.json"'},
        )

    return StreamingResponse(
        iter([rows_to_csv(rows)]),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}.csv"'},
    )
