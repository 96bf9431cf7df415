"""Project analytics and AI worker recommendations for one project."""
import json
import logging
from collections import defaultdict
from datetime import date
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, Query
from sqlalchemy import or_
from sqlalchemy.orm import Session, joinedload

from api import llm_client
from api.db import get_db
from api.deps_auth import SecureAuth, require_admin, require_foreman
from api.endpoints_projects import get_project_or_404
from api.models import (
    Attendance,
    Certification,
    Project,
    ProjectExpense,
    ProjectTask,
    Worker,
    WorkerAssignment,
    WorkerSkill,
)
from api.schemas_projects import RecommendationsIn

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/projects", tags=["analytics"])

INSIGHTS_SYSTEM_PROMPT = (
    "Ты эксперт по анализу строительных проектов. "
    "Анализируй данные и давай практические рекомендации."
)
RECOMMENDATIONS_SYSTEM_PROMPT = (
    "Ты эксперт по управлению строительными проектами. "
    "Анализируй данные работников и давай рекомендации по их назначению на проекты."
)

HIGHLY_RECOMMENDED_SCORE = 50
RECOMMENDED_SCORE = 25
CERTIFIED_BONUS = 15
AVAILABILITY_BONUS = 30
MAX_RECOMMENDATIONS = 10


def _pct(part: float, whole: float) -> float:
    return round(part / whole * 100, 1) if whole else 0.0


def budget_risk(total_cost: float, budget: float) -> str:
    if total_cost > budget * 0.8:
        return "high"
    if total_cost > budget * 0.6:
        return "medium"
    return "low"


def compute_project_analytics(
    project: Project,
    expenses: list,
    attendance: list,
    tasks: list,
    active_assignments: list,
    today: Optional[date] = None,
) -> dict:
    """
    Pure calculation over already-loaded rows.

    Labor cost counts present days only: daily_rate × hours / 8.
    """
    today = today or date.today()
    budget = float(project.budget or 0)

    total_expenses = sum(float(e.amount) for e in expenses)
    by_category = defaultdict(float)
    for e in expenses:
        by_category[e.category.name if e.category else "Other"] += float(e.amount)

    per_worker = {}
    labor_cost = 0.0
    for record in attendance:
        if record.status != "present":
            continue
        hours = record.hours_worked or 8
        cost = float(record.worker.daily_rate or 0) * hours / 8
        labor_cost += cost
        stats = per_worker.setdefault(record.worker.full_name, {"hours": 0.0, "cost": 0.0, "days": 0})
        stats["hours"] += hours
        stats["cost"] = round(stats["cost"] + cost, 2)
        stats["days"] += 1

    total_cost = total_expenses + labor_cost
    cost_overrun = _pct(total_cost - budget, budget) if total_cost > budget else 0.0

    completed = sum(1 for t in tasks if t.status == "completed")
    estimated = sum(t.estimated_hours or 0 for t in tasks)
    actual = sum(t.actual_hours or 0 for t in tasks)

    duration = None
    days_elapsed = None
    if project.start_date:
        duration = ((project.end_date or today) - project.start_date).days
        days_elapsed = max((today - project.start_date).days, 0)
    days_remaining = (project.end_date - today).days if project.end_date else None
    progress = project.progress_percentage or 0

    assigned_workers = {a.worker_id for a in active_assignments}

    return {
        "financial": {
            "budget": budget,
            "total_expenses": round(total_expenses, 2),
            "labor_cost": round(labor_cost, 2),
            "total_cost": round(total_cost, 2),
            "profit_margin": _pct(budget - total_cost, budget),
            "cost_overrun": cost_overrun,
            "expenses_by_category": {k: round(v, 2) for k, v in by_category.items()},
        },
        "performance": {
            "completed_tasks": completed,
            "total_tasks": len(tasks),
            "task_completion_rate": _pct(completed, len(tasks)),
            "time_efficiency": _pct(estimated, actual),
            "worker_performance": per_worker,
        },
        "timeline": {
            "start_date": project.start_date.isoformat() if project.start_date else None,
            "end_date": project.end_date.isoformat() if project.end_date else None,
            "duration_days": duration,
            "days_elapsed": days_elapsed,
            "days_remaining": days_remaining,
            "progress_percentage": progress,
        },
        "risks": {
            "budget_risk": budget_risk(total_cost, budget),
            "timeline_risk": "high" if progress < 50 and (duration or 0) > 30 else "low",
            "resource_risk": "high" if len(assigned_workers) < 2 else "low",
        },
    }


async def _ask_llm(db: Session, system: str, prompt: str, max_tokens: int, intent: str) -> Optional[str]:
    """Narrative from the active LLM; any failure yields None."""
    provider = llm_client.pick_provider(db)
    if provider is None:
        return None
    try:
        target = llm_client.ProviderTarget.from_provider(provider)
    except llm_client.ProviderConfigError as e:
        logger.warning(f"{intent} skipped: {e}")
        return None

    try:
        result = await llm_client.chat(
            target,
            [{"role": "system", "content": system}, {"role": "user", "content": prompt}],
            max_tokens=max_tokens,
            intent=intent,
        )
    except (httpx.HTTPStatusError, httpx.RequestError, llm_client.ProviderResponseError) as e:
        logger.warning(f"{intent} failed: {llm_client.describe_error(e)}")
        return None
    return result.text or None


async def generate_insights(db: Session, project: Project, analytics: dict) -> Optional[str]:
    fin, perf, timeline = analytics["financial"], analytics["performance"], analytics["timeline"]
    prompt = (
        f"Проект: {project.name}\n"
        f"Бюджет: {fin['budget']} руб.\n"
        f"Потрачено: {fin['total_cost']} руб.\n"
        f"Рентабельность: {fin['profit_margin']}%\n"
        f"Выполнено задач: {perf['task_completion_rate']}%\n"
        f"Эффективность времени: {perf['time_efficiency']}%\n"
        f"Прогресс: {timeline['progress_percentage']}%\n"
        f"Длительность: {timeline['duration_days']} дней\n\n"
        "Дай анализ проекта и рекомендации по оптимизации."
    )
    return await _ask_llm(db, INSIGHTS_SYSTEM_PROMPT, prompt, 600, "project_insights")


@router.get("/{project_id}/analytics")
async def get_project_analytics(
    project_id: int,
    include_insights: bool = Query(False),
    auth: SecureAuth = Depends(require_admin),
    db: Session = Depends(get_db)
):
    project = get_project_or_404(db, project_id)

    expenses = (
        db.query(ProjectExpense)
        .options(joinedload(ProjectExpense.category))
        .filter(ProjectExpense.project_id == project_id)
        .all()
    )
    attendance = (
        db.query(Attendance)
        .options(joinedload(Attendance.worker))
        .filter(Attendance.project_id == project_id)
        .all()
    )
    tasks = db.query(ProjectTask).filter(ProjectTask.project_id == project_id).all()
    assignments = db.query(WorkerAssignment).filter(
        WorkerAssignment.project_id == project_id,
        WorkerAssignment.end_date.is_(None)
    ).all()

    analytics = compute_project_analytics(project, expenses, attendance, tasks, assignments)
    analytics["insights"] = await generate_insights(db, project, analytics) if include_insights else None

    return {
        "project": {"id": project.id, "name": project.name, "status": project.status},
        "analytics": analytics,
    }


def skill_matches(skill_name: Optional[str], required_skills: list) -> bool:
    """Case-insensitive: the skill name appears inside one of the required names."""
    if not required_skills:
        return True
    name = (skill_name or "").strip().lower()
    return bool(name) and any(name in required.lower() for required in required_skills)


def recommendation_label(score: int) -> str:
    if score > HIGHLY_RECOMMENDED_SCORE:
        return "highly_recommended"
    if score > RECOMMENDED_SCORE:
        return "recommended"
    return "available"


def score_worker(worker_skills: list, required_skills: list, is_available: bool,
                 certification_names: tuple = ()) -> dict:
    """
    Score one worker against the requested skills.

    Each matching skill adds level × 20 + years_experience × 5, plus 15
    when the skill is certified (flag on the skill row, or an active
    certification whose name mentions the skill). A worker with no open
    assignment gets 30 more.
    """
    score = 0
    matched = []
    total_level = 0
    cert_names = [c.lower() for c in certification_names]
    for ws in worker_skills:
        name = ws.skill.name if ws.skill is not None else None
        if name is None or not skill_matches(name, required_skills):
            continue
        level = ws.level or 1
        certified = bool(ws.certified) or any(name.lower() in c for c in cert_names)
        score += level * 20 + (ws.years_experience or 0) * 5 + (CERTIFIED_BONUS if certified else 0)
        total_level += level
        matched.append(name)

    if is_available:
        score += AVAILABILITY_BONUS

    return {
        "score": score,
        "skill_matches": len(matched),
        "matched_skills": matched,
        "avg_skill_level": round(total_level / len(matched), 2) if matched else 0.0,
        "is_available": is_available,
        "recommendation": recommendation_label(score),
    }


def rank_candidates(workers: list, skills_by_worker: dict, certs_by_worker: dict,
                    busy_ids: set, required_skills: list) -> list:
    """Scored workers, best first; drops busy workers that match nothing."""
    ranked = []
    for worker in workers:
        scored = score_worker(
            skills_by_worker.get(worker.id, []),
            required_skills,
            worker.id not in busy_ids,
            tuple(certs_by_worker.get(worker.id, ())),
        )
        if scored["score"] <= 0 and not scored["is_available"]:
            continue
        ranked.append({"worker_id": worker.id, "full_name": worker.full_name,
                       "position": worker.position, **scored})
    ranked.sort(key=lambda r: (-r["score"], r["full_name"]))
    return ranked


async def generate_recommendation_insights(db: Session, project: Project, required_skills: list,
                                           ranked: list) -> Optional[str]:
    top = [
        {k: r[k] for k in ("full_name", "position", "score", "matched_skills", "is_available", "recommendation")}
        for r in ranked[:5]
    ]
    prompt = (
        f"Проект: {project.name}\n"
        f"Описание: {project.description or '-'}\n"
        f"Требуемые навыки: {', '.join(required_skills) or 'любые'}\n"
        f"Топ работники: {json.dumps(top, ensure_ascii=False, indent=2)}\n\n"
        "Дай краткие рекомендации по назначению работников и потенциальным рискам."
    )
    return await _ask_llm(db, RECOMMENDATIONS_SYSTEM_PROMPT, prompt, 500, "worker_recommendations")


@router.post("/{project_id}/recommendations")
async def recommend_workers(
    project_id: int,
    req: Optional[RecommendationsIn] = None,
    auth: SecureAuth = Depends(require_foreman),
    db: Session = Depends(get_db)
):
    """
    Rank active workers for a project by skill match and availability.

    Returns the top 10 with a label per worker, headline counts and an
    optional LLM narrative (null when no provider answers).
    """
    req = req or RecommendationsIn()
    project = get_project_or_404(db, project_id)
    required = [s.strip() for s in req.required_skills if s.strip()]

    workers = db.query(Worker).filter(Worker.status == "active").order_by(Worker.full_name).all()
    worker_ids = [w.id for w in workers]

    skills_by_worker = defaultdict(list)
    certs_by_worker = defaultdict(list)
    busy_ids = set()
    if worker_ids:
        for ws in (
            db.query(WorkerSkill)
            .options(joinedload(WorkerSkill.skill))
            .filter(WorkerSkill.worker_id.in_(worker_ids))
            .all()
        ):
            skills_by_worker[ws.worker_id].append(ws)

        today = date.today()
        for cert in db.query(Certification).filter(
            Certification.worker_id.in_(worker_ids),
            Certification.status == "active",
            or_(Certification.expiration_date.is_(None), Certification.expiration_date >= today),
        ).all():
            certs_by_worker[cert.worker_id].append(cert.name)

        busy_ids = {
            row.worker_id for row in db.query(WorkerAssignment.worker_id).filter(
                WorkerAssignment.worker_id.in_(worker_ids),
                WorkerAssignment.end_date.is_(None),
            ).all()
        }

    ranked = rank_candidates(workers, skills_by_worker, certs_by_worker, busy_ids, required)
    logger.info(f"Recommendations for project {project_id} by user {auth.user_id}: "
                f"{len(ranked)} candidate(s), skills={required}")

    insights = None
    if req.include_insights and ranked:
        insights = await generate_recommendation_insights(db, project, required, ranked)

    return {
        "project": {"id": project.id, "name": project.name, "status": project.status},
        "required_skills": required,
        "recommendations": ranked[:MAX_RECOMMENDATIONS],
        "insights": insights,
        "stats": {
            "total_workers": len(workers),
            "available_workers": sum(1 for r in ranked if r["is_available"]),
            "highly_recommended": sum(1 for r in ranked if r["recommendation"] == "highly_recommended"),
        },
    }
