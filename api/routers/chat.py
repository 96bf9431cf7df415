"""
Chat router: AI assistant relay.
Web UI → API (role filter) → LLM vendor

The prompt is checked against the caller's AI context before any vendor
is contacted. OpenAI-compatible vendors may answer with tool calls; each
call is executed only if the caller's role allows that tool.
"""
import json
import logging
from datetime import date
from decimal import Decimal, InvalidOperation

import httpx
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session, joinedload

from api import llm_client
from api.ai_context import AIContext, filter_prompt, system_prompt
from api.config import settings
from api.db import get_db
from api.deps_auth import SecureAuth, get_secure_auth
from api.endpoints_attendance import DEFAULT_HOURS, upsert_attendance
from api.models import ATTENDANCE_STATUSES, Payment, Project, Worker, WorkerAssignment
from api.roles import Role
from api.schemas_ai import ChatQueryIn, ChatQueryOut
from api.utils.audit import model_to_dict, record_metric, write_audit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat", tags=["chat"])

NO_PROVIDER_MESSAGE = "ИИ провайдеры не настроены."
NO_KEY_MESSAGE = "API ключ не настроен для выбранного провайдера."
EMPTY_ANSWER = "Не удалось получить ответ от ИИ."
CHAT_MAX_TOKENS = 1500

TOOL_ROLES = {
    "create_worker": Role.admin,
    "record_attendance": Role.foreman,
    "create_payment": Role.admin,
}

TOOLS = [
    {
        "type": "function",
        "function": {
            "name": "create_worker",
            "description": "Создать нового работника в системе",
            "parameters": {
                "type": "object",
                "properties": {
                    "full_name": {"type": "string", "description": "Полное имя работника"},
                    "position": {"type": "string", "description": "Должность"},
                    "phone": {"type": "string", "description": "Номер телефона"},
                    "daily_rate": {"type": "number", "description": "Дневная ставка"},
                    "notes": {"type": "string", "description": "Дополнительные заметки"},
                },
                "required": ["full_name"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "record_attendance",
            "description": "Записать посещаемость работника",
            "parameters": {
                "type": "object",
                "properties": {
                    "worker_id": {"type": "integer", "description": "ID работника"},
                    "date": {"type": "string", "format": "date", "description": "Дата в формате YYYY-MM-DD"},
                    "status": {"type": "string", "enum": list(ATTENDANCE_STATUSES)},
                    "hours_worked": {"type": "number", "description": "Количество отработанных часов"},
                    "notes": {"type": "string", "description": "Заметки"},
                },
                "required": ["worker_id", "date", "status"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "create_payment",
            "description": "Создать платеж работнику",
            "parameters": {
                "type": "object",
                "properties": {
                    "worker_id": {"type": "integer", "description": "ID работника"},
                    "amount": {"type": "number", "description": "Сумма платежа"},
                    "date": {"type": "string", "format": "date", "description": "Дата платежа"},
                    "description": {"type": "string", "description": "Описание платежа"},
                },
                "required": ["worker_id", "amount", "date"],
            },
        },
    },
]


def allowed_tools(auth: SecureAuth) -> list:
    return [t for t in TOOLS if auth.role_set.satisfies(TOOL_ROLES[t["function"]["name"]])]


def make_preview(text: str, limit: int = None):
    """(truncated, preview): first `limit` chars plus "..." when longer."""
    limit = limit or settings.CHAT_PREVIEW_CHARS
    if len(text) > limit:
        return True, text[:limit] + "..."
    return False, text


def build_data_snapshot(db: Session, context: AIContext) -> dict:
    """Database extract limited to what the role may see."""
    data = {}
    if context.can_access_worker_data:
        workers = db.query(Worker).order_by(Worker.full_name).all()
        data["workers"] = [
            {
                "id": w.id,
                "full_name": w.full_name,
                "position": w.position,
                "status": w.status,
                **({"daily_rate": float(w.daily_rate or 0)} if context.can_access_financials else {}),
            }
            for w in workers
        ]
    if context.can_access_project_data:
        projects = db.query(Project).options(joinedload(Project.client)).all()
        data["projects"] = [
            {
                "id": p.id,
                "name": p.name,
                "status": p.status,
                "progress": p.progress_percentage,
                "client": p.client.name if p.client else None,
                **({"budget": float(p.budget or 0), "actual_cost": float(p.actual_cost or 0)}
                   if context.can_access_financials else {}),
            }
            for p in projects
        ]
        assignments = (
            db.query(WorkerAssignment)
            .options(joinedload(WorkerAssignment.worker), joinedload(WorkerAssignment.project))
            .filter(WorkerAssignment.end_date.is_(None))
            .all()
        )
        data["assignments"] = [
            {"worker": a.worker.full_name, "project": a.project.name, "role": a.role,
             "start_date": a.start_date.isoformat() if a.start_date else None}
            for a in assignments
        ]
    if context.can_access_financials:
        payments = db.query(Payment).order_by(Payment.date.desc()).limit(50).all()
        data["payments"] = [
            {"worker_id": p.worker_id, "date": p.date.isoformat(), "amount": float(p.amount),
             "description": p.description}
            for p in payments
        ]
    return data


def _parse_date(value) -> date:
    if not value:
        return date.today()
    return date.fromisoformat(str(value))


def execute_tool(db: Session, auth: SecureAuth, name: str, args: dict) -> dict:
    """Run one tool call; returns {success, message} or {success: False, error}."""
    required = TOOL_ROLES.get(name)
    if required is None:
        return {"success": False, "error": f"Неизвестная функция: {name}"}
    if not auth.role_set.satisfies(required):
        return {"success": False, "error": f"Недостаточно прав для {name}"}

    try:
        if name == "create_worker":
            if not args.get("full_name"):
                return {"success": False, "error": "Не указано имя работника"}
            worker = Worker(
                full_name=args["full_name"],
                position=args.get("position"),
                phone=args.get("phone"),
                daily_rate=Decimal(str(args.get("daily_rate") or 0)),
                notes=args.get("notes"),
            )
            db.add(worker)
            db.flush()
            write_audit(db, "AI_CREATE_WORKER", auth.user_id, "workers", worker.id, new_values=model_to_dict(worker))
            db.commit()
            return {"success": True, "message": f"Работник {worker.full_name} создан (ID {worker.id})"}

        worker = db.query(Worker).filter(Worker.id == int(args.get("worker_id"))).first()
        if worker is None:
            return {"success": False, "error": f"Работник {args.get('worker_id')} не найден"}

        if name == "record_attendance":
            att_status = args.get("status")
            if att_status not in ATTENDANCE_STATUSES:
                return {"success": False, "error": f"Неверный статус: {att_status}"}
            record = upsert_attendance(
                db, worker.id, _parse_date(args.get("date")), att_status,
                hours_worked=args.get("hours_worked") or DEFAULT_HOURS,
                notes=args.get("notes"),
            )
            write_audit(db, "AI_RECORD_ATTENDANCE", auth.user_id, "attendance", record.id,
                        new_values=model_to_dict(record))
            db.commit()
            return {"success": True, "message": f"Посещаемость {worker.full_name}: {att_status}"}

        # create_payment
        amount = Decimal(str(args.get("amount")))
        if amount <= 0:
            return {"success": False, "error": "Сумма должна быть больше нуля"}
        payment = Payment(
            worker_id=worker.id,
            date=_parse_date(args.get("date")),
            amount=amount,
            description=args.get("description"),
        )
        db.add(payment)
        db.flush()
        write_audit(db, "AI_CREATE_PAYMENT", auth.user_id, "payments", payment.id, new_values=model_to_dict(payment))
        db.commit()
        return {"success": True, "message": f"Платеж {amount} руб. для {worker.full_name} создан"}

    except (TypeError, ValueError, InvalidOperation) as e:
        db.rollback()
        return {"success": False, "error": f"Ошибка выполнения {name}: {e}"}


def _answer(text: str, provider=None, model=None) -> ChatQueryOut:
    truncated, preview = make_preview(text)
    return ChatQueryOut(response=text, truncated=truncated, preview=preview, provider=provider, model=model)


@router.post("/query", response_model=ChatQueryOut)
async def chat_query(
    req: ChatQueryIn,
    auth: SecureAuth = Depends(get_secure_auth),
    db: Session = Depends(get_db)
):
    """
    Relay a question to the highest-priority active AI provider.

    A prompt rejected by the role filter returns `filtered: true` and
    never reaches a vendor. The client-supplied systemPrompt and context
    pass the same filter.
    """
    context = auth.ai_context
    extra_json = json.dumps(req.context, ensure_ascii=False, default=str) if req.context else ""
    verdict = filter_prompt(context, req.prompt, authenticated=auth.is_authenticated)
    extra_text = "\n".join(part for part in (req.system_prompt, extra_json) if part)
    if verdict.allowed and extra_text:
        extra_verdict = filter_prompt(context, extra_text, authenticated=auth.is_authenticated)
        if not extra_verdict.allowed:
            verdict = extra_verdict
    if not verdict.allowed:
        record_metric("llm.chat", {"role": context.role.value, "terms": list(verdict.restricted_terms)},
                      outcome="filtered")
        return ChatQueryOut(
            response=verdict.reason,
            filtered=True,
            preview=verdict.reason,
            restricted_terms=list(verdict.restricted_terms),
        )

    provider = llm_client.pick_provider(db)
    if provider is None:
        return _answer(NO_PROVIDER_MESSAGE)

    try:
        target = llm_client.ProviderTarget.from_provider(provider)
    except llm_client.ProviderConfigError as e:
        logger.warning(f"Provider {provider.id} not callable: {e}")
        return _answer(NO_KEY_MESSAGE, provider=provider.provider_type)

    snapshot = build_data_snapshot(db, context)
    user_content = verdict.filtered_prompt
    if snapshot:
        user_content += "\n\nДАННЫЕ:\n" + json.dumps(snapshot, ensure_ascii=False, default=str)
    if extra_json:
        user_content += "\n\nКОНТЕКСТ:\n" + extra_json

    messages = [
        {"role": "system", "content": system_prompt(context, req.system_prompt or "")},
        {"role": "user", "content": user_content},
    ]

    try:
        result = await llm_client.chat(target, messages, max_tokens=CHAT_MAX_TOKENS, tools=allowed_tools(auth) or None)
    except httpx.HTTPStatusError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"AI provider error: {e.response.status_code}"
        )
    except llm_client.ProviderResponseError as e:
        logger.warning(f"Provider {provider.id} returned an unreadable answer: {e}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="AI provider error: invalid response body"
        )
    except httpx.RequestError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"AI provider unavailable: {str(e)}"
        )

    text = result.text
    if result.tool_calls:
        lines = []
        for call in result.tool_calls:
            outcome = execute_tool(db, auth, call.name, call.arguments)
            lines.append(f"{call.name}: {outcome.get('message') or outcome.get('error')}")
        text = f"{text or 'Операция выполнена'}\n\nРезультаты операций:\n" + "\n".join(lines)

    return _answer(text or EMPTY_ANSWER, provider=result.provider, model=result.model)
