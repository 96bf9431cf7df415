"""Outbound notifications: Telegram messages and the notification log.

Telegram goes through an aiogram `Bot` with HTML parse mode. Every
attempt, sent or failed, is written to `notifications_log` by the
caller via `log_notification`.
"""
import html
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import InvalidOperation
from typing import Any, Optional

from aiogram import Bot
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from sqlalchemy.orm import Session

from api import crud_users
from api.config import settings
from api.models import NotificationLog
from api.utils.audit import record_metric
from api.utils.money import fmt_money

logger = logging.getLogger(__name__)


class TelegramNotConfigured(Exception):
    """TELEGRAM_BOT_TOKEN (or a target chat) is missing."""


@asynccontextmanager
async def telegram_bot():
    """Short-lived Bot whose HTTP session is closed on exit."""
    if not settings.TELEGRAM_BOT_TOKEN:
        raise TelegramNotConfigured("Telegram bot token not configured")
    bot = Bot(token=settings.TELEGRAM_BOT_TOKEN, default=DefaultBotProperties(parse_mode=ParseMode.HTML))
    try:
        yield bot
    finally:
        await bot.session.close()


async def send_message(chat_id, text: str) -> int:
    """Send an HTML message; returns Telegram's message_id. aiogram errors propagate."""
    async with telegram_bot() as bot:
        message = await bot.send_message(chat_id=chat_id, text=text)
    record_metric("telegram.send", {"chat_id": str(chat_id), "chars": len(text)}, outcome="ok")
    return message.message_id


async def download_file(file_id: str) -> bytes:
    """Fetch a Telegram file (photo, voice) into memory."""
    async with telegram_bot() as bot:
        buffer = await bot.download(file_id)
    return buffer.getvalue() if buffer is not None else b""


def log_notification(
    db: Session,
    type: str,
    recipient: Any,
    message: str,
    status: str = "sent",
    meta: Optional[dict] = None,
) -> NotificationLog:
    """Stage a notification log row; the caller commits."""
    row = NotificationLog(
        type=type,
        recipient=str(recipient),
        message=message,
        status=status,
        meta=meta,
        sent_at=datetime.now(timezone.utc) if status == "sent" else None,
    )
    db.add(row)
    return row


def notify_admins(db: Session, type: str, message: str, meta: Optional[dict] = None) -> int:
    """In-app notification for every active admin. Returns how many were logged."""
    admins = crud_users.active_admins(db)
    for admin in admins:
        log_notification(db, type, admin.id, message, status="pending", meta=meta)
    return len(admins)


# --- Message templates ---

def esc(value: Any, default: str = "-") -> str:
    if value is None or value == "":
        return default
    return html.escape(str(value))


def _money(value: Any) -> str:
    try:
        return fmt_money(value)
    except (TypeError, ValueError, InvalidOperation):
        return f"{esc(value)} руб."


def _project_status_update(d: dict) -> str:
    return (
        "🏗️ <b>Обновление проекта</b>\n\n"
        f"Проект: {esc(d.get('projectName'))}\n"
        f"Статус: {esc(d.get('status'))}\n"
        f"Прогресс: {esc(d.get('progress'), '0')}%\n"
        f"Бюджет: {_money(d.get('budget'))}\n"
        f"Потрачено: {_money(d.get('spent'))}"
    )


def _attendance_reminder(d: dict) -> str:
    absent = d.get("absentWorkers")
    if absent is not None:
        names = ", ".join(esc(n) for n in absent) or "Все отмечены"
        return f"⏰ <b>Напоминание о посещаемости</b>\n\nСегодня не отмечены: {names}"
    return (
        "⏰ <b>Напоминание о посещаемости</b>\n\n"
        f"Привет, {esc(d.get('workerName'))}!\n"
        f"Не забудь отметиться на объекте \"{esc(d.get('projectName'))}\"\n"
        f"Время: {esc(d.get('time'))}"
    )


def _expense_added(d: dict) -> str:
    return (
        "💰 <b>Новый расход</b>\n\n"
        f"Категория: {esc(d.get('category'))}\n"
        f"Сумма: {_money(d.get('amount'))}\n"
        f"Проект: {esc(d.get('projectName'))}\n"
        f"Дата: {esc(d.get('date'))}"
    )


def _task_assigned(d: dict) -> str:
    return (
        "📋 <b>Новая задача</b>\n\n"
        f"Задача: {esc(d.get('taskTitle'))}\n"
        f"Проект: {esc(d.get('projectName'))}\n"
        f"Исполнитель: {esc(d.get('workerName'))}\n"
        f"Срок: {esc(d.get('dueDate'))}"
    )


def _budget_alert(d: dict) -> str:
    return (
        "⚠️ <b>Предупреждение о бюджете</b>\n\n"
        f"Проект: {esc(d.get('projectName'))}\n"
        f"Превышение бюджета: {esc(d.get('overrun'), '0')}%\n"
        f"Лимит: {_money(d.get('budget'))}\n"
        f"Потрачено: {_money(d.get('spent'))}"
    )


def _daily_report(d: dict) -> str:
    return (
        "📊 <b>Ежедневный отчет</b>\n\n"
        f"Активных проектов: {esc(d.get('activeProjects'), '0')}\n"
        f"Работников на объектах: {esc(d.get('workersOnSite'), '0')}\n"
        f"Расходы за день: {_money(d.get('dailyExpenses'))}\n"
        f"Выполненных задач: {esc(d.get('completedTasks'), '0')}"
    )


def _payment_processed(d: dict) -> str:
    return (
        "💰 <b>Обработан платеж</b>\n\n"
        f"Сумма: {_money(d.get('amount'))}\n"
        f"Работник: {esc(d.get('workerName'))}"
    )


def _security_alert(d: dict) -> str:
    now = datetime.now().strftime("%d.%m.%Y %H:%M:%S")
    return f"🚨 <b>Оповещение безопасности</b>\n\n{esc(d.get('alertMessage'))}\nВремя: {now}"


TEMPLATES = {
    "project_status_update": _project_status_update,
    "attendance_reminder": _attendance_reminder,
    "expense_added": _expense_added,
    "task_assigned": _task_assigned,
    "budget_alert": _budget_alert,
    "daily_report": _daily_report,
    "payment_processed": _payment_processed,
    "security_alert": _security_alert,
}


def render_notification(action: str, data: dict) -> str:
    """Render a template; unknown actions raise KeyError."""
    if action not in TEMPLATES:
        raise KeyError(action)
    return TEMPLATES[action](data or {})
