"""
Telegram command and action engine.

Shared by the webhook endpoint and the polling bot: `handle_message`
turns one incoming aiogram `Message` into the HTML reply text. Commands
are answered from the database directly; free text, photos and voice
notes go through the LLM, which answers with a JSON envelope
{action, data, message}.

Senders are matched to users by telegram_id. Unknown senders only get
/start, /help and /chatid.
"""
import json
import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from typing import Optional

import httpx
from aiogram.exceptions import TelegramAPIError
from aiogram.types import Message
from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from api import crud_users, llm_client, notifications
from api.endpoints_attendance import DEFAULT_HOURS, upsert_attendance
from api.endpoints_workers import find_worker_by_name
from api.models import ATTENDANCE_STATUSES, Attendance, Payment, ProjectExpense, Worker
from api.models_users import User
from api.roles import Role, RoleSet, load_role_set
from api.utils.audit import model_to_dict, record_metric, write_audit
from api.utils.money import fmt_money

logger = logging.getLogger(__name__)

COMMAND_ROLES = {
    "/status": Role.guest,
    "/workers": Role.guest,
    "/attendance": Role.guest,
    "/expense": Role.foreman,
    "/payments": Role.admin,
    "/reports": Role.admin,
    "/add_worker": Role.admin,
    "/mark_attendance": Role.foreman,
    "/add_payment": Role.admin,
}

ACTION_ROLES = {
    "add_worker": Role.admin,
    "update_attendance": Role.foreman,
    "add_payment": Role.admin,
}

STATUS_EMOJI = {"present": "✅", "absent": "❌", "sick": "🤒", "vacation": "🏖️"}
STATUS_NAMES = {"present": "Присутствует", "absent": "Отсутствует", "sick": "Болеет", "vacation": "В отпуске"}

ADD_WORKER_USAGE = "Формат: /add_worker [Имя Фамилия] [телефон] [ставка]\nПример: /add_worker Иван Петров 89123456789 2000"
MARK_ATTENDANCE_USAGE = "Формат: /mark_attendance [Имя] [статус]\nПример: /mark_attendance Иван present"
ADD_PAYMENT_USAGE = "Формат: /add_payment [Имя] [сумма] [описание]\nПример: /add_payment Иван 5000 за неделю"

UNSUPPORTED_MESSAGE = (
    "❓ Поддерживаются только текстовые сообщения, фото и голосовые сообщения.\n\n"
    "Используйте /help для списка команд."
)
UNKNOWN_ACTION_MESSAGE = "❓ Не удалось определить действие. Попробуйте переформулировать сообщение."
GET_INFO_FALLBACK = "📊 Используйте команды /status, /workers, /attendance, /payments для получения информации."
PROCESSING_ERROR = "❌ Ошибка обработки сообщения. Используйте /help для просмотра доступных команд."

TEXT_SYSTEM_PROMPT = """Ты умный помощник для управления строительными работниками и проектами.

Анализируй сообщения и определяй действия:
- Работники: добавление (имя, телефон, ставка в день), поиск
- Присутствие: статусы present/absent/sick/vacation, часы, заметки, дата (по умолчанию сегодня)
- Выплаты: сумма, описание, дата, имя работника
- Отчеты и статистика: запросы данных
- Неясные запросы объясняй

Отвечай ТОЛЬКО в JSON:
{
  "action": "add_worker" | "update_attendance" | "add_payment" | "get_info" | "help" | "unknown",
  "data": {"full_name", "phone", "daily_rate", "worker_name", "status", "hours_worked", "date", "amount", "description"},
  "message": "Понятное объяснение что будет сделано"
}"""

VISION_SYSTEM_PROMPT = """Анализируй изображения связанные со строительными работами.
Извлекай информацию о работниках, присутствии или выплатах.

Отвечай ТОЛЬКО в JSON формате:
{
  "action": "add_worker" | "update_attendance" | "add_payment" | "unknown",
  "data": {},
  "message": "краткое описание того, что видно на фото"
}"""

ASSISTANT_MAX_TOKENS = 800


class AssistantUnavailable(Exception):
    """No active AI provider for free-text processing."""


@dataclass
class Sender:
    """Telegram sender resolved against the users table."""
    telegram_id: Optional[int]
    user: Optional[User] = None
    role_set: RoleSet = RoleSet()

    @property
    def is_known(self) -> bool:
        return self.user is not None

    @property
    def user_id(self) -> Optional[int]:
        return self.user.id if self.user else None

    def can(self, required: Role) -> bool:
        return self.is_known and self.role_set.satisfies(required)


def resolve_sender(db: Session, telegram_id: Optional[int]) -> Sender:
    if telegram_id is None:
        return Sender(telegram_id=None)
    user = crud_users.get_user_by_telegram_id(db, telegram_id)
    if user is None or not user.is_active:
        return Sender(telegram_id=telegram_id)
    return Sender(telegram_id=telegram_id, user=user, role_set=load_role_set(db, user.id))


def access_denied(required: Role) -> str:
    return f"❌ Доступ запрещён. Требуется роль: {required.value}"


def not_registered(chat_id) -> str:
    return (
        "❌ Вы не зарегистрированы в системе.\n"
        f"Передайте администратору ваш chat id: <code>{chat_id}</code>"
    )


def _ru_date(day: date) -> str:
    return day.strftime("%d.%m.%Y")


# --- Informational commands ---

def start_text() -> str:
    return """🏗️ <b>Добро пожаловать в СтройМенеджер!</b>

Я помогу вам управлять строительными работниками и проектами.

<b>📋 Основные команды:</b>
/help - Показать все команды
/status - Статус системы
/workers - Список работников
/attendance - Посещаемость за сегодня
/payments - Последние выплаты

<b>🤖 Умные функции:</b>
• Отправьте текст - я автоматически определю что нужно сделать
• Отправьте фото с объекта - получите анализ
• Отправьте голосовое сообщение - я распознаю речь

<b>Примеры сообщений:</b>
"Добавить работника Иван Петров, телефон 89123456789, ставка 2000"
"Иван сегодня отработал 8 часов"
"Выплатить Петрову 5000 рублей за неделю\""""


def help_text() -> str:
    return """🔧 <b>Все команды СтройМенеджера:</b>

<b>📊 Информация:</b>
/status - Статус системы и статистика
/workers - Список всех работников
/attendance - Посещаемость за сегодня
/payments - Последние выплаты
/expense - Последние расходы по проектам
/reports - Отчеты по проектам
/chatid - Ваш chat id

<b>➕ Добавление данных:</b>
/add_worker [имя] [телефон] [ставка] - Добавить работника
/mark_attendance [имя] [статус] - Отметить присутствие
/add_payment [имя] [сумма] [описание] - Добавить выплату

<b>🎯 Статусы присутствия:</b>
• present - присутствует
• absent - отсутствует
• sick - болеет
• vacation - в отпуске

<b>💡 Умный режим:</b>
Просто напишите что вам нужно обычными словами - я пойму!"""


def chatid_text(chat_id) -> str:
    return f"🆔 Ваш chat id: <code>{chat_id}</code>"


def _payments_sum(db: Session, since: date) -> Decimal:
    total = db.query(func.sum(Payment.amount)).filter(Payment.date >= since).scalar()
    return Decimal(total or 0)


def status_text(db: Session, sender: Sender, today: Optional[date] = None) -> str:
    today = today or date.today()
    workers_count = db.query(Worker).count()
    present_count = db.query(Attendance).filter(
        Attendance.date == today,
        Attendance.status == "present"
    ).count()

    lines = [
        "📊 <b>Статус СтройМенеджера</b>",
        "",
        f"👷‍♂️ <b>Работники:</b> {workers_count} человек",
        f"✅ <b>Сегодня на работе:</b> {present_count} человек",
    ]
    if sender.can(Role.admin):
        lines.append(f"💰 <b>Выплаты за неделю:</b> {fmt_money(_payments_sum(db, today - timedelta(days=7)))}")
    lines += ["", f"🕐 <b>Обновлено:</b> {_ru_date(today)}", "", "Система работает нормально! 🟢"]
    return "\n".join(lines)


def workers_text(db: Session, sender: Sender) -> str:
    workers = db.query(Worker).order_by(Worker.full_name).all()
    if not workers:
        return "👷‍♂️ Работники пока не добавлены"

    show_rates = sender.can(Role.admin)
    text = "👷‍♂️ <b>Список работников:</b>\n\n"
    for worker in workers:
        text += f"• <b>{notifications.esc(worker.full_name)}</b>\n"
        text += f"  📞 {notifications.esc(worker.phone, 'Не указан')}\n"
        if show_rates:
            text += f"  💰 {fmt_money(worker.daily_rate)}/день\n"
        text += "\n"
    return text


def attendance_text(db: Session, today: Optional[date] = None) -> str:
    today = today or date.today()
    records = (
        db.query(Attendance)
        .options(joinedload(Attendance.worker))
        .filter(Attendance.date == today)
        .order_by(Attendance.status, Attendance.id)
        .all()
    )
    if not records:
        return "📅 На сегодня посещаемость не отмечена"

    text = f"📅 <b>Посещаемость на {_ru_date(today)}:</b>\n\n"
    for record in records:
        emoji = STATUS_EMOJI.get(record.status, "❓")
        name = STATUS_NAMES.get(record.status, record.status)
        text += f"{emoji} <b>{notifications.esc(record.worker.full_name)}</b> - {name}"
        if record.hours_worked:
            text += f" ({record.hours_worked:g}ч)"
        if record.notes:
            text += f"\n  💬 {notifications.esc(record.notes)}"
        text += "\n\n"
    return text


def payments_text(db: Session) -> str:
    payments = (
        db.query(Payment)
        .options(joinedload(Payment.worker))
        .order_by(Payment.date.desc(), Payment.id.desc())
        .limit(10)
        .all()
    )
    if not payments:
        return "💰 Выплаты пока не зарегистрированы"

    text = "💰 <b>Последние выплаты:</b>\n\n"
    for payment in payments:
        text += f"💵 <b>{fmt_money(payment.amount)}</b>\n"
        text += f"👤 {notifications.esc(payment.worker.full_name)}\n"
        text += f"📅 {_ru_date(payment.date)}\n"
        if payment.description:
            text += f"📝 {notifications.esc(payment.description)}\n"
        text += "\n"
    return text


def expenses_text(db: Session, today: Optional[date] = None) -> str:
    today = today or date.today()
    expenses = (
        db.query(ProjectExpense)
        .options(joinedload(ProjectExpense.project), joinedload(ProjectExpense.category))
        .order_by(ProjectExpense.date.desc(), ProjectExpense.id.desc())
        .limit(10)
        .all()
    )
    if not expenses:
        return "🧾 Расходы пока не зарегистрированы"

    week_total = db.query(func.sum(ProjectExpense.amount)).filter(
        ProjectExpense.date >= today - timedelta(days=7)
    ).scalar()

    text = "🧾 <b>Последние расходы:</b>\n\n"
    for expense in expenses:
        text += f"💸 <b>{fmt_money(expense.amount)}</b> - {notifications.esc(expense.category.name)}\n"
        text += f"🏗️ {notifications.esc(expense.project.name)}\n"
        text += f"📅 {_ru_date(expense.date)}\n"
        if expense.description:
            text += f"📝 {notifications.esc(expense.description)}\n"
        text += "\n"
    text += f"<b>Итого за неделю:</b> {fmt_money(week_total or 0)}"
    return text


def reports_text(db: Session, today: Optional[date] = None) -> str:
    today = today or date.today()
    week_ago = today - timedelta(days=7)
    month_ago = today - timedelta(days=30)

    weekly_attendance = db.query(Attendance).filter(
        Attendance.date >= week_ago,
        Attendance.status == "present"
    ).all()
    weekly_hours = sum(a.hours_worked or DEFAULT_HOURS for a in weekly_attendance)
    weekly_payments = _payments_sum(db, week_ago)
    monthly_payments = _payments_sum(db, month_ago)

    return f"""📈 <b>Отчеты СтройМенеджера</b>

<b>📊 За неделю:</b>
⏰ Отработано часов: {weekly_hours:g}
💰 Выплачено: {fmt_money(weekly_payments)}

<b>📊 За месяц:</b>
💰 Общие выплаты: {fmt_money(monthly_payments)}

<b>💡 Средние показатели:</b>
📅 Часов в день: {round(weekly_hours / 7)}
💵 Выплат в день: {fmt_money(round(weekly_payments / 7))}

🕐 <b>Создано:</b> {_ru_date(today)}"""


# --- Structured commands ---

def parse_add_worker(args: list) -> Optional[dict]:
    if len(args) < 3:
        return None
    try:
        rate = int(args[-1])
    except ValueError:
        return None
    return {"action": "add_worker", "data": {"full_name": " ".join(args[:-2]), "phone": args[-2], "daily_rate": rate}}


def parse_mark_attendance(args: list, today: date) -> Optional[dict]:
    if len(args) < 2:
        return None
    return {
        "action": "update_attendance",
        "data": {"worker_name": " ".join(args[:-1]), "status": args[-1], "date": today.isoformat()},
    }


def parse_add_payment(args: list, today: date) -> Optional[dict]:
    """Last word is the description, the one before it the amount."""
    if len(args) < 3:
        return None
    return {
        "action": "add_payment",
        "data": {
            "worker_name": " ".join(args[:-2]),
            "amount": args[-2],
            "description": args[-1],
            "date": today.isoformat(),
        },
    }


def _action_date(value) -> date:
    if not value:
        return date.today()
    return date.fromisoformat(str(value))


def execute_action(db: Session, action: dict, sender: Sender) -> str:
    """Run an add_worker / update_attendance / add_payment envelope against the database."""
    name = action.get("action")
    data = action.get("data") or {}
    required = ACTION_ROLES.get(name)
    if required is None:
        return UNKNOWN_ACTION_MESSAGE
    if not sender.can(required):
        return access_denied(required)

    logger.info(f"Telegram action {name} by user_id={sender.user_id}")

    if name == "add_worker":
        if not data.get("full_name"):
            return "Ошибка при добавлении работника: не указано имя"
        try:
            rate = Decimal(str(data.get("daily_rate") or 0))
        except InvalidOperation:
            return f"Ошибка при добавлении работника: неверная ставка {data.get('daily_rate')}"
        worker = Worker(full_name=data["full_name"], phone=data.get("phone"), daily_rate=rate)
        db.add(worker)
        db.flush()
        write_audit(db, "TELEGRAM_ADD_WORKER", sender.user_id, "workers", worker.id, new_values=model_to_dict(worker))
        db.commit()
        return f"✅ Добавлен работник: {notifications.esc(worker.full_name)}"

    worker = find_worker_by_name(db, data.get("worker_name"))
    if worker is None:
        return f"❌ Работник \"{notifications.esc(data.get('worker_name'), '')}\" не найден"

    try:
        day = _action_date(data.get("date"))
    except ValueError:
        return f"❌ Неверная дата: {notifications.esc(data.get('date'))}"

    if name == "update_attendance":
        att_status = data.get("status")
        if att_status not in ATTENDANCE_STATUSES:
            return f"Ошибка при обновлении присутствия: неверный статус {notifications.esc(att_status)}"
        record = upsert_attendance(
            db, worker.id, day, att_status,
            hours_worked=data.get("hours_worked") or DEFAULT_HOURS,
            notes=data.get("notes"),
        )
        write_audit(db, "TELEGRAM_UPDATE_ATTENDANCE", sender.user_id, "attendance", record.id,
                    new_values=model_to_dict(record))
        db.commit()
        return f"✅ Обновлено присутствие для {notifications.esc(worker.full_name)}: {att_status}"

    # add_payment
    try:
        amount = Decimal(str(data.get("amount")))
    except InvalidOperation:
        return f"Ошибка при добавлении выплаты: неверная сумма {notifications.esc(data.get('amount'))}"
    if amount <= 0:
        return "Ошибка при добавлении выплаты: сумма должна быть больше нуля"
    payment = Payment(worker_id=worker.id, date=day, amount=amount, description=data.get("description"))
    db.add(payment)
    db.flush()
    write_audit(db, "TELEGRAM_ADD_PAYMENT", sender.user_id, "payments", payment.id,
                new_values=model_to_dict(payment))
    db.commit()
    return f"✅ Добавлена выплата для {notifications.esc(worker.full_name)}: {fmt_money(amount)}"


def handle_command(db: Session, text: str, chat_id, sender: Sender, today: Optional[date] = None) -> Optional[str]:
    """
    Reply for a slash command, or None when the text is not a known command
    (it then goes to the assistant).
    """
    today = today or date.today()
    parts = text.split()
    command = parts[0].split("@", 1)[0].lower()
    args = parts[1:]

    if command == "/start":
        return start_text()
    if command == "/help":
        return help_text()
    if command == "/chatid":
        return chatid_text(chat_id)

    required = COMMAND_ROLES.get(command)
    if required is None:
        return None
    if not sender.is_known:
        return not_registered(chat_id)
    if not sender.can(required):
        return access_denied(required)

    if command == "/status":
        return status_text(db, sender, today)
    if command == "/workers":
        return workers_text(db, sender)
    if command == "/attendance":
        return attendance_text(db, today)
    if command == "/payments":
        return payments_text(db)
    if command == "/expense":
        return expenses_text(db, today)
    if command == "/reports":
        return reports_text(db, today)

    if command == "/add_worker":
        action = parse_add_worker(args)
        return execute_action(db, action, sender) if action else ADD_WORKER_USAGE
    if command == "/mark_attendance":
        action = parse_mark_attendance(args, today)
        return execute_action(db, action, sender) if action else MARK_ATTENDANCE_USAGE
    action = parse_add_payment(args, today)
    return execute_action(db, action, sender) if action else ADD_PAYMENT_USAGE


# --- Assistant (free text, photo, voice) ---

def parse_envelope(raw: str) -> dict:
    """LLM reply → {action, data, message}; anything unparsable becomes an `unknown` action."""
    text = (raw or "").strip()
    if text.startswith("```"):
        text = text.strip("`")
        if text.lower().startswith("json"):
            text = text[4:]
    try:
        envelope = json.loads(text)
    except json.JSONDecodeError:
        return {"action": "unknown", "data": {}, "message": raw}
    if not isinstance(envelope, dict):
        return {"action": "unknown", "data": {}, "message": raw}
    envelope.setdefault("data", {})
    envelope.setdefault("action", "unknown")
    if not isinstance(envelope["action"], str) or not isinstance(envelope["data"], dict):
        logger.warning(f"Malformed assistant envelope: {raw[:200]!r}")
        return {"action": "unknown", "data": {}, "message": envelope.get("message") or raw}
    if "message" not in envelope and envelope.get("description"):
        envelope["message"] = envelope["description"]
    return envelope


async def interpret_text(db: Session, text: str) -> dict:
    provider = llm_client.pick_provider(db)
    if provider is None:
        raise AssistantUnavailable("ИИ провайдеры не настроены")
    target = llm_client.ProviderTarget.from_provider(provider)
    result = await llm_client.chat(
        target,
        [{"role": "system", "content": TEXT_SYSTEM_PROMPT}, {"role": "user", "content": text}],
        max_tokens=ASSISTANT_MAX_TOKENS,
        intent="telegram_text",
    )
    return parse_envelope(result.text)


async def interpret_message(db: Session, message: Message) -> Optional[dict]:
    """Envelope for text, photo or voice; None for unsupported content."""
    if message.text:
        return await interpret_text(db, message.text)
    if message.photo:
        image = await notifications.download_file(message.photo[-1].file_id)
        return parse_envelope(await llm_client.analyze_image(image, VISION_SYSTEM_PROMPT))
    if message.voice:
        audio = await notifications.download_file(message.voice.file_id)
        transcript = await llm_client.transcribe_audio(audio)
        logger.info(f"Voice note transcribed: {transcript[:80]!r}")
        return await interpret_text(db, transcript)
    return None


def unknown_reply(envelope: dict) -> str:
    return f"""❓ {notifications.esc(envelope.get('message'), 'Не понял ваш запрос.')}

💡 <b>Попробуйте:</b>
• /help - все команды
• "Добавить работника Иван 89123456789 2000"
• "Иван сегодня работал 8 часов"
• "Выплатить Петрову 5000\""""


async def handle_message(db: Session, message: Message) -> str:
    """One incoming message → HTML reply text."""
    chat_id = message.chat.id
    sender = resolve_sender(db, message.from_user.id if message.from_user else None)

    if message.text and message.text.startswith("/"):
        reply = handle_command(db, message.text.strip(), chat_id, sender)
        if reply is not None:
            record_metric("telegram.command", {"command": message.text.split()[0]}, outcome="ok")
            return reply

    if not sender.is_known:
        return not_registered(chat_id)

    try:
        envelope = await interpret_message(db, message)
    except (AssistantUnavailable, llm_client.ProviderConfigError, notifications.TelegramNotConfigured) as e:
        return f"❌ Ошибка обработки: {e}\n\nИспользуйте /help для просмотра доступных команд."
    except (httpx.HTTPError, llm_client.ProviderResponseError, TelegramAPIError) as e:
        logger.error(f"Assistant processing failed for chat {chat_id}: {e}")
        return f"❌ Ошибка обработки: {notifications.esc(str(e))}\n\nИспользуйте /help для просмотра доступных команд."

    if envelope is None:
        return UNSUPPORTED_MESSAGE

    action = envelope.get("action")
    record_metric("telegram.assistant", {"action": action}, outcome="ok")
    if action == "help":
        return help_text()
    if action == "get_info":
        return notifications.esc(envelope.get("message"), GET_INFO_FALLBACK)
    if action == "unknown" or action not in ACTION_ROLES:
        return unknown_reply(envelope)

    result = execute_action(db, envelope, sender)
    if envelope.get("message") and "✅" in result:
        result = f"{result}\n\n💡 {notifications.esc(envelope['message'])}"
    return result
