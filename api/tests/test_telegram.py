"""
Telegram Tests - webhook, command engine, assistant envelopes, notify endpoint

Outbound Telegram calls (`notifications.send_message`, `download_file`)
and vendor calls (`llm_client.chat`, `analyze_image`, `transcribe_audio`)
are replaced by fakes.
"""
import asyncio
import json
from datetime import date
from decimal import Decimal

import pytest
from aiogram.exceptions import TelegramAPIError
from aiogram.types import Message

from api import llm_client, notifications, telegram_bot
from api.config import settings
from api.models import AIProvider, Attendance, AuditLog, NotificationLog, Payment, Worker

ADMIN_TG, FOREMAN_TG, WORKER_TG, STRANGER_TG = 1001, 1002, 1003, 9999


def _message(text=None, user_id=ADMIN_TG, chat_id=None, **extra):
    body = {
        "message_id": 1,
        "date": 1700000000,
        "chat": {"id": chat_id or user_id, "type": "private"},
        "from": {"id": user_id, "is_bot": False, "first_name": "Тест"},
        **extra,
    }
    if text is not None:
        body["text"] = text
    return body


def _update(text=None, update_id=1, **kw):
    return {"update_id": update_id, "message": _message(text, **kw)}


@pytest.fixture
def sent(monkeypatch):
    """Captured outbound messages as (chat_id, text)."""
    outbox = []

    async def fake_send(chat_id, text):
        outbox.append((chat_id, text))
        return len(outbox)

    monkeypatch.setattr(notifications, "send_message", fake_send)
    return outbox


@pytest.fixture
def users(admin_user, foreman_user, worker_user):
    return admin_user, foreman_user, worker_user


@pytest.fixture
def assistant(db_session, monkeypatch):
    """Active provider whose replies are set per test via `assistant.reply`."""
    monkeypatch.setattr(settings, "OPENAI_API_KEY", "sk-test")
    db_session.add(AIProvider(name="OpenAI", provider_type="openai"))
    db_session.commit()

    class Assistant:
        reply = "{}"
        prompts = []

        async def __call__(self, target, messages, max_tokens=None, tools=None, intent="chat"):
            self.prompts.append(messages[-1]["content"])
            return llm_client.ChatResult(text=self.reply, provider="openai", model=target.model)

    fake = Assistant()
    fake.prompts = []
    monkeypatch.setattr(llm_client, "chat", fake)
    return fake


def _command(db_session, text, telegram_id=ADMIN_TG, today=None):
    sender = telegram_bot.resolve_sender(db_session, telegram_id)
    return telegram_bot.handle_command(db_session, text, telegram_id, sender, today=today)


def _handle(db_session, payload):
    return asyncio.run(telegram_bot.handle_message(db_session, Message.model_validate(payload)))


# --- Command engine ---

def test_public_commands_for_strangers(db_session):
    assert "Добро пожаловать" in _command(db_session, "/start", STRANGER_TG)
    assert "/mark_attendance" in _command(db_session, "/help", STRANGER_TG)
    assert _command(db_session, "/chatid", STRANGER_TG) == "🆔 Ваш chat id: <code>9999</code>"


def test_stranger_gets_registration_hint(db_session, users):
    reply = _command(db_session, "/status", STRANGER_TG)
    assert reply.startswith("❌ Вы не зарегистрированы в системе.")
    assert "<code>9999</code>" in reply


def test_inactive_user_treated_as_stranger(db_session, make_user):
    make_user("ex", "admin", telegram_id=4242, is_active=False)
    assert "не зарегистрированы" in _command(db_session, "/workers", 4242)


def test_role_gates(db_session, users):
    assert _command(db_session, "/payments", FOREMAN_TG) == "❌ Доступ запрещён. Требуется роль: admin"
    assert _command(db_session, "/expense", WORKER_TG) == "❌ Доступ запрещён. Требуется роль: foreman"
    assert _command(db_session, "/add_worker Иван 8900 2000", FOREMAN_TG).endswith("admin")
    assert _command(db_session, "/payments", ADMIN_TG) == "💰 Выплаты пока не зарегистрированы"


def test_bot_suffix_and_unknown_command(db_session, users):
    assert _command(db_session, "/workers@stroy_bot", WORKER_TG) == "👷‍♂️ Работники пока не добавлены"
    assert _command(db_session, "/dance", ADMIN_TG) is None


def test_add_worker_command(db_session, users):
    reply = _command(db_session, "/add_worker Иван Петров 89123456789 2000")

    assert reply == "✅ Добавлен работник: Иван Петров"
    worker = db_session.query(Worker).one()
    assert worker.phone == "89123456789"
    assert worker.daily_rate == Decimal("2000")
    audit = db_session.query(AuditLog).filter(AuditLog.action == "TELEGRAM_ADD_WORKER").one()
    assert audit.user_id == users[0].id


def test_add_worker_usage(db_session, users):
    assert _command(db_session, "/add_worker Иван") == telegram_bot.ADD_WORKER_USAGE
    assert _command(db_session, "/add_worker Иван 8900 много") == telegram_bot.ADD_WORKER_USAGE


def test_mark_attendance_by_foreman(db_session, users, make_worker):
    make_worker("Иван Петров")
    day = date(2025, 4, 7)

    reply = _command(db_session, "/mark_attendance иван sick", FOREMAN_TG, today=day)
    assert reply == "✅ Обновлено присутствие для Иван Петров: sick"

    _command(db_session, "/mark_attendance Иван present", FOREMAN_TG, today=day)
    rows = db_session.query(Attendance).all()
    assert [(r.date, r.status, r.hours_worked) for r in rows] == [(day, "present", 8)]


def test_mark_attendance_errors(db_session, users, make_worker):
    make_worker("Иван Петров")
    assert _command(db_session, "/mark_attendance Сидор present", FOREMAN_TG) == '❌ Работник "Сидор" не найден'
    assert "неверный статус" in _command(db_session, "/mark_attendance Иван party", FOREMAN_TG)
    assert _command(db_session, "/mark_attendance", FOREMAN_TG) == telegram_bot.MARK_ATTENDANCE_USAGE


def test_add_payment_command(db_session, users, make_worker):
    make_worker("Иван Петров")

    reply = _command(db_session, "/add_payment Иван 5000 аванс")

    assert reply == "✅ Добавлена выплата для Иван Петров: 5 000 руб."
    payment = db_session.query(Payment).one()
    assert payment.description == "аванс"
    assert "сумма должна быть больше нуля" in _command(db_session, "/add_payment Иван 0 ноль")
    assert "неверная сумма" in _command(db_session, "/add_payment Иван пять аванс")


def test_workers_list_rates_only_for_admin(db_session, users, make_worker):
    make_worker("Иван Петров", daily_rate="3000", phone="+7900")

    admin_view = _command(db_session, "/workers", ADMIN_TG)
    worker_view = _command(db_session, "/workers", WORKER_TG)

    assert "3 000 руб./день" in admin_view
    assert "руб." not in worker_view
    assert "+7900" in worker_view


def test_status_and_attendance(db_session, users, make_worker):
    day = date(2025, 4, 7)
    worker = make_worker("Иван Петров")
    db_session.add(Attendance(worker_id=worker.id, date=day, status="present", hours_worked=6, notes="<фасад>"))
    db_session.add(Payment(worker_id=worker.id, date=day, amount=Decimal("1500")))
    db_session.commit()

    admin_status = _command(db_session, "/status", ADMIN_TG, today=day)
    assert "<b>Сегодня на работе:</b> 1 человек" in admin_status
    assert "1 500 руб." in admin_status
    assert "Выплаты" not in _command(db_session, "/status", WORKER_TG, today=day)

    attendance = _command(db_session, "/attendance", WORKER_TG, today=day)
    assert "✅ <b>Иван Петров</b> - Присутствует (6ч)" in attendance
    assert "&lt;фасад&gt;" in attendance


def test_reports_command(db_session, users, make_worker):
    day = date(2025, 4, 7)
    worker = make_worker()
    db_session.add(Attendance(worker_id=worker.id, date=day, status="present", hours_worked=7))
    db_session.add(Payment(worker_id=worker.id, date=day, amount=Decimal("7000")))
    db_session.commit()

    report = _command(db_session, "/reports", ADMIN_TG, today=day)

    assert "Отработано часов: 7" in report
    assert "Выплачено: 7 000 руб." in report
    assert "Выплат в день: 1 000 руб." in report


# --- Assistant envelopes ---

def test_parse_envelope_variants():
    fenced = '```json\n{"action": "help"}\n```'
    assert telegram_bot.parse_envelope(fenced) == {"action": "help", "data": {}}
    assert telegram_bot.parse_envelope("не json")["action"] == "unknown"
    assert telegram_bot.parse_envelope("[1, 2]")["message"] == "[1, 2]"
    assert telegram_bot.parse_envelope('{"action": "get_info", "description": "x"}')["message"] == "x"


def test_free_text_without_provider(db_session, users):
    reply = _handle(db_session, _message("Иван сегодня работал"))
    assert reply.startswith("❌ Ошибка обработки: ИИ провайдеры не настроены")


def test_free_text_from_stranger_is_not_processed(db_session, assistant):
    reply = _handle(db_session, _message("Добавь работника", user_id=STRANGER_TG))
    assert "не зарегистрированы" in reply
    assert assistant.prompts == []


def test_free_text_action_executed(db_session, users, make_worker, assistant):
    make_worker("Иван Петров")
    assistant.reply = json.dumps({
        "action": "update_attendance",
        "data": {"worker_name": "Иван", "status": "present", "hours_worked": 10},
        "message": "Отмечаю Ивана",
    }, ensure_ascii=False)

    reply = _handle(db_session, _message("Иван сегодня отработал 10 часов", user_id=FOREMAN_TG))

    assert reply == "✅ Обновлено присутствие для Иван Петров: present\n\n💡 Отмечаю Ивана"
    assert assistant.prompts == ["Иван сегодня отработал 10 часов"]
    assert db_session.query(Attendance).one().hours_worked == 10


def test_free_text_action_role_checked(db_session, users, make_worker, assistant):
    make_worker("Иван Петров")
    assistant.reply = '{"action": "add_payment", "data": {"worker_name": "Иван", "amount": 100}}'

    reply = _handle(db_session, _message("Заплати Ивану", user_id=WORKER_TG))

    assert reply == "❌ Доступ запрещён. Требуется роль: admin"
    assert db_session.query(Payment).count() == 0


def test_free_text_info_and_unknown(db_session, users, assistant):
    assistant.reply = '{"action": "get_info", "message": "Всего 0 работников"}'
    assert _handle(db_session, _message("Сколько работников?")) == "Всего 0 работников"

    assistant.reply = '{"action": "get_info"}'
    assert _handle(db_session, _message("Сколько?")) == telegram_bot.GET_INFO_FALLBACK

    assistant.reply = "что-то непонятное"
    assert _handle(db_session, _message("ээ")).startswith("❓ что-то непонятное")


def test_photo_goes_to_vision(db_session, users, monkeypatch):
    seen = {}

    async def fake_download(file_id):
        seen["file_id"] = file_id
        return b"jpeg"

    async def fake_vision(image, system):
        seen["image"] = image
        return '{"action": "unknown", "message": "На фото бетономешалка"}'

    monkeypatch.setattr(notifications, "download_file", fake_download)
    monkeypatch.setattr(llm_client, "analyze_image", fake_vision)
    photo = [
        {"file_id": "small", "file_unique_id": "s", "width": 90, "height": 90},
        {"file_id": "large", "file_unique_id": "l", "width": 1280, "height": 1280},
    ]

    reply = _handle(db_session, _message(photo=photo))

    assert seen == {"file_id": "large", "image": b"jpeg"}
    assert reply.startswith("❓ На фото бетономешалка")


def test_voice_is_transcribed_then_interpreted(db_session, users, make_worker, assistant, monkeypatch):
    make_worker("Иван Петров")

    async def fake_download(file_id):
        return b"ogg"

    async def fake_transcribe(audio):
        return "Иван заболел"

    monkeypatch.setattr(notifications, "download_file", fake_download)
    monkeypatch.setattr(llm_client, "transcribe_audio", fake_transcribe)
    assistant.reply = '{"action": "update_attendance", "data": {"worker_name": "Иван", "status": "sick"}}'

    reply = _handle(db_session, _message(voice={"file_id": "v", "file_unique_id": "vu", "duration": 3}))

    assert reply == "✅ Обновлено присутствие для Иван Петров: sick"
    assert assistant.prompts == ["Иван заболел"]


def test_unsupported_content(db_session, users):
    reply = _handle(db_session, _message(location={"latitude": 55.75, "longitude": 37.61}))
    assert reply == telegram_bot.UNSUPPORTED_MESSAGE


# --- Webhook ---

def test_webhook_replies_to_chat(client, users, sent):
    response = client.post("/api/telegram/webhook", json=_update("/chatid", chat_id=-100500))

    assert response.json() == {"ok": True}
    assert sent == [(-100500, "🆔 Ваш chat id: <code>-100500</code>")]


def test_webhook_command_creates_worker(client, users, sent, db_session):
    client.post("/api/telegram/webhook", json=_update("/add_worker Пётр Сидоров 8900 2500"))

    assert sent[0][1] == "✅ Добавлен работник: Пётр Сидоров"
    assert db_session.query(Worker).filter(Worker.full_name == "Пётр Сидоров").count() == 1


def test_webhook_ignores_non_message_updates(client, sent):
    assert client.post("/api/telegram/webhook", json={"update_id": 7}).json() == {"ok": True}
    assert sent == []


def test_webhook_malformed_update(client, sent):
    assert client.post("/api/telegram/webhook", json={"update_id": "seven"}).json() == {"ok": False}
    assert sent == []


def test_webhook_secret_enforced(client, sent, monkeypatch):
    monkeypatch.setattr(settings, "TELEGRAM_WEBHOOK_SECRET", "hook-secret")

    denied = client.post("/api/telegram/webhook", json=_update("/start"))
    assert denied.status_code == 401

    accepted = client.post("/api/telegram/webhook", json=_update("/start"),
                           headers={"X-Telegram-Bot-Api-Secret-Token": "hook-secret"})
    assert accepted.json() == {"ok": True}
    assert len(sent) == 1


# --- Notify ---

def test_notify_unknown_action(client, admin_headers):
    response = client.post("/api/telegram/notify", headers=admin_headers, json={"action": "party", "data": {}})
    assert response.status_code == 400
    assert response.json()["detail"] == "Unknown notification action: party"


def test_notify_not_configured(client, admin_headers, monkeypatch):
    monkeypatch.setattr(settings, "TELEGRAM_BOT_TOKEN", None)
    response = client.post("/api/telegram/notify", headers=admin_headers,
                           json={"action": "daily_report", "chat_id": "42"})
    assert response.status_code == 503


def test_notify_success_logged(client, admin_headers, sent, db_session, monkeypatch):
    monkeypatch.setattr(settings, "TELEGRAM_BOT_TOKEN", "123:abc")
    monkeypatch.setattr(settings, "TELEGRAM_CHAT_ID", "-1001")

    response = client.post("/api/telegram/notify", headers=admin_headers, json={
        "action": "expense_added",
        "data": {"category": "Материалы", "amount": 15000, "projectName": "Дом <1>", "date": "2025-04-07"},
    })

    assert response.json() == {"success": True, "message_id": 1, "action": "expense_added"}
    chat_id, text = sent[0]
    assert chat_id == "-1001"
    assert "Сумма: 15 000 руб." in text
    assert "Дом &lt;1&gt;" in text
    log = db_session.query(NotificationLog).one()
    assert (log.status, log.recipient, log.meta) == ("sent", "-1001", {"message_id": 1})


def test_notify_telegram_error(client, admin_headers, db_session, monkeypatch):
    monkeypatch.setattr(settings, "TELEGRAM_BOT_TOKEN", "123:abc")

    async def failing_send(chat_id, text):
        raise TelegramAPIError(method=None, message="chat not found")

    monkeypatch.setattr(notifications, "send_message", failing_send)

    response = client.post("/api/telegram/notify", headers=admin_headers,
                           json={"action": "security_alert", "data": {"alertMessage": "вход"}, "chat_id": "7"})

    assert response.status_code == 502
    log = db_session.query(NotificationLog).one()
    assert log.status == "failed"
    assert log.sent_at is None


def test_notify_admin_only(client, foreman_headers):
    response = client.post("/api/telegram/notify", headers=foreman_headers, json={"action": "daily_report"})
    assert response.status_code == 403


def test_polling_handler_answers_in_chat(users, monkeypatch):
    from bot import handlers

    answers = []

    async def fake_answer(self, text, **kwargs):
        answers.append((self.chat.id, text))

    monkeypatch.setattr(Message, "answer", fake_answer)

    asyncio.run(handlers.on_message(Message.model_validate(_message("/payments", user_id=FOREMAN_TG))))

    assert answers == [(FOREMAN_TG, "❌ Доступ запрещён. Требуется роль: admin")]


@pytest.mark.parametrize("raw", [
    '{"action": "add_payment", "data": "Иван 5000"}',
    '{"action": ["add_payment"], "data": {}}',
    '{"action": null}',
])
def test_parse_envelope_rejects_malformed_shapes(raw):
    envelope = telegram_bot.parse_envelope(raw)
    assert envelope["action"] == "unknown", f"{raw} → {envelope}"
    assert envelope["data"] == {}


def test_webhook_malformed_envelope_still_replies(client, users, sent, assistant, db_session):
    assistant.reply = '{"action": "add_payment", "data": "Иван 5000"}'

    response = client.post("/api/telegram/webhook", json=_update("Заплати Ивану 5000"))

    assert response.status_code == 200
    assert response.json() == {"ok": True}
    assert len(sent) == 1 and sent[0][1].startswith("❓")
    assert db_session.query(Payment).count() == 0


def test_webhook_unexpected_error_reported_to_chat(client, users, sent, monkeypatch):
    async def broken(db, message):
        raise RuntimeError("boom")

    monkeypatch.setattr(telegram_bot, "handle_message", broken)

    response = client.post("/api/telegram/webhook", json=_update("Привет"))

    assert response.status_code == 200
    assert sent == [(ADMIN_TG, telegram_bot.PROCESSING_ERROR)]
