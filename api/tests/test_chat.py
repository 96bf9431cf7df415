"""
Chat Relay Tests - role filter, provider selection, tool execution, preview

The vendor call (`llm_client.chat`) is replaced by a recording fake.
"""
import httpx
import pytest

from api import llm_client
from api.config import settings
from api.models import AIProvider, Attendance, Payment, Worker
from api.routers.chat import make_preview


class FakeChat:
    def __init__(self, result=None, error=None):
        self.calls = []
        self.result = result or llm_client.ChatResult(text="Готово", provider="openai", model="gpt-4o-mini")
        self.error = error

    async def __call__(self, target, messages, max_tokens=None, tools=None, intent="chat"):
        self.calls.append({"target": target, "messages": messages, "tools": tools})
        if self.error:
            raise self.error
        return self.result


@pytest.fixture
def provider(db_session, monkeypatch):
    monkeypatch.setattr(settings, "OPENAI_API_KEY", "sk-test")
    row = AIProvider(name="OpenAI", provider_type="openai", priority=1, is_active=True)
    db_session.add(row)
    db_session.commit()
    return row


@pytest.fixture
def fake_chat(monkeypatch):
    fake = FakeChat()
    monkeypatch.setattr(llm_client, "chat", fake)
    return fake


def _ask(client, headers, prompt, **extra):
    return client.post("/api/chat/query", headers=headers, json={"prompt": prompt, **extra})


def test_foreman_financial_prompt_filtered(client, foreman_headers, provider, fake_chat):
    response = _ask(client, foreman_headers, "Какой profit у проекта?")

    assert response.status_code == 200
    body = response.json()
    assert body["filtered"] is True
    assert body["restricted_terms"] == ["profit"]
    assert fake_chat.calls == []


def test_anonymous_prompt_filtered(client, provider, fake_chat):
    body = _ask(client, None, "привет").json()
    assert body["filtered"] is True
    assert body["response"] == "Пользователь не авторизован"


def test_no_provider_configured(client, admin_headers, fake_chat):
    body = _ask(client, admin_headers, "Сводка по проектам").json()
    assert body["response"] == "ИИ провайдеры не настроены."
    assert fake_chat.calls == []


def test_missing_key_reported(client, admin_headers, db_session, monkeypatch, fake_chat):
    monkeypatch.setattr(settings, "ANTHROPIC_API_KEY", None)
    db_session.add(AIProvider(name="Claude", provider_type="anthropic", priority=1))
    db_session.commit()

    body = _ask(client, admin_headers, "Сводка").json()

    assert body["response"] == "API ключ не настроен для выбранного провайдера."
    assert body["provider"] == "anthropic"


def test_highest_priority_provider_used(client, admin_headers, db_session, provider, fake_chat, monkeypatch):
    monkeypatch.setattr(settings, "DEEPSEEK_API_KEY", "ds-test")
    db_session.add(AIProvider(name="DeepSeek", provider_type="deepseek", priority=5))
    db_session.add(AIProvider(name="Disabled", provider_type="deepseek", priority=0, is_active=False))
    db_session.commit()

    _ask(client, admin_headers, "Сводка")

    assert fake_chat.calls[0]["target"].provider_type == "openai"


def test_prompt_carries_role_context_and_scoped_data(client, foreman_headers, make_worker, provider, fake_chat):
    make_worker("Иван Петров", daily_rate="3000")

    body = _ask(client, foreman_headers, "Кто сегодня на объекте?", systemPrompt="планирование").json()

    assert body["filtered"] is False
    assert body["response"] == "Готово"
    system, user = fake_chat.calls[0]["messages"]
    assert "прораб" in system["content"]
    assert "[SYSTEM CONTEXT: Role=foreman" in user["content"]
    assert "Иван Петров" in user["content"]
    assert "daily_rate" not in user["content"]
    tool_names = [t["function"]["name"] for t in fake_chat.calls[0]["tools"]]
    assert tool_names == ["record_attendance"]


def test_admin_tools_executed(client, admin_headers, db_session, make_worker, provider, monkeypatch, today):
    worker = make_worker("Иван Петров")
    fake = FakeChat(result=llm_client.ChatResult(
        text="",
        provider="openai",
        model="gpt-4o-mini",
        tool_calls=[
            llm_client.ToolCall("create_worker", {"full_name": "Пётр Новиков", "daily_rate": 2800}),
            llm_client.ToolCall("record_attendance",
                                {"worker_id": worker.id, "date": today.isoformat(), "status": "present"}),
            llm_client.ToolCall("create_payment",
                                {"worker_id": worker.id, "amount": 5000, "date": today.isoformat()}),
            llm_client.ToolCall("drop_tables", {}),
        ],
    ))
    monkeypatch.setattr(llm_client, "chat", fake)

    body = _ask(client, admin_headers, "Добавь Петра и отметь Ивана").json()

    assert "Результаты операций" in body["response"]
    assert "Неизвестная функция: drop_tables" in body["response"]
    db_session.expire_all()
    assert db_session.query(Worker).filter(Worker.full_name == "Пётр Новиков").count() == 1
    assert db_session.query(Attendance).filter(Attendance.worker_id == worker.id).one().status == "present"
    assert float(db_session.query(Payment).one().amount) == 5000


def test_tool_calls_regated_by_role(client, foreman_headers, db_session, make_worker, provider, monkeypatch):
    worker = make_worker()
    fake = FakeChat(result=llm_client.ChatResult(
        text="ok",
        provider="openai",
        model="gpt-4o-mini",
        tool_calls=[llm_client.ToolCall("create_payment", {"worker_id": worker.id, "amount": 1, "date": None})],
    ))
    monkeypatch.setattr(llm_client, "chat", fake)

    body = _ask(client, foreman_headers, "Выдай аванс").json()

    assert "Недостаточно прав для create_payment" in body["response"]
    assert db_session.query(Payment).count() == 0


def test_vendor_errors_mapped(client, admin_headers, provider, monkeypatch):
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    status_error = httpx.HTTPStatusError("boom", request=request, response=httpx.Response(429, request=request))
    monkeypatch.setattr(llm_client, "chat", FakeChat(error=status_error))
    assert _ask(client, admin_headers, "Сводка").status_code == 502

    monkeypatch.setattr(llm_client, "chat", FakeChat(error=httpx.ConnectError("down", request=request)))
    assert _ask(client, admin_headers, "Сводка").status_code == 503


def test_long_answer_truncated_in_preview(client, admin_headers, provider, monkeypatch):
    long_text = "а" * 301
    monkeypatch.setattr(llm_client, "chat", FakeChat(result=llm_client.ChatResult(
        text=long_text, provider="openai", model="gpt-4o-mini")))

    body = _ask(client, admin_headers, "Подробный отчёт").json()

    assert body["response"] == long_text
    assert body["truncated"] is True
    assert body["preview"] == "а" * 300 + "..."


def test_make_preview_boundary():
    assert make_preview("x" * 300) == (False, "x" * 300)
    assert make_preview("abcdef", limit=3) == (True, "abc...")


def test_unreadable_vendor_body_is_502(client, admin_headers, provider, vendor_reply):
    vendor_reply(200, text="<html>maintenance</html>")

    response = _ask(client, admin_headers, "Сводка")

    assert response.status_code == 502
    assert response.json()["detail"] == "AI provider error: invalid response body"


def test_context_object_passes_role_filter(client, foreman_headers, provider, fake_chat):
    body = _ask(client, foreman_headers, "Что по объекту?", context={"note": "покажи salary бригады"}).json()

    assert body["filtered"] is True
    assert body["restricted_terms"] == ["salary"]
    assert fake_chat.calls == []


def test_system_prompt_passes_role_filter(client, foreman_headers, provider, fake_chat):
    body = _ask(client, foreman_headers, "Что по объекту?", systemPrompt="считай profit").json()

    assert body["filtered"] is True
    assert fake_chat.calls == []


def test_admin_context_reaches_vendor(client, admin_headers, provider, fake_chat):
    _ask(client, admin_headers, "Сводка", context={"focus": "salary"})

    assert '"focus": "salary"' in fake_chat.calls[0]["messages"][1]["content"]
