"""
Pytest configuration and shared fixtures for API tests.

This conftest.py provides:
- clean schema for every test (drop/create on the session DB file)
- db_session: Database session for seed/test data
- client: FastAPI TestClient for HTTP requests
- make_user: user + role rows factory
- admin_headers / foreman_headers / worker_headers: Bearer headers
- vendor_reply: canned answer for outbound LLM vendor calls
"""
from datetime import date
from decimal import Decimal

import httpx
import pytest
from fastapi.testclient import TestClient

from api import models_users  # noqa: F401
from api.auth import create_access_token
from api.db import SessionLocal, engine
from api.main import app
from api.models import Base, Worker
from api.models_users import User, UserRoleAssignment


@pytest.fixture(autouse=True)
def clean_schema():
    """Fresh tables for every test."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db_session():
    session = SessionLocal()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def make_user(db_session):
    """Factory: make_user("alice", "admin", telegram_id=...) → User with one active role row."""
    def _make(username, *roles, telegram_id=None, is_active=True, password_hash=None):
        user = User(
            username=username,
            full_name=username.title(),
            telegram_id=telegram_id,
            is_active=is_active,
            password_hash=password_hash,
        )
        db_session.add(user)
        db_session.flush()
        for role in roles:
            db_session.add(UserRoleAssignment(user_id=user.id, role=role))
        db_session.commit()
        return user

    return _make


def _headers(user: User, role: str) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.username, role)}"}


@pytest.fixture
def admin_user(make_user):
    return make_user("admin", "admin", telegram_id=1001)


@pytest.fixture
def foreman_user(make_user):
    return make_user("foreman", "foreman", telegram_id=1002)


@pytest.fixture
def worker_user(make_user):
    return make_user("worker", "worker", telegram_id=1003)


@pytest.fixture
def admin_headers(admin_user):
    return _headers(admin_user, "admin")


@pytest.fixture
def foreman_headers(foreman_user):
    return _headers(foreman_user, "foreman")


@pytest.fixture
def worker_headers(worker_user):
    return _headers(worker_user, "worker")


@pytest.fixture
def secret_headers():
    return {"X-Admin-Secret": "test-admin-secret"}


@pytest.fixture
def make_worker(db_session):
    def _make(full_name="Иван Петров", daily_rate="3000", **kwargs):
        worker = Worker(full_name=full_name, daily_rate=Decimal(daily_rate), **kwargs)
        db_session.add(worker)
        db_session.commit()
        return worker

    return _make


@pytest.fixture
def today():
    return date.today()


@pytest.fixture
def vendor_reply(monkeypatch):
    """vendor_reply(status_code, text=..., json_body=...) → every outbound httpx.AsyncClient call gets it."""
    real_client = httpx.AsyncClient
    requests = []

    def install(status_code=200, text="", json_body=None):
        def handler(request):
            requests.append(request)
            if json_body is not None:
                return httpx.Response(status_code, json=json_body)
            return httpx.Response(status_code, text=text)

        def client(**kwargs):
            return real_client(transport=httpx.MockTransport(handler), **kwargs)

        monkeypatch.setattr(httpx, "AsyncClient", client)
        return requests

    return install
