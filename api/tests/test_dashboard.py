"""
Dashboard Tests - KPIs, role-dependent financial keys, activity feed
"""
from decimal import Decimal

from api.models import Attendance, Payment, Project


def _seed(db_session, make_worker, today):
    star = make_worker("Иван Петров", daily_rate="3000")
    make_worker("Пётр Сидоров", daily_rate="2500")
    make_worker("Уволенный", status="fired")
    db_session.add_all([
        Attendance(worker_id=star.id, date=today, status="present"),
        Payment(worker_id=star.id, date=today, amount=Decimal("3000")),
        Project(name="Активный", status="active"),
        Project(name="План", status="planning"),
    ])
    db_session.commit()


def test_summary_admin(client, admin_headers, db_session, make_worker, today):
    _seed(db_session, make_worker, today)

    response = client.get("/api/dashboard/summary", headers=admin_headers)

    assert response.status_code == 200, f"Expected 200, got {response.status_code}"
    data = response.json()
    assert data["workers_total"] == 3
    assert data["workers_active"] == 2
    assert data["present_today"] == 1
    assert data["active_projects"] == 1
    assert data["payments_this_month"] == 3000
    assert [w["full_name"] for w in data["top_workers"]] == ["Иван Петров", "Пётр Сидоров"]


def test_summary_top_limit(client, admin_headers, db_session, make_worker, today):
    _seed(db_session, make_worker, today)
    data = client.get("/api/dashboard/summary", headers=admin_headers, params={"top": 1}).json()
    assert len(data["top_workers"]) == 1


def test_summary_foreman_hides_money(client, foreman_headers, db_session, make_worker, today):
    _seed(db_session, make_worker, today)

    data = client.get("/api/dashboard/summary", headers=foreman_headers).json()

    assert data["workers_total"] == 3
    assert data["payments_this_month"] is None
    assert data["top_workers"] is None


def test_summary_worker_forbidden(client, worker_headers):
    assert client.get("/api/dashboard/summary", headers=worker_headers).status_code == 403


def test_recent_feed(client, admin_headers, foreman_headers):
    for name in ("A", "B", "C"):
        client.post("/api/workers", headers=admin_headers, json={"full_name": name, "daily_rate": 1000})

    feed = client.get("/api/dashboard/recent", headers=foreman_headers, params={"limit": 2}).json()

    assert len(feed) == 2
    assert all(item["action"] == "WORKER_CREATE" for item in feed)
    assert feed[0]["id"] > feed[1]["id"]
    assert feed[0]["created_at"] is not None
