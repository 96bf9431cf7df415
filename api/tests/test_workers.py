"""
Worker CRUD Tests - Create, Read, Update, Delete, Balance, Rating, RBAC

Tests:
1. Admin creates / updates workers, foreman reads only
2. List filtering and pagination
3. Delete blocked by active assignment, cascades otherwise
4. Outstanding balance and rating endpoints
"""
from datetime import timedelta
from decimal import Decimal

from api.models import Attendance, AuditLog, Payment, Project, WorkerAssignment


def test_create_worker_admin(client, admin_headers, db_session):
    response = client.post("/api/workers", headers=admin_headers, json={
        "full_name": "Сергей Кузнецов",
        "phone": "+79001234567",
        "daily_rate": 3500,
        "position": "каменщик",
    })

    assert response.status_code == 201, f"Expected 201, got {response.status_code}"
    worker = response.json()
    assert worker["full_name"] == "Сергей Кузнецов"
    assert worker["daily_rate"] == 3500
    assert worker["status"] == "active"

    audit = db_session.query(AuditLog).filter(AuditLog.action == "WORKER_CREATE").one()
    assert audit.record_id == str(worker["id"])


def test_create_worker_forbidden_for_foreman(client, foreman_headers):
    response = client.post("/api/workers", headers=foreman_headers, json={"full_name": "X", "daily_rate": 1})
    assert response.status_code == 403


def test_create_worker_rejects_negative_rate(client, admin_headers):
    response = client.post("/api/workers", headers=admin_headers, json={"full_name": "X", "daily_rate": -5})
    assert response.status_code == 422


def test_list_workers_filters(client, foreman_headers, make_worker):
    make_worker("Иван Петров")
    make_worker("Пётр Сидоров", status="inactive")
    make_worker("Иван Смирнов")

    data = client.get("/api/workers", headers=foreman_headers, params={"search": "иван"}).json()
    assert data["total"] == 2
    assert [w["full_name"] for w in data["workers"]] == ["Иван Петров", "Иван Смирнов"]

    inactive = client.get("/api/workers", headers=foreman_headers, params={"status": "inactive"}).json()
    assert [w["full_name"] for w in inactive["workers"]] == ["Пётр Сидоров"]

    page = client.get("/api/workers", headers=foreman_headers, params={"page": 2, "page_size": 2}).json()
    assert page["total"] == 3
    assert len(page["workers"]) == 1


def test_get_worker_not_found(client, foreman_headers):
    assert client.get("/api/workers/9999", headers=foreman_headers).status_code == 404


def test_update_worker_partial(client, admin_headers, make_worker):
    worker = make_worker()

    response = client.put(f"/api/workers/{worker.id}", headers=admin_headers, json={"daily_rate": 4000})

    assert response.status_code == 200
    assert response.json()["daily_rate"] == 4000
    assert response.json()["full_name"] == "Иван Петров"


def test_delete_blocked_by_active_assignment(client, admin_headers, db_session, make_worker, today):
    worker = make_worker()
    project = Project(name="Дом на Лесной")
    db_session.add(project)
    db_session.flush()
    db_session.add(WorkerAssignment(worker_id=worker.id, project_id=project.id, start_date=today))
    db_session.commit()

    response = client.delete(f"/api/workers/{worker.id}", headers=admin_headers)

    assert response.status_code == 409
    assert "active project" in response.json()["detail"]
    assert client.get(f"/api/workers/{worker.id}", headers=admin_headers).status_code == 200


def test_delete_cascades_history(client, admin_headers, db_session, make_worker, today):
    worker = make_worker()
    worker_id = worker.id
    project = Project(name="Склад")
    db_session.add(project)
    db_session.flush()
    db_session.add_all([
        Attendance(worker_id=worker_id, date=today, status="present"),
        Payment(worker_id=worker_id, date=today, amount=Decimal("1000")),
        WorkerAssignment(worker_id=worker_id, project_id=project.id,
                         start_date=today - timedelta(days=30), end_date=today - timedelta(days=1)),
    ])
    db_session.commit()

    response = client.delete(f"/api/workers/{worker_id}", headers=admin_headers)

    assert response.status_code == 204
    db_session.expire_all()
    assert db_session.query(Attendance).filter(Attendance.worker_id == worker_id).count() == 0
    assert db_session.query(Payment).filter(Payment.worker_id == worker_id).count() == 0
    assert db_session.query(WorkerAssignment).filter(WorkerAssignment.worker_id == worker_id).count() == 0
    assert db_session.query(AuditLog).filter(AuditLog.action == "WORKER_DELETE").count() == 1


def test_balance(client, admin_headers, db_session, make_worker, today):
    worker = make_worker(daily_rate="3000")
    for offset, state in enumerate(["present", "present", "present", "absent"]):
        db_session.add(Attendance(worker_id=worker.id, date=today - timedelta(days=offset), status=state))
    db_session.add(Payment(worker_id=worker.id, date=today, amount=Decimal("5000")))
    db_session.commit()

    balance = client.get(f"/api/workers/{worker.id}/balance", headers=admin_headers).json()

    assert balance["present_days"] == 3
    assert balance["total_earned"] == 9000
    assert balance["total_paid"] == 5000
    assert balance["outstanding_balance"] == 4000


def test_balance_admin_only(client, foreman_headers, make_worker):
    worker = make_worker()
    assert client.get(f"/api/workers/{worker.id}/balance", headers=foreman_headers).status_code == 403


def test_rating_endpoints(client, admin_headers, db_session, make_worker, today):
    worker = make_worker(daily_rate="3000")
    make_worker("Без смен", daily_rate="2000")
    for offset in range(10):
        db_session.add(Attendance(worker_id=worker.id, date=today - timedelta(days=offset), status="present"))
    db_session.add(Payment(worker_id=worker.id, date=today, amount=Decimal("15000")))
    db_session.commit()

    rating = client.get(f"/api/workers/{worker.id}/rating", headers=admin_headers).json()
    assert rating["overall_rating"] == 94.0
    assert rating["badge"] == "excellent"

    detail = client.get(f"/api/workers/{worker.id}/rating", headers=admin_headers,
                        params={"variant": "detail"}).json()
    assert detail["overall_rating"] == 87.5

    ranked = client.get("/api/workers/ratings", headers=admin_headers).json()
    assert [r["full_name"] for r in ranked] == ["Иван Петров", "Без смен"]
