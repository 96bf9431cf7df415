"""
Project Tests - CRUD, tasks, worker assignments, delete rules
"""
from datetime import timedelta
from decimal import Decimal

from api.models import Attendance, ExpenseCategory, ProjectExpense


def _create_project(client, headers, **overrides):
    payload = {"name": "ЖК Северный", "budget": 1000000, "status": "active"}
    payload.update(overrides)
    response = client.post("/api/projects", headers=headers, json=payload)
    assert response.status_code == 201, f"Expected 201, got {response.status_code}: {response.text}"
    return response.json()


def test_create_project_with_client(client, admin_headers):
    owner = client.post("/api/clients", headers=admin_headers, json={"name": "ООО Заказчик"}).json()

    project = _create_project(client, admin_headers, client_id=owner["id"])

    assert project["client_name"] == "ООО Заказчик"
    assert project["budget"] == 1000000
    assert project["priority"] == "medium"


def test_create_project_unknown_client(client, admin_headers):
    response = client.post("/api/projects", headers=admin_headers, json={"name": "X", "client_id": 77})
    assert response.status_code == 404


def test_create_project_rejects_inverted_dates(client, admin_headers, today):
    response = client.post("/api/projects", headers=admin_headers, json={
        "name": "X",
        "start_date": today.isoformat(),
        "end_date": (today - timedelta(days=1)).isoformat(),
    })
    assert response.status_code == 422


def test_update_rejects_end_before_existing_start(client, admin_headers, today):
    project = _create_project(client, admin_headers, start_date=today.isoformat())

    response = client.put(f"/api/projects/{project['id']}", headers=admin_headers, json={
        "end_date": (today - timedelta(days=5)).isoformat(),
    })
    assert response.status_code == 400


def test_foreman_reads_but_cannot_create(client, admin_headers, foreman_headers):
    _create_project(client, admin_headers)

    assert client.get("/api/projects", headers=foreman_headers).status_code == 200
    assert client.post("/api/projects", headers=foreman_headers, json={"name": "Y"}).status_code == 403


def test_list_projects_by_status(client, admin_headers):
    _create_project(client, admin_headers, name="A", status="active")
    _create_project(client, admin_headers, name="B", status="completed")

    done = client.get("/api/projects", headers=admin_headers, params={"status": "completed"}).json()
    assert [p["name"] for p in done] == ["B"]


def test_tasks_lifecycle(client, admin_headers, foreman_headers, make_worker, today):
    project = _create_project(client, admin_headers)
    worker = make_worker()

    task = client.post(f"/api/projects/{project['id']}/tasks", headers=foreman_headers, json={
        "title": "Заливка фундамента",
        "assigned_worker_id": worker.id,
        "estimated_hours": 16,
    })
    assert task.status_code == 201
    task = task.json()
    assert task["status"] == "todo"
    assert task["completed_date"] is None

    done = client.put(f"/api/projects/{project['id']}/tasks/{task['id']}", headers=foreman_headers,
                      json={"status": "completed", "actual_hours": 20}).json()
    assert done["status"] == "completed"
    assert done["completed_date"] == today.isoformat()

    tasks = client.get(f"/api/projects/{project['id']}/tasks", headers=foreman_headers).json()
    assert len(tasks) == 1


def test_task_in_wrong_project_is_404(client, admin_headers, foreman_headers):
    first = _create_project(client, admin_headers, name="A")
    second = _create_project(client, admin_headers, name="B")
    task = client.post(f"/api/projects/{first['id']}/tasks", headers=foreman_headers, json={"title": "T"}).json()

    response = client.put(f"/api/projects/{second['id']}/tasks/{task['id']}", headers=foreman_headers,
                          json={"status": "in_progress"})
    assert response.status_code == 404


def test_assign_skips_already_active(client, admin_headers, foreman_headers, make_worker):
    project = _create_project(client, admin_headers)
    a = make_worker("Иван Петров")
    b = make_worker("Пётр Сидоров")
    url = f"/api/projects/{project['id']}/assignments"

    first = client.post(url, headers=foreman_headers, json={"worker_ids": [a.id]})
    assert first.status_code == 201
    assert len(first.json()) == 1

    second = client.post(url, headers=foreman_headers, json={"worker_ids": [a.id, b.id, b.id]}).json()
    assert [row["worker_id"] for row in second] == [b.id]

    active = client.get(url, headers=foreman_headers, params={"active_only": True}).json()
    assert len(active) == 2


def test_end_assignment_twice_conflicts(client, admin_headers, foreman_headers, make_worker):
    project = _create_project(client, admin_headers)
    worker = make_worker()
    url = f"/api/projects/{project['id']}/assignments"
    assignment = client.post(url, headers=foreman_headers, json={"worker_ids": [worker.id]}).json()[0]

    ended = client.post(f"{url}/{assignment['id']}/end", headers=foreman_headers)
    assert ended.status_code == 200
    assert ended.json()["end_date"] is not None

    assert client.post(f"{url}/{assignment['id']}/end", headers=foreman_headers).status_code == 409


def test_delete_project_blocked_then_allowed(client, admin_headers, foreman_headers, db_session,
                                             make_worker, today):
    project = _create_project(client, admin_headers)
    worker = make_worker()
    url = f"/api/projects/{project['id']}/assignments"
    assignment = client.post(url, headers=foreman_headers, json={"worker_ids": [worker.id]}).json()[0]

    category = ExpenseCategory(name="Материалы", type="materials")
    db_session.add(category)
    db_session.flush()
    db_session.add_all([
        ProjectExpense(project_id=project["id"], category_id=category.id, amount=Decimal("500"), date=today),
        Attendance(worker_id=worker.id, project_id=project["id"], date=today, status="present"),
    ])
    db_session.commit()

    blocked = client.delete(f"/api/projects/{project['id']}", headers=admin_headers)
    assert blocked.status_code == 409

    client.post(f"{url}/{assignment['id']}/end", headers=foreman_headers)
    assert client.delete(f"/api/projects/{project['id']}", headers=admin_headers).status_code == 204

    db_session.expire_all()
    assert db_session.query(ProjectExpense).count() == 0
    attendance = db_session.query(Attendance).one()
    assert attendance.project_id is None
