"""
Report Export Tests - CSV / JSON exports of the three report types
"""
import csv
import io
from datetime import date, timedelta
from decimal import Decimal

from api.endpoints_reports import rows_to_csv
from api.models import Attendance, Client, ExpenseCategory, Project, ProjectExpense


def _export(client, headers, report_type, fmt="csv", **filters):
    return client.post("/api/reports/export", headers=headers, json={
        "reportType": report_type,
        "format": fmt,
        "filters": filters,
    })


def _seed(db_session, make_worker, today):
    owner = Client(name="ООО Заказчик")
    db_session.add(owner)
    db_session.flush()
    house = Project(name="Дом", budget=Decimal("100000"), actual_cost=Decimal("80000"),
                    status="active", client_id=owner.id, progress_percentage=40)
    shed = Project(name="Сарай", status="planning")
    db_session.add_all([house, shed])
    db_session.flush()

    category = ExpenseCategory(name="Материалы", type="materials")
    db_session.add(category)
    db_session.flush()
    db_session.add_all([
        ProjectExpense(project_id=house.id, category_id=category.id, amount=Decimal("2500"),
                       date=today, description='Бетон "М300", 5 м3'),
        ProjectExpense(project_id=house.id, category_id=category.id, amount=Decimal("500"),
                       date=today - timedelta(days=1)),
    ])

    worker = make_worker("Иван Петров", daily_rate="3200", position="Каменщик")
    db_session.add_all([
        Attendance(worker_id=worker.id, project_id=house.id, date=today, status="present", hours_worked=8),
        Attendance(worker_id=worker.id, project_id=house.id, date=today - timedelta(days=1),
                   status="present", hours_worked=4),
        Attendance(worker_id=worker.id, date=today - timedelta(days=2), status="absent"),
    ])
    db_session.commit()
    return house.id


def test_financial_report_json(client, admin_headers, db_session, make_worker, today):
    _seed(db_session, make_worker, today)

    response = _export(client, admin_headers, "projects_financial", "json")

    assert response.status_code == 200
    assert response.headers["content-disposition"].startswith('attachment; filename="financial_report_')
    body = response.json()
    assert body["reportType"] == "projects_financial"
    assert body["totalRecords"] == 2

    house, shed = body["data"]
    assert house["Клиент"] == "ООО Заказчик"
    assert house["Прибыль"] == 20000
    assert house["Рентабельность %"] == 20
    assert house["Общие расходы"] == 3000
    assert shed["Клиент"] == "Не указан"
    assert shed["Рентабельность %"] == 0


def test_workers_performance_counts_present_days_only(client, admin_headers, db_session, make_worker, today):
    _seed(db_session, make_worker, today)

    rows = _export(client, admin_headers, "workers_performance", "json").json()["data"]

    assert len(rows) == 1
    row = rows[0]
    assert row["Рабочие дни"] == 2
    assert row["Общие часы"] == 12
    assert row["Проекты"] == 1
    assert row["Общий заработок"] == 4800
    assert row["Средний дневной заработок"] == 2400


def test_expenses_csv_is_quoted(client, admin_headers, db_session, make_worker, today):
    _seed(db_session, make_worker, today)

    response = _export(client, admin_headers, "expenses_breakdown", "csv")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    parsed = list(csv.DictReader(io.StringIO(response.text)))
    assert [r["Сумма"] for r in parsed] == ["500.0", "2500.0"]
    assert parsed[1]["Описание"] == 'Бетон "М300", 5 м3'
    assert response.text.splitlines()[0] == "Проект,Категория,Тип категории,Сумма,Дата,Описание"


def test_period_filter(client, admin_headers, db_session, make_worker, today):
    _seed(db_session, make_worker, today)

    rows = _export(client, admin_headers, "expenses_breakdown", "json",
                   startDate=today.isoformat(), endDate=today.isoformat()).json()["data"]
    assert len(rows) == 1


def test_project_filter(client, admin_headers, db_session, make_worker, today):
    house_id = _seed(db_session, make_worker, today)
    rows = _export(client, admin_headers, "projects_financial", "json", projectId=house_id).json()["data"]
    assert [r["Проект"] for r in rows] == ["Дом"]


def test_unknown_type_and_format(client, admin_headers):
    assert _export(client, admin_headers, "salaries").status_code == 400
    assert _export(client, admin_headers, "projects_financial", "xlsx").status_code == 400


def test_reports_admin_only(client, foreman_headers):
    assert _export(client, foreman_headers, "projects_financial").status_code == 403


def test_empty_csv():
    assert rows_to_csv([]) == ""
    assert rows_to_csv([{"a": 1, "b": "x,y"}]) == 'a,b\n1,"x,y"\n'


def test_default_period_starts_2024(client, admin_headers, db_session, make_worker):
    worker = make_worker()
    db_session.add(Attendance(worker_id=worker.id, date=date(2023, 12, 31), status="present"))
    db_session.commit()

    rows = _export(client, admin_headers, "workers_performance", "json").json()["data"]
    assert rows == []


def test_financial_csv_header_matches_every_row(client, admin_headers, db_session, make_worker, today):
    _seed(db_session, make_worker, today)
    db_session.add(Project(name="Баня, гараж", status="active", budget=Decimal("1000")))
    db_session.commit()

    response = _export(client, admin_headers, "projects_financial", "csv")

    assert response.status_code == 200
    header, *rows = list(csv.reader(io.StringIO(response.text)))
    assert len(rows) == 3
    for row in rows:
        assert len(row) == len(header), f"{len(header)} columns in header, {len(row)} in {row}"
    assert header[:2] == ["Проект", "Клиент"]
    assert rows[2][0] == "Баня, гараж"
