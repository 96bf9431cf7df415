"""
Payment Tests - append-only ledger, admin only
"""
from datetime import timedelta


def test_create_and_list_payments(client, admin_headers, make_worker, today):
    worker = make_worker()

    created = client.post("/api/payments", headers=admin_headers, json={
        "worker_id": worker.id,
        "date": today.isoformat(),
        "amount": "15000.50",
        "description": "аванс",
    })
    assert created.status_code == 201, f"Expected 201, got {created.status_code}"
    assert created.json()["amount"] == 15000.5

    client.post("/api/payments", headers=admin_headers, json={
        "worker_id": worker.id,
        "date": (today - timedelta(days=3)).isoformat(),
        "amount": 2000,
    })

    listed = client.get("/api/payments", headers=admin_headers, params={"worker_id": worker.id}).json()
    assert [p["amount"] for p in listed] == [15000.5, 2000]

    recent = client.get("/api/payments", headers=admin_headers,
                        params={"date_from": (today - timedelta(days=1)).isoformat()}).json()
    assert len(recent) == 1


def test_payment_amount_must_be_positive(client, admin_headers, make_worker, today):
    worker = make_worker()
    response = client.post("/api/payments", headers=admin_headers, json={
        "worker_id": worker.id, "date": today.isoformat(), "amount": 0,
    })
    assert response.status_code == 422


def test_payment_unknown_worker(client, admin_headers, today):
    response = client.post("/api/payments", headers=admin_headers, json={
        "worker_id": 404, "date": today.isoformat(), "amount": 100,
    })
    assert response.status_code == 404


def test_payments_hidden_from_foreman(client, foreman_headers):
    assert client.get("/api/payments", headers=foreman_headers).status_code == 403


def test_admin_secret_can_record_payment(client, secret_headers, make_worker, today):
    worker = make_worker()
    response = client.post("/api/payments", headers=secret_headers, json={
        "worker_id": worker.id, "date": today.isoformat(), "amount": 500,
    })
    assert response.status_code == 201
