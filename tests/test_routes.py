import pytest
from fastapi.testclient import TestClient

from shopqueue.dependencies.services import get_engine
from shopqueue.main import app


@pytest.fixture
def client(engine):
    app.dependency_overrides[get_engine] = lambda: engine
    yield TestClient(app)
    app.dependency_overrides.clear()


def _book(client, customer="Jamie", slot="14:30", provider="Marcus K."):
    return client.post(
        "/tools/appointment/book",
        json={
            "customer_name": customer,
            "provider_name": provider,
            "service_name": "Classic Cut",
            "date": "2025-06-05",
            "time_slot": slot,
        },
    )


def test_book_then_fetch_appointment(client) -> None:
    response = _book(client)
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "confirmed"

    fetched = client.get(f"/tools/appointment/{body['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["customer_name"] == "Jamie"


def test_double_booking_returns_409_with_suggestions(client) -> None:
    assert _book(client, "A").status_code == 200

    response = _book(client, "B")

    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["message"] == "Slot already reserved"
    assert detail["suggested_slots"] == ["15:15", "13:45", "16:00"]


def test_invalid_slot_returns_422(client) -> None:
    response = _book(client, slot="10:30")

    assert response.status_code == 422
    assert "not aligned" in response.json()["detail"]


def test_unknown_appointment_returns_404(client) -> None:
    assert client.get("/tools/appointment/APT-99999").status_code == 404
    assert client.post("/tools/appointment/APT-99999/cancel").status_code == 404


def test_lifecycle_routes(client) -> None:
    appointment_id = _book(client).json()["id"]

    early_complete = client.post(f"/tools/appointment/{appointment_id}/complete")
    assert early_complete.status_code == 409
    assert early_complete.json()["detail"]["current_status"] == "confirmed"

    checked_in = client.post(
        f"/tools/appointment/{appointment_id}/check-in",
        json={"actor_name": "Jamie", "actor_role": "customer"},
    )
    assert checked_in.status_code == 200
    assert checked_in.json()["status"] == "checked_in"

    completed = client.post(f"/tools/appointment/{appointment_id}/complete")
    assert completed.json()["status"] == "completed"

    cancel = client.post(f"/tools/appointment/{appointment_id}/cancel")
    assert cancel.status_code == 409


def test_list_appointments_paginates(client) -> None:
    for customer, slot in [("A", "10:00"), ("B", "10:45"), ("C", "11:30")]:
        _book(client, customer, slot)

    response = client.post(
        "/tools/appointment/list",
        json={"provider_name": "Marcus K.", "page": 2, "page_size": 2},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 3
    assert [item["customer_name"] for item in body["items"]] == ["C"]


def test_list_appointments_filters_by_status(client) -> None:
    first = _book(client, "A", "10:00").json()
    _book(client, "B", "10:45")
    client.post(f"/tools/appointment/{first['id']}/cancel")

    response = client.post("/tools/appointment/list", json={"status": ["cancelled"]})

    assert [item["id"] for item in response.json()["items"]] == [first["id"]]


def test_slot_listing(client) -> None:
    _book(client, slot="10:00")

    response = client.get("/tools/appointment/slots", params={"provider_name": "Marcus K.", "date": "2025-06-05"})

    assert response.status_code == 200
    slots = response.json()["slots"]
    assert slots[0] == {"time_slot": "10:00", "state": "booked", "appointment_id": "APT-00001"}
    assert slots[1]["state"] == "available"


def test_queue_routes(client) -> None:
    first = _book(client, "A", "10:00").json()
    _book(client, "B", "10:45")
    client.post(
        f"/tools/appointment/{first['id']}/check-in",
        json={"actor_name": "desk", "actor_role": "admin"},
    )

    queue = client.get("/tools/queue/Marcus K.").json()
    shop = client.get("/tools/queue/shop-wait").json()
    ticket = client.get("/tools/queue/ticket/B").json()

    assert [entry["position"] for entry in queue["entries"]] == [1, 2]
    assert shop["checked_in_count"] == 1
    assert shop["estimated_wait_minutes"] == 15
    assert ticket["position"] == 2
    assert ticket["estimated_wait_minutes"] == 15


def test_monitor_routes(client) -> None:
    _book(client, "A", "10:00")

    board = client.get("/tools/monitor/board")
    week = client.get("/tools/monitor/week/Marcus K.")
    schedule = client.get("/tools/monitor/schedule/Marcus K.", params={"date": "2025-06-05"})

    assert board.status_code == 200
    assert board.json()["total_waiting"] == 1
    assert len(week.json()["days"]) == 7
    assert schedule.json()["slots"][0]["state"] == "booked"


def test_sweeper_and_audit_routes(client, clock) -> None:
    appointment_id = _book(client, "A", "10:00").json()["id"]
    clock.set(clock.now().replace(hour=11))

    sweep = client.post("/tools/sweeper/run")
    logs = client.get("/tools/audit/logs", params={"limit": 5})

    assert sweep.status_code == 200
    assert sweep.json()["cancelled_ids"] == [appointment_id]
    actions = [item["action"] for item in logs.json()["items"]]
    assert actions[0] == "auto_cancel"
    assert "booked" in actions


def test_health_routes(client) -> None:
    assert client.get("/mcp/health").json() == {"ok": True}
    assert client.get("/mcp/info").json()["path"] == "/mcp"

    health = client.get("/health").json()
    assert health["store"] == "InMemoryRecordStore"
    assert health["bridge"] is None


def test_directory_route(client) -> None:
    everyone = client.get("/tools/directory").json()
    working = client.get("/tools/directory", params={"include_resting": "false"}).json()

    assert [item["name"] for item in everyone["providers"]] == ["Marcus K.", "James L.", "Victor Z."]
    assert [item["name"] for item in working["providers"]] == ["Marcus K.", "James L."]
    assert everyone["services"][0] == {
        "id": 1,
        "name": "Classic Cut",
        "price": 88.0,
        "duration_minutes": 45,
    }
