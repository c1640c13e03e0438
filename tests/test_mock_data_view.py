from __future__ import annotations

import asyncio

import pytest
from fastapi.testclient import TestClient

from shopqueue.clients.store import RemoteRecordStore
from shopqueue.config import Settings
from shopqueue.dependencies.services import get_engine
from shopqueue.main import app
from shopqueue.schemas.appointment import ReservationRequest
from shopqueue.services.engine import build_engine


@pytest.fixture
def demo_engine(make_engine):
    return make_engine(seed_demo_data=True)


@pytest.fixture
def client(demo_engine):
    app.dependency_overrides[get_engine] = lambda: demo_engine
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_mock_data_view_renders_seed_data(client) -> None:
    response = client.get("/mock-data")
    assert response.status_code == 200
    body = response.text

    assert "Mock Data Overview" in body
    assert "Marcus K." in body  # seeded provider
    assert "Wash, Cut &amp; Care" in body  # seeded service, escaped
    assert "Demo User" in body  # seeded appointment
    assert "No records found." in body  # audit log starts empty


def test_mock_data_view_includes_created_records(client, demo_engine) -> None:
    asyncio.run(
        demo_engine.guard.reserve(
            ReservationRequest(
                customer_name="Test Customer",
                provider_name="James L.",
                service_name="Director Styling",
                date="2025-06-05",
                time_slot="16:00",
            )
        )
    )

    response = client.get("/mock-data")
    assert response.status_code == 200

    body = response.text
    assert "Test Customer" in body
    assert "booked" in body  # audit entry


def test_delete_mock_data_record_removes_entry(client, demo_engine) -> None:
    appointment_id = next(
        row["id"]
        for row in demo_engine.store.rows(demo_engine.tables.appointments)
        if row["customer_name"] == "Mike"
    )

    delete_response = client.delete(f"/mock-data/appointments/{appointment_id}")

    assert delete_response.status_code == 200
    payload = delete_response.json()
    assert payload["status"] == "deleted"
    assert payload["record_id"] == appointment_id

    remaining = [row["customer_name"] for row in demo_engine.store.rows(demo_engine.tables.appointments)]
    assert "Mike" not in remaining


def test_delete_mock_data_provider_by_numeric_id(client, demo_engine) -> None:
    response = client.delete("/mock-data/providers/3")

    assert response.status_code == 200
    names = [row["name"] for row in demo_engine.store.rows(demo_engine.tables.providers)]
    assert names == ["Marcus K.", "James L."]


def test_delete_mock_data_unknown_collection_returns_404(client) -> None:
    response = client.delete("/mock-data/unknown/123")

    assert response.status_code == 404
    assert response.json()["detail"] == "Unsupported mock data collection"


def test_delete_missing_record_returns_404(client) -> None:
    response = client.delete("/mock-data/appointments/APT-99999")

    assert response.status_code == 404
    assert response.json()["detail"] == "Record not found"


def test_mock_data_view_disabled_for_remote_store(clock) -> None:
    engine = build_engine(
        Settings(use_mock_data=False, store_base_url="https://example.supabase.co/rest/v1"),
        clock=clock,
    )
    assert isinstance(engine.store, RemoteRecordStore)
    app.dependency_overrides[get_engine] = lambda: engine
    try:
        response = TestClient(app).get("/mock-data")
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 404
    assert engine.bridge is not None
