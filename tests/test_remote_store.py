import asyncio
import json
from datetime import date

import httpx
import pytest

from shopqueue.clients.store import RemoteRecordStore, eq, in_
from shopqueue.services.exceptions import StoreUnavailableError, UniqueViolationError


def _store(handler) -> RemoteRecordStore:
    return RemoteRecordStore(
        "https://example.supabase.co/rest/v1/",
        api_key="anon-key",
        transport=httpx.MockTransport(handler),
    )


def test_find_translates_filters_and_ordering() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["request"] = request
        return httpx.Response(200, json=[{"id": 1, "status": "confirmed"}])

    store = _store(handler)
    rows = asyncio.run(
        store.find(
            "app_appointments",
            [eq("provider_name", "Marcus K."), eq("date", date(2025, 6, 5)), in_("status", ["pending", "confirmed"])],
            order_by=["date", "-time_slot"],
            limit=5,
        )
    )

    request = seen["request"]
    assert rows == [{"id": 1, "status": "confirmed"}]
    assert request.method == "GET"
    assert request.url.path == "/rest/v1/app_appointments"
    assert request.url.params["provider_name"] == "eq.Marcus K."
    assert request.url.params["date"] == "eq.2025-06-05"
    assert request.url.params["status"] == "in.(pending,confirmed)"
    assert request.url.params["order"] == "date.asc,time_slot.desc"
    assert request.url.params["limit"] == "5"
    assert request.headers["apikey"] == "anon-key"
    assert request.headers["authorization"] == "Bearer anon-key"


def test_insert_asks_for_the_created_row() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["request"] = request
        body = json.loads(request.content)
        return httpx.Response(201, json=[{**body, "id": 42}])

    store = _store(handler)
    created = asyncio.run(store.insert("app_appointments", {"id": None, "customer_name": "Jamie"}))

    assert created == {"customer_name": "Jamie", "id": 42}
    assert seen["request"].headers["prefer"] == "return=representation"
    assert "id" not in json.loads(seen["request"].content)


def test_conditional_update_returns_only_matched_rows() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "PATCH"
        assert request.url.params["status"] == "eq.confirmed"
        return httpx.Response(200, json=[])

    store = _store(handler)
    rows = asyncio.run(
        store.update(
            "app_appointments",
            [eq("id", "APT-1"), eq("status", "confirmed")],
            {"status": "checked_in"},
        )
    )

    assert rows == []


def test_unique_violation_is_reported_as_such() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(409, json={"code": "23505", "message": "duplicate key"})

    store = _store(handler)

    with pytest.raises(UniqueViolationError):
        asyncio.run(store.insert("app_appointments", {"customer_name": "Jamie"}))


def test_server_error_marks_store_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"message": "maintenance"})

    store = _store(handler)

    with pytest.raises(StoreUnavailableError) as excinfo:
        asyncio.run(store.find("app_appointments"))
    assert excinfo.value.status_code == 503


def test_network_failure_marks_store_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    store = _store(handler)

    with pytest.raises(StoreUnavailableError) as excinfo:
        asyncio.run(store.find("app_appointments"))
    assert excinfo.value.status_code is None


def test_unfiltered_update_is_refused() -> None:
    store = _store(lambda request: httpx.Response(200, json=[]))

    with pytest.raises(ValueError):
        asyncio.run(store.update("app_appointments", [], {"status": "cancelled"}))


def test_remote_store_has_no_change_feed() -> None:
    store = _store(lambda request: httpx.Response(200, json=[]))

    assert store.supports_subscriptions is False
    with pytest.raises(StoreUnavailableError):
        store.subscribe("app_appointments")
