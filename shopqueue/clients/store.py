from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Protocol, Sequence

import httpx

from shopqueue.services.exceptions import StoreUnavailableError, UniqueViolationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Filter:
    """A single column predicate. ``op`` is one of ``eq``, ``neq`` or ``in``."""

    column: str
    op: str
    value: Any

    def matches(self, record: Dict[str, Any]) -> bool:
        current = record.get(self.column)
        if self.op == "eq":
            return _same(current, self.value)
        if self.op == "neq":
            return not _same(current, self.value)
        if self.op == "in":
            return any(_same(current, candidate) for candidate in self.value)
        raise ValueError(f"Unsupported filter operator '{self.op}'")

    def to_query(self) -> tuple[str, str]:
        if self.op == "in":
            values = ",".join(_plain(value) for value in self.value)
            return self.column, f"in.({values})"
        return self.column, f"{self.op}.{_plain(self.value)}"


def eq(column: str, value: Any) -> Filter:
    return Filter(column, "eq", value)


def neq(column: str, value: Any) -> Filter:
    return Filter(column, "neq", value)


def in_(column: str, values: Iterable[Any]) -> Filter:
    return Filter(column, "in", tuple(values))


def _plain(value: Any) -> str:
    if hasattr(value, "value"):
        value = value.value
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


def _same(left: Any, right: Any) -> bool:
    if left is None or right is None:
        return left is right
    return _plain(left) == _plain(right)


@dataclass(frozen=True)
class StoreTables:
    appointments: str = "app_appointments"
    providers: str = "app_barbers"
    services: str = "app_services"


class StoreChange(Protocol):
    event_type: str
    new: Optional[Dict[str, Any]]
    old: Optional[Dict[str, Any]]


class RecordStore(Protocol):
    """Operations the engine needs from the persistent record store."""

    supports_subscriptions: bool

    async def find(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        *,
        order_by: Sequence[str] | None = None,
        limit: int | None = None,
    ) -> List[Dict[str, Any]]:
        ...

    async def insert(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        ...

    async def update(
        self, table: str, filters: Sequence[Filter], patch: Dict[str, Any]
    ) -> List[Dict[str, Any]]:
        ...

    async def delete(self, table: str, filters: Sequence[Filter]) -> int:
        ...

    def subscribe(
        self, table: str, event_types: Sequence[str] = ("INSERT", "UPDATE", "DELETE")
    ) -> AsyncIterator[StoreChange]:
        ...

    async def close(self) -> None:
        ...


class RemoteRecordStore:
    """Async client for a PostgREST-style record store (e.g. Supabase REST)."""

    supports_subscriptions = False

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = str(base_url).rstrip("/")
        self._timeout = timeout
        self._headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if api_key:
            self._headers.update({"apikey": api_key, "Authorization": f"Bearer {api_key}"})
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _build_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            headers=self._headers,
            transport=self._transport,
        )

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = self._build_client()
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def _params(
        filters: Sequence[Filter],
        order_by: Sequence[str] | None = None,
        limit: int | None = None,
    ) -> List[tuple[str, str]]:
        params = [item.to_query() for item in filters]
        if order_by:
            parts = []
            for column in order_by:
                if column.startswith("-"):
                    parts.append(f"{column[1:]}.desc")
                else:
                    parts.append(f"{column}.asc")
            params.append(("order", ",".join(parts)))
        if limit is not None:
            params.append(("limit", str(limit)))
        return params

    async def _request(
        self,
        method: str,
        table: str,
        *,
        params: List[tuple[str, str]] | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> Any:
        client = self._ensure_client()
        headers = {"Prefer": prefer} if prefer else None
        try:
            response = await client.request(
                method, f"/{table}", params=params, json=json, headers=headers
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status_code = exc.response.status_code
            if status_code == 409:
                raise UniqueViolationError(
                    f"Record store rejected write to '{table}': unique violation", cause=exc
                ) from exc
            logger.exception("Record store returned error %s", status_code)
            raise StoreUnavailableError(
                "Record store returned an error response",
                status_code=status_code,
                cause=exc,
            ) from exc
        except httpx.RequestError as exc:
            logger.exception("Unable to reach record store: %s", exc)
            raise StoreUnavailableError(
                "Unable to reach record store", status_code=None, cause=exc
            ) from exc
        if not response.content:
            return None
        return response.json()

    async def find(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        *,
        order_by: Sequence[str] | None = None,
        limit: int | None = None,
    ) -> List[Dict[str, Any]]:
        params = [("select", "*")] + self._params(filters, order_by, limit)
        data = await self._request("GET", table, params=params)
        return list(data or [])

    async def insert(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        payload = {key: value for key, value in record.items() if key != "id" or value}
        data = await self._request(
            "POST", table, json=payload, prefer="return=representation"
        )
        if isinstance(data, list):
            if not data:
                raise StoreUnavailableError(f"Record store returned no row for insert into '{table}'")
            return data[0]
        return data

    async def update(
        self, table: str, filters: Sequence[Filter], patch: Dict[str, Any]
    ) -> List[Dict[str, Any]]:
        if not filters:
            raise ValueError("Refusing to update every row; pass at least one filter")
        data = await self._request(
            "PATCH",
            table,
            params=self._params(filters),
            json=patch,
            prefer="return=representation",
        )
        return list(data or [])

    async def delete(self, table: str, filters: Sequence[Filter]) -> int:
        if not filters:
            raise ValueError("Refusing to delete every row; pass at least one filter")
        data = await self._request(
            "DELETE", table, params=self._params(filters), prefer="return=representation"
        )
        return len(data or [])

    def subscribe(
        self, table: str, event_types: Sequence[str] = ("INSERT", "UPDATE", "DELETE")
    ) -> AsyncIterator[StoreChange]:
        raise StoreUnavailableError("Remote record store does not provide a change feed")
