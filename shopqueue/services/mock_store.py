from __future__ import annotations

import asyncio
import itertools
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, DefaultDict, Dict, Iterable, List, Optional, Sequence, Tuple

from shopqueue.clients.store import Filter, StoreTables
from shopqueue.services.exceptions import UniqueViolationError

logger = logging.getLogger(__name__)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _sort_key(value: Any) -> Tuple[bool, Any]:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (value is None, value)
    return (value is None, "" if value is None else str(value))


@dataclass
class StoreChangeRecord:
    event_type: str
    table: str
    new: Optional[Dict[str, Any]] = None
    old: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class UniqueConstraint:
    """Columns that must be unique among rows whose ``where_column`` is in ``where_values``."""

    columns: Tuple[str, ...]
    where_column: Optional[str] = None
    where_values: Tuple[str, ...] = ()

    def applies_to(self, record: Dict[str, Any]) -> bool:
        if self.where_column is None:
            return True
        return str(record.get(self.where_column)) in self.where_values

    def key(self, record: Dict[str, Any]) -> Tuple[str, ...]:
        return tuple(str(record.get(column)) for column in self.columns)


class StoreFeed:
    """Async iterator over changes to one table of the in-memory store."""

    def __init__(self, store: "InMemoryRecordStore", table: str, event_types: Sequence[str]) -> None:
        self._store = store
        self.table = table
        self.event_types = {event_type.upper() for event_type in event_types}
        self._queue: asyncio.Queue[Optional[StoreChangeRecord]] = asyncio.Queue()
        self.closed = False

    def push(self, change: StoreChangeRecord) -> None:
        if self.closed or change.event_type not in self.event_types:
            return
        self._queue.put_nowait(change)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._store._feeds.discard(self)
        self._queue.put_nowait(None)

    def __aiter__(self) -> "StoreFeed":
        return self

    async def __anext__(self) -> StoreChangeRecord:
        item = await self._queue.get()
        if item is None:
            raise StopAsyncIteration
        return item


class _IdAllocator:
    def __init__(self, prefix: str | None) -> None:
        self._prefix = prefix
        self._counter = itertools.count(1)

    def next_id(self) -> str | int:
        value = next(self._counter)
        if self._prefix is None:
            return value
        return f"{self._prefix}-{value:05d}"

    def skip_past(self, existing: Any) -> None:
        if self._prefix is None and isinstance(existing, int):
            current = next(self._counter)
            self._counter = itertools.count(max(current, existing + 1))


class InMemoryRecordStore:
    """Process-local record store used for demos, tests and offline mode."""

    supports_subscriptions = True

    def __init__(
        self,
        tables: StoreTables | None = None,
        *,
        seed: bool = True,
        demo_date: date | None = None,
        unique_active_slots: bool = True,
    ) -> None:
        self.tables = tables or StoreTables()
        self._rows: DefaultDict[str, Dict[Any, Dict[str, Any]]] = defaultdict(dict)
        self._ids: Dict[str, _IdAllocator] = {
            self.tables.appointments: _IdAllocator("APT"),
        }
        self._constraints: DefaultDict[str, List[UniqueConstraint]] = defaultdict(list)
        self._feeds: set[StoreFeed] = set()
        if unique_active_slots:
            self._constraints[self.tables.appointments].append(
                UniqueConstraint(
                    columns=("provider_name", "date", "time_slot"),
                    where_column="status",
                    where_values=("pending", "confirmed", "checked_in"),
                )
            )
        if seed:
            self._seed_directory()
        if demo_date is not None:
            self._seed_appointments(demo_date)

    def _seed_directory(self) -> None:
        providers = [
            {"id": 1, "name": "Marcus K.", "title": "Fades / Hair tattoo", "rating": 4.9, "status": "active", "schedule": []},
            {"id": 2, "name": "James L.", "title": "Classic cuts / Styling", "rating": 4.8, "status": "active", "schedule": []},
            {"id": 3, "name": "Victor Z.", "title": "Texture / Colour", "rating": 4.7, "status": "rest", "schedule": []},
        ]
        services = [
            {"id": 1, "name": "Classic Cut", "price": 88.0, "duration_minutes": 45},
            {"id": 2, "name": "Director Styling", "price": 128.0, "duration_minutes": 60},
            {"id": 3, "name": "Wash, Cut & Care", "price": 168.0, "duration_minutes": 90},
            {"id": 4, "name": "Colour & Perm", "price": 388.0, "duration_minutes": 120},
        ]
        for record in providers:
            self._put(self.tables.providers, record)
        for record in services:
            self._put(self.tables.services, record)

    def _seed_appointments(self, demo_date: date) -> None:
        now = _utc_now_iso()
        seeds = [
            {"customer_name": "Demo User", "provider_name": "Marcus K.", "service_name": "Classic Cut", "price": 88.0, "duration_minutes": 45, "time_slot": "14:00", "status": "confirmed"},
            {"customer_name": "Jason", "provider_name": "Marcus K.", "service_name": "Director Styling", "price": 128.0, "duration_minutes": 60, "time_slot": "10:00", "status": "checked_in"},
            {"customer_name": "Mike", "provider_name": "James L.", "service_name": "Colour & Perm", "price": 388.0, "duration_minutes": 120, "time_slot": "11:30", "status": "confirmed"},
        ]
        for record in seeds:
            record.update({"date": demo_date.isoformat(), "created_at": now, "updated_at": now})
            self._put(self.tables.appointments, record)
        logger.info("Seeded %s demo appointments for %s", len(seeds), demo_date)

    def _allocator(self, table: str) -> _IdAllocator:
        if table not in self._ids:
            self._ids[table] = _IdAllocator(None)
        return self._ids[table]

    def _put(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        row = dict(record)
        allocator = self._allocator(table)
        if row.get("id") is None:
            row["id"] = allocator.next_id()
        else:
            allocator.skip_past(row["id"])
        self._rows[table][row["id"]] = row
        return row

    def _check_unique(
        self, table: str, candidate: Dict[str, Any], ignore_id: Any = None
    ) -> None:
        for constraint in self._constraints.get(table, ()):
            if not constraint.applies_to(candidate):
                continue
            key = constraint.key(candidate)
            for row_id, row in self._rows[table].items():
                if row_id == ignore_id or not constraint.applies_to(row):
                    continue
                if constraint.key(row) == key:
                    raise UniqueViolationError(
                        f"Duplicate key {key} for {constraint.columns} in '{table}'"
                    )

    def _matching(self, table: str, filters: Sequence[Filter]) -> List[Dict[str, Any]]:
        return [
            row
            for row in self._rows[table].values()
            if all(item.matches(row) for item in filters)
        ]

    def _emit(self, change: StoreChangeRecord) -> None:
        for feed in list(self._feeds):
            if feed.table == change.table:
                feed.push(change)

    async def simulate_latency(self) -> None:
        """Yield to the event loop so concurrent callers interleave like real I/O."""

        await asyncio.sleep(0)

    async def find(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        *,
        order_by: Sequence[str] | None = None,
        limit: int | None = None,
    ) -> List[Dict[str, Any]]:
        await self.simulate_latency()
        rows = [dict(row) for row in self._matching(table, filters)]
        for column in reversed(list(order_by or [])):
            descending = column.startswith("-")
            name = column.lstrip("-")
            rows.sort(key=lambda row: _sort_key(row.get(name)), reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        return rows

    async def insert(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        await self.simulate_latency()
        self._check_unique(table, record)
        row = self._put(table, record)
        self._emit(StoreChangeRecord("INSERT", table, new=dict(row)))
        return dict(row)

    async def update(
        self, table: str, filters: Sequence[Filter], patch: Dict[str, Any]
    ) -> List[Dict[str, Any]]:
        if not filters:
            raise ValueError("Refusing to update every row; pass at least one filter")
        await self.simulate_latency()
        matches = self._matching(table, filters)
        for row in matches:
            self._check_unique(table, {**row, **patch}, ignore_id=row["id"])
        updated: List[Dict[str, Any]] = []
        for row in matches:
            old = dict(row)
            row.update(patch)
            updated.append(dict(row))
            self._emit(StoreChangeRecord("UPDATE", table, new=dict(row), old=old))
        return updated

    async def delete(self, table: str, filters: Sequence[Filter]) -> int:
        if not filters:
            raise ValueError("Refusing to delete every row; pass at least one filter")
        await self.simulate_latency()
        matches = self._matching(table, filters)
        for row in matches:
            self._rows[table].pop(row["id"], None)
            self._emit(StoreChangeRecord("DELETE", table, old=dict(row)))
        return len(matches)

    def subscribe(
        self, table: str, event_types: Sequence[str] = ("INSERT", "UPDATE", "DELETE")
    ) -> StoreFeed:
        feed = StoreFeed(self, table, event_types)
        self._feeds.add(feed)
        return feed

    def rows(self, table: str) -> Iterable[Dict[str, Any]]:
        """Direct read of a table. Intended for debugging views and tests."""

        return [dict(row) for row in self._rows[table].values()]

    async def close(self) -> None:
        for feed in list(self._feeds):
            feed.close()
