from __future__ import annotations

import logging
from typing import List, Optional

from shopqueue.clients.store import RecordStore, StoreTables, eq
from shopqueue.schemas.directory import Provider, Service

logger = logging.getLogger(__name__)


class DirectoryService:
    """Read-only access to providers and services."""

    def __init__(self, store: RecordStore, tables: StoreTables) -> None:
        self._store = store
        self._tables = tables

    async def list_providers(self, *, include_resting: bool = True) -> List[Provider]:
        rows = await self._store.find(self._tables.providers, order_by=["-rating", "id"])
        providers = [Provider.model_validate(row) for row in rows]
        if not include_resting:
            providers = [provider for provider in providers if provider.status != "rest"]
        return providers

    async def get_provider(self, name: str) -> Optional[Provider]:
        rows = await self._store.find(self._tables.providers, [eq("name", name)], limit=1)
        if not rows:
            logger.debug("Provider %s not found", name)
            return None
        return Provider.model_validate(rows[0])

    async def list_services(self) -> List[Service]:
        rows = await self._store.find(self._tables.services, order_by=["price"])
        return [Service.model_validate(row) for row in rows]

    async def get_service(self, name: str) -> Optional[Service]:
        rows = await self._store.find(self._tables.services, [eq("name", name)], limit=1)
        if not rows:
            return None
        return Service.model_validate(rows[0])
