"""Pytest configuration and fixtures for the hospitals admin backend.

Provides an in-memory FakeStore standing in for the remote store, plus
sample rows shaped like the hospitals table.
"""

from __future__ import annotations

import asyncio
import itertools
from typing import Any, Dict, List, Optional

import pytest

from hospitaldesk.services.notifier import Notifier
from hospitaldesk.services.row_cache import RowCache
from hospitaldesk.services.store_client import (
    ChangeEvent,
    StoreError,
    StoreResult,
    Subscription,
    invoke_callback,
)


class FakeStore:
    """RemoteStore double: records every call, failures are switched on per test."""

    def __init__(self, rows: Optional[List[Dict[str, Any]]] = None):
        self.tables: Dict[str, List[Dict[str, Any]]] = {"hospitals": [dict(r) for r in rows or []]}
        self.calls: List[tuple] = []
        self.select_error: Optional[StoreError] = None
        self.select_exception: Optional[Exception] = None
        self.update_error: Optional[StoreError] = None
        self.update_exception: Optional[Exception] = None
        self.update_returns_rows = True
        self.partial_ids: set = set()
        self.insert_error_tables: set = set()
        self.insert_error_names: set = set()
        self.insert_exception: Optional[Exception] = None
        self.subscribe_exception: Optional[Exception] = None
        self.listen_exception: Optional[Exception] = None
        self.unsubscribe_exception: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None
        self.handles: List[Subscription] = []
        self.released: List[Subscription] = []
        self._ids = itertools.count(100)

    def count(self, method: str, table: Optional[str] = None) -> int:
        return sum(1 for c in self.calls if c[0] == method and (table is None or c[1] == table))

    def row(self, row_id, table: str = "hospitals") -> Optional[Dict[str, Any]]:
        for row in self.tables.get(table, []):
            if row.get("id") == row_id:
                return row
        return None

    def _apply(self, table: str, patch: Dict[str, Any], ids) -> List[Dict[str, Any]]:
        updated = []
        for row in self.tables.get(table, []):
            if row.get("id") in ids:
                row.update(patch)
                row["updated_at"] = "2024-06-01T00:00:00+00:00"
                updated.append(dict(row))
        return updated

    async def select(self, table, match=None, order_by=None, descending=False):
        self.calls.append(("select", table))
        if self.select_exception is not None:
            raise self.select_exception
        if self.select_error is not None:
            return StoreResult(error=self.select_error)
        rows = [dict(r) for r in self.tables.get(table, [])]
        if order_by:
            rows.sort(key=lambda r: r.get(order_by) or "", reverse=descending)
        return StoreResult(data=rows)

    async def update(self, table, patch, match):
        self.calls.append(("update", table, dict(patch), dict(match)))
        if self.gate is not None:
            await self.gate.wait()
        ids = match["id"]
        ids = set(ids) if isinstance(ids, (list, tuple, set)) else {ids}
        if self.update_exception is not None:
            raise self.update_exception
        if self.update_error is not None:
            self._apply(table, patch, ids & self.partial_ids)
            return StoreResult(error=self.update_error)
        rows = self._apply(table, patch, ids)
        return StoreResult(data=rows if self.update_returns_rows else [])

    async def insert(self, table, records):
        self.calls.append(("insert", table, [dict(r) for r in records]))
        if self.insert_exception is not None:
            raise self.insert_exception
        if table in self.insert_error_tables:
            return StoreResult(error=StoreError(f'relation "{table}" does not exist'))
        inserted = []
        for record in records:
            if record.get("name") in self.insert_error_names:
                return StoreResult(error=StoreError(f"duplicate name {record['name']}"))
            row = {"id": f"h{next(self._ids)}", **record}
            self.tables.setdefault(table, []).append(row)
            inserted.append(dict(row))
        return StoreResult(data=inserted)

    async def subscribe(self, table, event_mask, callback):
        self.calls.append(("subscribe", table))
        if self.subscribe_exception is not None:
            raise self.subscribe_exception
        handle = Subscription(table, event_mask, "realtime", callback)
        self.handles.append(handle)
        return handle

    async def listen(self, table, event_mask, callback):
        self.calls.append(("listen", table))
        if self.listen_exception is not None:
            raise self.listen_exception
        handle = Subscription(table, event_mask, "local", callback)
        self.handles.append(handle)
        return handle

    async def unsubscribe(self, handle):
        self.calls.append(("unsubscribe", handle.table))
        if self.unsubscribe_exception is not None:
            raise self.unsubscribe_exception
        handle.active = False
        self.released.append(handle)

    async def fire(self, table: str = "hospitals", event_type: str = "UPDATE") -> None:
        event = ChangeEvent(table, event_type, ())
        for handle in list(self.handles):
            if handle.accepts(event):
                await invoke_callback(handle.callback, event)


@pytest.fixture
def sample_rows() -> List[Dict[str, Any]]:
    return [
        {
            "id": "h1", "name": "Saint Mary", "city": "City1", "status": "new",
            "emails": ["info@stmary.org"], "phones": ["555-0101"], "address": "1 Main St",
            "telemedicine": True, "cold_emailed": False, "manual_rating": None, "score": None,
            "created_at": "2021-03-01T10:00:00+00:00",
        },
        {
            "id": "h2", "name": "Aurora Clinic", "city": "City2", "status": "closed",
            "emails": ["hello@aurora.health"], "phones": [], "address": "22 Elm Rd",
            "telemedicine": False, "cold_emailed": True, "manual_rating": 3, "score": 60.0,
            "created_at": "2020-01-15T09:00:00+00:00",
        },
        {
            "id": "h3", "name": "Bayview General", "city": "City1", "status": "reached",
            "emails": [], "phones": ["555-0303"], "address": None,
            "telemedicine": None, "cold_emailed": False, "manual_rating": 5, "score": 100.0,
            "created_at": "2022-07-20T12:00:00+00:00",
        },
    ]


@pytest.fixture
def store(sample_rows) -> FakeStore:
    return FakeStore(sample_rows)


@pytest.fixture
def notifier() -> Notifier:
    return Notifier(ttl=60)


@pytest.fixture
async def cache(store, notifier) -> RowCache:
    cache = RowCache(store, "hospitals", notifier)
    await cache.load()
    return cache


@pytest.fixture
async def installed_store(store):
    """Install the FakeStore as the process-wide store for route tests."""
    from hospitaldesk.services.dashboard import sessions
    from hospitaldesk.services.store_client import dispose_store, init_store

    init_store(store)
    yield store
    await sessions.close_all()
    await dispose_store()


@pytest.fixture
async def client():
    from httpx import ASGITransport, AsyncClient

    from hospitaldesk.main import app

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
