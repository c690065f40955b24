"""
Remote store client.

Wraps the hospitals database behind a small select/update/insert/subscribe
surface. Database failures never raise out of a store call: they come back in
the ``error`` slot of a ``StoreResult``, the same (data, error) shape the
dashboard has always worked with.

Change notifications have two mechanisms:
- ``subscribe``: Redis pub/sub on ``<REALTIME_CHANNEL_PREFIX>:<table>``, shared
  by every process that writes through a store
- ``listen``: in-process hooks fired after this store's own writes
"""

import asyncio
import inspect
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Protocol, Set

import redis.asyncio as redis
from sqlalchemy import Integer, MetaData, Table, and_, insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from hospitaldesk.config import settings
from hospitaldesk.models.db import StoreConfigError, dispose_engine, get_engine

EVENT_TYPES = ("INSERT", "UPDATE", "DELETE")

Record = Dict[str, Any]
Match = Mapping[str, Any]


@dataclass(frozen=True)
class StoreError:
    message: str
    code: Optional[str] = None

    def __str__(self) -> str:
        return self.message


@dataclass
class StoreResult:
    data: List[Record] = field(default_factory=list)
    error: Optional[StoreError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    type: str
    ids: tuple = ()

    def to_json(self) -> str:
        return json.dumps({"table": self.table, "type": self.type, "ids": list(self.ids)})

    @classmethod
    def from_json(cls, raw) -> "ChangeEvent":
        payload = json.loads(raw)
        return cls(table=payload["table"], type=payload["type"], ids=tuple(payload.get("ids") or ()))


ChangeCallback = Callable[[ChangeEvent], Any]


class RealtimeUnavailable(RuntimeError):
    """The primary (Redis) subscription could not be established."""


@dataclass(eq=False)
class Subscription:
    """Handle returned by subscribe/listen; pass it back to unsubscribe."""
    table: str
    event_mask: str
    kind: str  # 'realtime' | 'local'
    callback: ChangeCallback
    task: Optional[asyncio.Task] = None
    pubsub: Any = None
    active: bool = True

    def accepts(self, event: ChangeEvent) -> bool:
        return self.active and event.table == self.table and self.event_mask in ("*", event.type)


class RemoteStore(Protocol):
    async def select(self, table: str, match: Optional[Match] = None,
                     order_by: Optional[str] = None, descending: bool = False) -> StoreResult: ...

    async def update(self, table: str, patch: Record, match: Match) -> StoreResult: ...

    async def insert(self, table: str, records: List[Record]) -> StoreResult: ...

    async def subscribe(self, table: str, event_mask: str, callback: ChangeCallback) -> Subscription: ...

    async def listen(self, table: str, event_mask: str, callback: ChangeCallback) -> Subscription: ...

    async def unsubscribe(self, handle: Subscription) -> None: ...


def _check_mask(event_mask: str) -> None:
    if event_mask != "*" and event_mask not in EVENT_TYPES:
        raise ValueError(f"Unknown event mask: {event_mask}")


async def invoke_callback(callback: ChangeCallback, event: ChangeEvent) -> None:
    result = callback(event)
    if inspect.isawaitable(result):
        await result


class SqlStore:
    """RemoteStore over SQLAlchemy Core with tables reflected from the live database."""

    def __init__(self, engine: Engine, redis_url: Optional[str] = None, channel_prefix: str = "realtime"):
        self.engine = engine
        self.redis_url = redis_url
        self.channel_prefix = channel_prefix
        self._metadata = MetaData()
        self._tables: Dict[str, Table] = {}
        self._hooks: List[Subscription] = []
        self._realtime: List[Subscription] = []
        self._redis: Optional[redis.Redis] = None
        self._pending: Set[asyncio.Task] = set()

    # --- schema ---

    def _table(self, name: str) -> Table:
        if name not in self._tables:
            self._tables[name] = Table(name, self._metadata, autoload_with=self.engine)
        return self._tables[name]

    def _where(self, table: Table, match: Optional[Match]):
        clauses = []
        for key, value in (match or {}).items():
            column = table.c[key]
            if isinstance(value, (list, tuple, set, frozenset)):
                clauses.append(column.in_(list(value)))
            else:
                clauses.append(column == value)
        return and_(*clauses) if clauses else None

    # --- blocking work (runs in the threadpool) ---

    def _select_sync(self, name, match, order_by, descending) -> List[Record]:
        table = self._table(name)
        stmt = select(table)
        where = self._where(table, match)
        if where is not None:
            stmt = stmt.where(where)
        if order_by:
            column = table.c[order_by]
            stmt = stmt.order_by(column.desc() if descending else column.asc())
        with self.engine.connect() as conn:
            return [dict(row) for row in conn.execute(stmt).mappings()]

    def _update_sync(self, name, patch, match) -> List[Record]:
        table = self._table(name)
        where = self._where(table, match)
        if where is None:
            raise ValueError("update requires a match")
        values = dict(patch)
        if "updated_at" in table.c and "updated_at" not in values:
            values["updated_at"] = datetime.now(timezone.utc)
        with self.engine.begin() as conn:
            conn.execute(update(table).where(where).values(**values))
            return [dict(row) for row in conn.execute(select(table).where(where)).mappings()]

    def _insert_sync(self, name, records) -> List[Record]:
        table = self._table(name)
        id_column = table.c.get("id")
        needs_id = (
            id_column is not None
            and id_column.server_default is None
            and not isinstance(id_column.type, Integer)
        )
        prepared = []
        for record in records:
            record = dict(record)
            if needs_id and not record.get("id"):
                record["id"] = str(uuid.uuid4())
            prepared.append(record)

        inserted = []
        with self.engine.begin() as conn:
            for record in prepared:
                result = conn.execute(insert(table).values(**record))
                key = result.inserted_primary_key
                if key is not None and id_column is not None:
                    row = conn.execute(select(table).where(id_column == key[0])).mappings().first()
                    inserted.append(dict(row) if row is not None else record)
                else:
                    inserted.append(record)
        return inserted

    # --- public surface ---

    async def select(self, table: str, match: Optional[Match] = None,
                     order_by: Optional[str] = None, descending: bool = False) -> StoreResult:
        try:
            rows = await run_in_threadpool(self._select_sync, table, match, order_by, descending)
        except (SQLAlchemyError, KeyError) as e:
            print(f"❌ Store select error on {table}: {e}")
            return StoreResult(error=StoreError(str(e), type(e).__name__))
        return StoreResult(data=rows)

    async def update(self, table: str, patch: Record, match: Match) -> StoreResult:
        try:
            rows = await run_in_threadpool(self._update_sync, table, patch, match)
        except (SQLAlchemyError, KeyError, ValueError) as e:
            print(f"❌ Store update error on {table}: {e}")
            return StoreResult(error=StoreError(str(e), type(e).__name__))
        self._emit(ChangeEvent(table, "UPDATE", tuple(str(r.get("id")) for r in rows)))
        return StoreResult(data=rows)

    async def insert(self, table: str, records: List[Record]) -> StoreResult:
        try:
            rows = await run_in_threadpool(self._insert_sync, table, records)
        except (SQLAlchemyError, KeyError) as e:
            print(f"❌ Store insert error on {table}: {e}")
            return StoreResult(error=StoreError(str(e), type(e).__name__))
        self._emit(ChangeEvent(table, "INSERT", tuple(str(r.get("id")) for r in rows)))
        return StoreResult(data=rows)

    # --- change notifications ---

    def channel_name(self, table: str) -> str:
        return f"{self.channel_prefix}:{table}"

    def _redis_client(self) -> redis.Redis:
        if not self.redis_url:
            raise RealtimeUnavailable("REDIS_URL is not configured")
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url, decode_responses=True)
        return self._redis

    async def subscribe(self, table: str, event_mask: str, callback: ChangeCallback) -> Subscription:
        _check_mask(event_mask)
        client = self._redis_client()
        pubsub = client.pubsub()
        try:
            await pubsub.subscribe(self.channel_name(table))
        except redis.RedisError as e:
            await pubsub.aclose()
            raise RealtimeUnavailable(f"Redis subscribe failed: {e}") from e

        handle = Subscription(table, event_mask, "realtime", callback, pubsub=pubsub)
        self._start_pump(handle)
        self._realtime.append(handle)
        return handle

    def _start_pump(self, handle: Subscription) -> None:
        handle.task = asyncio.create_task(self._pump(handle))
        handle.task.add_done_callback(lambda t: self._pump_stopped(t, handle))

    def _pump_stopped(self, task: asyncio.Task, handle: Subscription) -> None:
        if task.cancelled():
            return
        handle.active = False
        error = task.exception()
        if error is not None:
            print(f"⚠️  Realtime channel for {handle.table} dropped: {error}")
        else:
            print(f"⚠️  Realtime channel for {handle.table} closed")

    async def _pump(self, handle: Subscription) -> None:
        async for message in handle.pubsub.listen():
            if message.get("type") != "message":
                continue
            try:
                event = ChangeEvent.from_json(message["data"])
            except (ValueError, KeyError) as e:
                print(f"⚠️  Ignoring malformed change event on {handle.table}: {e}")
                continue
            if handle.accepts(event):
                try:
                    await invoke_callback(handle.callback, event)
                except Exception as e:
                    print(f"❌ Change callback failed for {handle.table}: {e}")

    async def listen(self, table: str, event_mask: str, callback: ChangeCallback) -> Subscription:
        _check_mask(event_mask)
        handle = Subscription(table, event_mask, "local", callback)
        self._hooks.append(handle)
        return handle

    async def unsubscribe(self, handle: Subscription) -> None:
        handle.active = False
        if handle.kind == "local":
            if handle in self._hooks:
                self._hooks.remove(handle)
            return

        if handle in self._realtime:
            self._realtime.remove(handle)
        if handle.task is not None and not handle.task.done():
            handle.task.cancel()
            try:
                await handle.task
            except asyncio.CancelledError:
                pass
        if handle.pubsub is not None:
            await handle.pubsub.unsubscribe()
            await handle.pubsub.aclose()

    def _emit(self, event: ChangeEvent) -> None:
        """Fan a write out to local hooks and the Redis channel without waiting on either."""
        for handle in list(self._hooks):
            if handle.accepts(event):
                self._spawn(invoke_callback(handle.callback, event), f"hook on {event.table}")
        if self.redis_url:
            self._spawn(self._publish(event), f"publish on {event.table}")

    async def _publish(self, event: ChangeEvent) -> None:
        await self._redis_client().publish(self.channel_name(event.table), event.to_json())

    def _spawn(self, coro: Awaitable, label: str) -> None:
        task = asyncio.ensure_future(coro)
        self._pending.add(task)
        task.add_done_callback(lambda t: self._finish(t, label))

    def _finish(self, task: asyncio.Task, label: str) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            print(f"⚠️  Change notification ({label}) failed: {task.exception()}")

    async def drain(self) -> None:
        """Wait for notifications spawned by earlier writes."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def dispose(self) -> None:
        for handle in list(self._realtime) + list(self._hooks):
            await self.unsubscribe(handle)
        await self.drain()
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
        self.engine.dispose()


# --- lifecycle -------------------------------------------------------------

_store: Optional[RemoteStore] = None


def init_store(store: RemoteStore) -> RemoteStore:
    """Install a store explicitly (tests and alternative backends)."""
    global _store
    _store = store
    return _store


def get_store() -> RemoteStore:
    """Return the active store, building a SqlStore from settings on first use."""
    global _store

    if _store is None:
        _store = SqlStore(
            get_engine(),
            redis_url=settings.REDIS_URL,
            channel_prefix=settings.REALTIME_CHANNEL_PREFIX,
        )
    return _store


async def dispose_store() -> None:
    global _store

    store, _store = _store, None
    if store is None:
        return
    close = getattr(store, "dispose", None)
    if close is not None:
        result = close()
        if inspect.isawaitable(result):
            await result
    if isinstance(store, SqlStore):
        dispose_engine()


__all__ = [
    "ChangeEvent",
    "RealtimeUnavailable",
    "RemoteStore",
    "SqlStore",
    "StoreConfigError",
    "StoreError",
    "StoreResult",
    "Subscription",
    "dispose_store",
    "get_store",
    "init_store",
]
