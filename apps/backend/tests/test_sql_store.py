"""Tests for SqlStore against a throwaway SQLite database."""

import asyncio

import pytest
import redis.asyncio as redis
from sqlalchemy import text

from hospitaldesk.models import create_all
from hospitaldesk.models.db import build_engine
from hospitaldesk.services.notifier import Notifier
from hospitaldesk.services.realtime import ChangeListener
from hospitaldesk.services.row_cache import RowCache
from hospitaldesk.services.store_client import RealtimeUnavailable, SqlStore, Subscription


@pytest.fixture
async def sql_store(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'hospitals.db'}")
    create_all(engine)
    store = SqlStore(engine)
    yield store
    await store.dispose()


async def seed(store):
    result = await store.insert("hospitals", [
        {"name": "Saint Mary", "city": "City1", "emails": ["info@stmary.org"], "phones": []},
        {"name": "Aurora Clinic", "city": "City2", "status": "closed", "emails": [], "phones": []},
    ])
    assert result.ok
    return result.data


async def test_insert_generates_ids_and_defaults(sql_store):
    rows = await seed(sql_store)
    assert len(rows) == 2
    assert all(len(r["id"]) == 36 for r in rows)
    assert rows[0]["status"] == "new"
    assert rows[0]["cold_emailed"] is False
    assert rows[0]["emails"] == ["info@stmary.org"]


async def test_select_orders_by_column(sql_store):
    await seed(sql_store)
    result = await sql_store.select("hospitals", order_by="name")
    assert [r["name"] for r in result.data] == ["Aurora Clinic", "Saint Mary"]

    result = await sql_store.select("hospitals", order_by="name", descending=True)
    assert [r["name"] for r in result.data] == ["Saint Mary", "Aurora Clinic"]


async def test_update_returns_changed_rows(sql_store):
    rows = await seed(sql_store)
    result = await sql_store.update("hospitals", {"status": "closed"}, {"id": rows[0]["id"]})

    assert result.error is None
    assert [r["id"] for r in result.data] == [rows[0]["id"]]
    assert result.data[0]["status"] == "closed"
    assert result.data[0]["updated_at"] is not None


async def test_bulk_update_matches_id_list(sql_store):
    rows = await seed(sql_store)
    ids = [r["id"] for r in rows]
    result = await sql_store.update("hospitals", {"cold_emailed": True}, {"id": ids})
    assert sorted(r["id"] for r in result.data) == sorted(ids)
    assert all(r["cold_emailed"] is True for r in result.data)


async def test_unknown_column_is_an_error_result(sql_store):
    rows = await seed(sql_store)
    result = await sql_store.update("hospitals", {"status": "closed"}, {"nope": rows[0]["id"]})
    assert result.data == []
    assert result.error.code == "KeyError"


async def test_missing_table_is_an_error_result(sql_store):
    result = await sql_store.select("prospects")
    assert not result.ok
    assert result.error.code == "NoSuchTableError"

    result = await sql_store.insert("prospects", [{"name": "x"}])
    assert not result.ok


async def test_update_without_match_is_rejected(sql_store):
    await seed(sql_store)
    result = await sql_store.update("hospitals", {"status": "closed"}, {})
    assert result.error is not None
    selected = await sql_store.select("hospitals")
    assert {r["status"] for r in selected.data} == {"new", "closed"}


async def test_writes_fire_local_hooks(sql_store):
    seen = []
    await sql_store.listen("hospitals", "*", seen.append)

    rows = await seed(sql_store)
    await sql_store.update("hospitals", {"status": "closed"}, {"id": rows[0]["id"]})
    await sql_store.drain()

    assert [e.type for e in seen] == ["INSERT", "UPDATE"]
    assert seen[1].ids == (rows[0]["id"],)


async def test_hook_mask_filters_event_types(sql_store):
    seen = []
    await sql_store.listen("hospitals", "UPDATE", seen.append)
    await seed(sql_store)
    await sql_store.drain()
    assert seen == []


async def test_subscribe_without_redis(sql_store):
    with pytest.raises(RealtimeUnavailable):
        await sql_store.subscribe("hospitals", "*", lambda e: None)


async def test_listener_falls_back_and_reloads_cache(sql_store):
    await seed(sql_store)
    cache = RowCache(sql_store, "hospitals", Notifier())
    await cache.load()
    listener = ChangeListener(sql_store, "hospitals", cache.load)

    assert await listener.start() == "fallback"
    await sql_store.insert("hospitals", [{"name": "Bayview General"}])
    await sql_store.drain()

    assert len(cache.rows) == 3
    await listener.stop()


async def test_legacy_table_without_cold_emailed(sql_store):
    with sql_store.engine.begin() as conn:
        conn.execute(text("CREATE TABLE legacy_hospitals (id VARCHAR(36) PRIMARY KEY, name VARCHAR)"))
    await sql_store.insert("legacy_hospitals", [{"name": "Old Town"}])

    cache = RowCache(sql_store, "legacy_hospitals", Notifier())
    assert await cache.load() is None
    assert cache.rows[0]["name"] == "Old Town"
    assert cache.features.cold_emailed is False


class DroppedPubSub:
    """Pub/sub double whose connection dies on the first read."""

    def __init__(self):
        self.closed = False

    async def listen(self):
        raise redis.ConnectionError("Connection closed by server.")
        yield  # pragma: no cover

    async def unsubscribe(self):
        pass

    async def aclose(self):
        self.closed = True


async def test_dropped_redis_channel_marks_handle_inactive(sql_store, capsys):
    handle = Subscription("hospitals", "*", "realtime", lambda e: None, pubsub=DroppedPubSub())

    sql_store._start_pump(handle)
    await asyncio.gather(handle.task, return_exceptions=True)
    await asyncio.sleep(0)

    assert handle.active is False
    assert "Realtime channel for hospitals dropped" in capsys.readouterr().out

    await sql_store.unsubscribe(handle)
    assert handle.pubsub.closed
