"""Tests for the /hospitals liveness and PATCH endpoints."""

import pytest

from hospitaldesk.config import settings
from hospitaldesk.services.store_client import StoreError, dispose_store


async def test_get_is_liveness_only(client):
    response = await client.get("/hospitals")
    assert response.status_code == 200
    assert response.json() == {"ok": True, "route": "hospitals"}


@pytest.mark.parametrize("body", [
    {},
    {"id": "h1"},
    {"id": "h1", "updates": {}},
    {"id": "", "updates": {"status": "closed"}},
    {"updates": {"status": "closed"}},
    {"id": "h1", "updates": "closed"},
])
async def test_missing_id_or_updates(client, installed_store, body):
    response = await client.patch("/hospitals", json=body)
    assert response.status_code == 400
    assert response.json() == {"error": "Missing id or updates"}
    assert installed_store.count("update") == 0


async def test_invalid_json(client, installed_store):
    response = await client.patch("/hospitals", content=b"{not json",
                                  headers={"content-type": "application/json"})
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid JSON body"}


async def test_patch_returns_updated_row(client, installed_store):
    response = await client.patch("/hospitals", json={"id": "h1", "updates": {"status": "closed"}})

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["id"] == "h1"
    assert data["status"] == "closed"
    assert installed_store.calls[-1] == ("update", "hospitals", {"status": "closed"}, {"id": "h1"})


async def test_patch_rating_derives_score(client, installed_store):
    response = await client.patch("/hospitals", json={"id": "h1", "updates": {"manual_rating": 2, "score": 99}})
    assert response.status_code == 200
    assert installed_store.calls[-1][2] == {"manual_rating": 2, "score": 40.0}


@pytest.mark.parametrize("rating", [9, -1, 2.5, "five"])
async def test_patch_rejects_rating_outside_domain(client, installed_store, rating):
    response = await client.patch("/hospitals", json={"id": "h1", "updates": {"manual_rating": rating}})
    assert response.status_code == 400
    assert "Rating must be" in response.json()["error"]
    assert installed_store.count("update") == 0


async def test_patch_null_rating_clears_score(client, installed_store):
    response = await client.patch("/hospitals", json={"id": "h2", "updates": {"manual_rating": None}})
    assert response.status_code == 200
    assert installed_store.calls[-1][2] == {"manual_rating": None, "score": None}


async def test_patch_unknown_id_returns_empty_data(client, installed_store):
    response = await client.patch("/hospitals", json={"id": "nope", "updates": {"status": "closed"}})
    assert response.status_code == 200
    assert response.json() == {"data": []}


async def test_store_error_is_500(client, installed_store):
    installed_store.update_error = StoreError("permission denied for table hospitals")
    response = await client.patch("/hospitals", json={"id": "h1", "updates": {"status": "closed"}})
    assert response.status_code == 500
    assert response.json() == {"error": "permission denied for table hospitals"}


async def test_missing_configuration_is_500(client, monkeypatch):
    await dispose_store()
    monkeypatch.setattr(settings, "DATABASE_URL", None)

    response = await client.patch("/hospitals", json={"id": "h1", "updates": {"status": "closed"}})

    assert response.status_code == 500
    assert "DATABASE_URL" in response.json()["error"]


async def test_validation_runs_before_configuration_check(client, monkeypatch):
    await dispose_store()
    monkeypatch.setattr(settings, "DATABASE_URL", None)
    response = await client.patch("/hospitals", json={})
    assert response.status_code == 400


async def test_health(client):
    response = await client.get("/health")
    body = response.json()
    assert body["status"] == "ok"
    assert "open_sessions" in body
