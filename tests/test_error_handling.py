"""Tests for the structured error envelope."""
from __future__ import annotations

import pytest

from src.errors import InternalError


@pytest.mark.asyncio
async def test_unknown_route_returns_envelope(client):
    resp = await client.get("/affiliate/does-not-exist")
    assert resp.status_code == 404
    assert resp.json()["error"] == "not_found"
    assert "message" in resp.json()


@pytest.mark.asyncio
async def test_validation_error_lists_fields(client, clock):
    resp = await client.post("/affiliate/mark-purchase", json={"clickId": "c1"})
    assert resp.status_code == 400
    data = resp.json()
    assert data["error"] == "validation_error"
    assert data["message"] == "Invalid request data"
    assert {"field": "body.purchaseAmount", "message": "Field required"} in data["details"]


@pytest.mark.asyncio
async def test_malformed_json_is_validation_error(client, clock):
    resp = await client.post(
        "/affiliate/mark-purchase", content=b"{not json", headers={"Content-Type": "application/json"},
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "validation_error"


@pytest.mark.asyncio
async def test_storage_failure_hides_detail(client, monkeypatch):
    import src.api.deals as deals_api

    async def broken(session, limit=20):
        raise InternalError()

    monkeypatch.setattr(deals_api, "list_trending", broken)
    resp = await client.get("/deals/trending")
    assert resp.status_code == 500
    assert resp.json() == {
        "error": "internal_error",
        "message": "Something went wrong. Please try again.",
    }


@pytest.mark.asyncio
async def test_admin_disabled_without_key(client, monkeypatch):
    from config.settings import settings

    monkeypatch.setattr(settings, "ADMIN_API_KEY", "")
    resp = await client.post("/api/v1/admin/retention/run", headers={"X-Admin-Key": "anything"})
    assert resp.status_code == 503
    assert resp.json()["error"] == "unavailable"
