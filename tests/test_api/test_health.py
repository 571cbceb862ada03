"""Tests for the /health endpoint."""

import pytest


@pytest.mark.asyncio
async def test_health_check(client):
    """GET /health should return healthy status."""
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "postgres": "ok", "redis": "ok"}


@pytest.mark.asyncio
async def test_health_check_without_redis(client, fake_server):
    """Redis going away degrades the service but does not fail the check."""
    fake_server.connected = False

    response = await client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "degraded"
    assert data["redis"] == "unavailable"
