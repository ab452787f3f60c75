import pytest

pytestmark = pytest.mark.asyncio


async def test_health(client):
    r = await client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}
    assert r.headers["X-Request-ID"]


async def test_request_id_is_echoed(client):
    r = await client.get("/health", headers={"X-Request-ID": "abc-123"})
    assert r.headers["X-Request-ID"] == "abc-123"


async def test_ready_without_database_is_unavailable(client):
    # No startup hook under ASGITransport, so the client was never initialised
    from app.db.init import close_db

    close_db()
    r = await client.get("/health/ready")
    assert r.status_code == 503
    assert r.json() == {"status": "unavailable", "transactions": False}


async def test_ready_on_replica_set(db, client):
    r = await client.get("/health/ready")
    assert r.status_code == 200
    assert r.json()["transactions"] is True
