import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Use test DB. Ledger tests need a replica set (multi-document transactions).
os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017/?directConnection=true")
os.environ.setdefault("MONGODB_DB_NAME", "mentor_points_test")
os.environ.setdefault("SECRET_KEY", "test-secret-key-min-32-characters-long")


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    from app.main import app
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def as_actor():
    """Override the session collaborator: every request runs as the given Actor."""
    from app.deps import get_current_actor
    from app.main import app

    def _set(actor):
        app.dependency_overrides[get_current_actor] = lambda: actor
        return actor

    yield _set
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def db():
    """Fresh, empty collections on a transaction-capable MongoDB; skip when none is reachable."""
    from pymongo.errors import PyMongoError

    from app.db.init import DOCUMENT_MODELS, close_db, init_db, supports_transactions

    try:
        mongo = await init_db(serverSelectionTimeoutMS=2000)
        transactional = await supports_transactions()
    except PyMongoError as e:
        close_db()
        pytest.skip(f"MongoDB not reachable: {e}")
    if not transactional:
        close_db()
        pytest.skip("MongoDB is not running as a replica set; transactions unavailable")
    for model in DOCUMENT_MODELS:
        await model.get_motor_collection().delete_many({})
    yield mongo
    close_db()


@pytest_asyncio.fixture
async def make_user(db):
    from app.models.user import User, UserRole

    counter = {"n": 0}

    async def _make(role: UserRole = UserRole.STUDENT, tutor=None, **fields) -> User:
        counter["n"] += 1
        user = User(
            username=fields.pop("username", f"user{counter['n']}"),
            role=role,
            tutor_id=tutor.id if tutor is not None else None,
            **fields,
        )
        await user.insert()
        return user

    return _make


@pytest_asyncio.fixture
async def admin(make_user):
    from app.models.user import UserRole
    return await make_user(UserRole.ADMIN, username="admin")


@pytest_asyncio.fixture
async def tutor(make_user):
    from app.models.user import UserRole
    return await make_user(UserRole.TUTOR, username="tutor")


@pytest_asyncio.fixture
async def student(make_user, tutor):
    from app.models.user import UserRole
    return await make_user(UserRole.STUDENT, tutor=tutor, username="student")
