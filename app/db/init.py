import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from app.core.config import get_settings
from app.models.audit_log import AuditLog
from app.models.rollback import TransactionRollback
from app.models.transaction import LedgerTransaction
from app.models.user import User

DOCUMENT_MODELS = [
    User,
    LedgerTransaction,
    TransactionRollback,
    AuditLog,
]

_client: AsyncIOMotorClient | None = None


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Avoids TLS for plain mongodb:// in CI."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


def get_client() -> AsyncIOMotorClient:
    if _client is None:
        raise RuntimeError("Database not initialised; call init_db() first")
    return _client


async def init_db(db_name: str | None = None, **client_kwargs) -> AsyncIOMotorClient:
    """Connect Motor, register documents with Beanie and build indexes (incl. the unique rollback index)."""
    global _client
    settings = get_settings()
    kwargs = dict(client_kwargs)
    if _use_tls(settings.mongodb_uri):
        kwargs["tlsCAFile"] = certifi.where()
        kwargs["tlsDisableOCSPEndpointCheck"] = True
    client = AsyncIOMotorClient(settings.mongodb_uri, **kwargs)
    database = client[db_name or settings.mongodb_db_name]
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
    if _client is not None and _client is not client:
        _client.close()
    _client = client
    return client


def close_db() -> None:
    global _client
    if _client is not None:
        _client.close()
        _client = None


async def supports_transactions() -> bool:
    """True when the connected deployment is a replica set or sharded cluster."""
    hello = await get_client().admin.command("hello")
    return bool(hello.get("setName")) or hello.get("msg") == "isdbgrid"
