"""Multi-document transactions over the shared Motor client."""

from typing import Awaitable, Callable, TypeVar

from motor.motor_asyncio import AsyncIOMotorClientSession
from pymongo import ReadPreference
from pymongo.read_concern import ReadConcern
from pymongo.write_concern import WriteConcern

from app.core.config import get_settings
from app.db.init import get_client

T = TypeVar("T")


async def run_in_transaction(callback: Callable[[AsyncIOMotorClientSession], Awaitable[T]]) -> T:
    """
    Run `callback(session)` as one atomic unit and return its result.
    Transient write conflicts (e.g. two appends on the same user) are retried by the driver.
    Any exception raised by the callback aborts the transaction and propagates unchanged.
    """
    settings = get_settings()
    client = get_client()
    async with await client.start_session() as session:
        return await session.with_transaction(
            callback,
            read_concern=ReadConcern("snapshot"),
            write_concern=WriteConcern("majority"),
            read_preference=ReadPreference.PRIMARY,
            max_commit_time_ms=settings.transaction_max_commit_time_ms,
        )

