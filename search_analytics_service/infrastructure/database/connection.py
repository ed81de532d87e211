from search_analytics_service.app.config import settings
import logging
from typing import Optional, Awaitable, Callable, TypeVar
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase, AsyncIOMotorClientSession

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Global client and db variables, managed by connect/close functions
client: Optional[AsyncIOMotorClient] = None
db: Optional[AsyncIOMotorDatabase] = None

def connect_to_mongo():
    global client, db
    if client is not None and db is not None:
        logger.info("MongoDB connection already established.")
        return

    try:
        logger.info(f"Attempting to connect to MongoDB at {settings.MONGO_DETAILS}...")
        client = AsyncIOMotorClient(settings.MONGO_DETAILS, tz_aware=True)
        db = client[settings.DB_NAME]
        logger.info(f"MongoDB client created and database '{settings.DB_NAME}' is set.")
    except Exception as e:
        logger.error(f"Failed to connect to MongoDB: {e}", exc_info=True)
        client = None
        db = None
        raise ConnectionError(f"Failed to connect to MongoDB: {e}")

def close_mongo_connection():
    global client, db
    if client is not None:
        client.close()
        client = None
        db = None
        logger.info("MongoDB connection closed.")

async def get_database() -> AsyncIOMotorDatabase:
    if db is None:
        connect_to_mongo()
    if db is None:
        raise ConnectionError("Database client is not available. Connection might have failed or was not established.")
    return db

async def get_db():
    """FastAPI dependency yielding the shared database handle."""
    yield await get_database()

async def run_in_transaction(
    database: AsyncIOMotorDatabase,
    callback: Callable[[AsyncIOMotorClientSession], Awaitable[T]]
) -> T:
    """
    Runs ``callback(session)`` in one multi-document transaction and returns its result.

    The session's ``with_transaction`` reruns the whole callback on
    TransientTransactionError (e.g. WriteConflict) and retries the commit on
    UnknownTransactionCommitResult. Any other error aborts and propagates.
    Needs a replica set or sharded cluster.
    """
    async with await database.client.start_session() as session:
        return await session.with_transaction(callback)
