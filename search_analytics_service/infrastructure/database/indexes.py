# Collection names and the indexes the stores rely on
import logging
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

logger = logging.getLogger(__name__)

RAW_EVENTS_COLLECTION = "raw_search_events"
DAILY_STATS_COLLECTION = "daily_query_stats"
PROCESSING_ERRORS_COLLECTION = "search_event_processing_errors"
OUTBOX_COLLECTION = "search_event_outbox"


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    """Creates the unique and lookup indexes. Safe to call on every startup."""
    await db[RAW_EVENTS_COLLECTION].create_index(
        [("kafka_topic", ASCENDING), ("kafka_partition", ASCENDING), ("kafka_offset", ASCENDING)],
        unique=True,
        name="uq_raw_search_events_position",
    )
    await db[RAW_EVENTS_COLLECTION].create_index([("id", ASCENDING)], unique=True, name="uq_raw_search_events_id")
    await db[RAW_EVENTS_COLLECTION].create_index([("received_at", DESCENDING)], name="ix_raw_search_events_received_at")

    await db[DAILY_STATS_COLLECTION].create_index(
        [("day", ASCENDING), ("query", ASCENDING)],
        unique=True,
        name="uq_daily_query_stats_day_query",
    )
    await db[DAILY_STATS_COLLECTION].create_index(
        [("day", ASCENDING), ("count", DESCENDING), ("query", ASCENDING)],
        name="ix_daily_query_stats_top",
    )

    await db[PROCESSING_ERRORS_COLLECTION].create_index([("id", ASCENDING)], unique=True, name="uq_processing_errors_id")
    await db[PROCESSING_ERRORS_COLLECTION].create_index([("raw_event_id", ASCENDING)], name="ix_processing_errors_raw_event")

    await db[OUTBOX_COLLECTION].create_index([("id", ASCENDING)], unique=True, name="uq_outbox_id")
    await db[OUTBOX_COLLECTION].create_index(
        [("status", ASCENDING), ("created_at", ASCENDING)],
        name="ix_outbox_status_created_at",
    )
    logger.info("MongoDB indexes ensured for search analytics collections.")
