# Operations for the Search Event Outbox Collection
import datetime
import json
import logging
from typing import Dict, List, Optional
from motor.motor_asyncio import AsyncIOMotorDatabase, AsyncIOMotorClientSession
from pymongo import ASCENDING

from .indexes import OUTBOX_COLLECTION
from search_analytics_service.app.models import OutboxEventDB, OutboxStatus, DailyQueryStatDB

logger = logging.getLogger(__name__)

STATS_AGGREGATE_TYPE = "DailyQueryStat"
STATS_UPDATED_EVENT_TYPE = "SEARCH_STATS_UPDATED"


async def stage(
    db: AsyncIOMotorDatabase,
    aggregate_type: str,
    aggregate_id: str,
    event_type: str,
    payload: str,
    partition_key: Optional[str],
    headers: Optional[Dict[str, str]] = None,
    session: Optional[AsyncIOMotorClientSession] = None
) -> str:
    """
    Inserts a NEW outbox row and returns its id.

    Pass the session of the business write so both commit or abort together.
    """
    outbox_event = OutboxEventDB(
        aggregate_type=aggregate_type,
        aggregate_id=aggregate_id,
        event_type=event_type,
        payload=payload,
        headers=headers,
        partition_key=partition_key,
    )
    await db[OUTBOX_COLLECTION].insert_one(outbox_event.model_dump(), session=session)
    logger.info(f"Outbox event staged with ID: {outbox_event.id} ({event_type} for {aggregate_type}/{aggregate_id})")
    return outbox_event.id


async def stage_stats_updated(
    db: AsyncIOMotorDatabase,
    stat: DailyQueryStatDB,
    session: Optional[AsyncIOMotorClientSession] = None
) -> str:
    payload = json.dumps({"day": stat.day, "query": stat.query, "count": stat.count})
    return await stage(
        db,
        aggregate_type=STATS_AGGREGATE_TYPE,
        aggregate_id=str(stat.id),
        event_type=STATS_UPDATED_EVENT_TYPE,
        payload=payload,
        partition_key=stat.query,
        headers={"event_type": STATS_UPDATED_EVENT_TYPE},
        session=session,
    )


async def find_next_new_events(db: AsyncIOMotorDatabase, batch_size: int) -> List[OutboxEventDB]:
    """NEW rows, oldest first."""
    if batch_size <= 0:
        return []
    cursor = (
        db[OUTBOX_COLLECTION]
        .find({"status": OutboxStatus.NEW.value})
        .sort("created_at", ASCENDING)
        .limit(batch_size)
    )
    docs = await cursor.to_list(length=batch_size)
    return [OutboxEventDB(**doc) for doc in docs]


async def mark_published(db: AsyncIOMotorDatabase, outbox_id: str) -> None:
    await db[OUTBOX_COLLECTION].update_one(
        {"id": outbox_id, "status": OutboxStatus.NEW.value},
        {"$set": {
            "status": OutboxStatus.PUBLISHED.value,
            "published_at": datetime.datetime.now(datetime.UTC),
            "last_error": None,
        }}
    )


async def mark_failed(db: AsyncIOMotorDatabase, outbox_id: str, error_message: str) -> None:
    await db[OUTBOX_COLLECTION].update_one(
        {"id": outbox_id, "status": OutboxStatus.NEW.value},
        {"$set": {"status": OutboxStatus.FAILED.value, "last_error": error_message}}
    )


async def get_outbox_event(db: AsyncIOMotorDatabase, outbox_id: str) -> Optional[OutboxEventDB]:
    doc = await db[OUTBOX_COLLECTION].find_one({"id": outbox_id})
    return OutboxEventDB(**doc) if doc else None


async def reset_to_new(db: AsyncIOMotorDatabase, outbox_id: str) -> bool:
    """
    Puts a FAILED row back in the NEW queue for the next drain.

    Returns False when the row does not exist or is not FAILED.
    ``last_error`` is kept until the next publish succeeds.
    """
    result = await db[OUTBOX_COLLECTION].update_one(
        {"id": outbox_id, "status": OutboxStatus.FAILED.value},
        {"$set": {"status": OutboxStatus.NEW.value}}
    )
    if result.modified_count == 0:
        logger.warning(f"Outbox event ID: {outbox_id} not reset; it is missing or not FAILED.")
        return False
    logger.info(f"Outbox event ID: {outbox_id} reset from FAILED to NEW.")
    return True
