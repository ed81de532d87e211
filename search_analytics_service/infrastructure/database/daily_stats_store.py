# Upsert-based counters per (day, query) and the top-N read queries
import datetime
import logging
import uuid
from typing import List, Optional
from motor.motor_asyncio import AsyncIOMotorDatabase, AsyncIOMotorClientSession
from pymongo import ReturnDocument, ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError

from .indexes import DAILY_STATS_COLLECTION
from search_analytics_service.app.models import DailyQueryStatDB

logger = logging.getLogger(__name__)

# Two concurrent first increments for a key can both try to insert
UPSERT_ATTEMPTS = 3


def normalize_query(query: str) -> str:
    """Strips surrounding whitespace and collapses inner runs of whitespace. Case is kept."""
    return " ".join(query.split())


async def increment(
    db: AsyncIOMotorDatabase,
    day: datetime.date,
    query: str,
    session: Optional[AsyncIOMotorClientSession] = None
) -> DailyQueryStatDB:
    """
    Atomically creates the (day, query) counter with count 1 or adds 1 to it.

    Returns the counter as stored after the increment.

    Inside a transaction (``session`` given) a DuplicateKeyError aborts the
    transaction on the server, so it is raised after one attempt and the
    caller reruns the whole transaction.
    """
    key_filter = {"day": day.isoformat(), "query": normalize_query(query)}
    update = {
        "$inc": {"count": 1},
        "$setOnInsert": {"id": str(uuid.uuid4().hex)},
    }

    attempts = 1 if session is not None else UPSERT_ATTEMPTS
    for attempt in range(1, attempts + 1):
        try:
            doc = await db[DAILY_STATS_COLLECTION].find_one_and_update(
                key_filter,
                update,
                upsert=True,
                return_document=ReturnDocument.AFTER,
                session=session
            )
            break
        except DuplicateKeyError:
            if attempt == attempts:
                raise
            logger.debug(f"Upsert race on daily stat {key_filter}, retrying (attempt {attempt}).")

    stat = DailyQueryStatDB(**doc)
    logger.debug(f"Daily stat incremented: day={stat.day} query='{stat.query}' count={stat.count}")
    return stat


async def find_by_day_and_query(db: AsyncIOMotorDatabase, day: datetime.date, query: str) -> Optional[DailyQueryStatDB]:
    doc = await db[DAILY_STATS_COLLECTION].find_one({"day": day.isoformat(), "query": normalize_query(query)})
    return DailyQueryStatDB(**doc) if doc else None


async def top_for_day(db: AsyncIOMotorDatabase, day: datetime.date, limit: int) -> List[DailyQueryStatDB]:
    """Top queries of one day: count descending, then query ascending."""
    if limit <= 0:
        return []
    cursor = (
        db[DAILY_STATS_COLLECTION]
        .find({"day": day.isoformat()})
        .sort([("count", DESCENDING), ("query", ASCENDING)])
        .limit(limit)
    )
    docs = await cursor.to_list(length=limit)
    return [DailyQueryStatDB(**doc) for doc in docs]


async def top_in_range(
    db: AsyncIOMotorDatabase,
    from_day: datetime.date,
    to_day: datetime.date,
    limit: int
) -> List[DailyQueryStatDB]:
    """
    Sums counts per query over the inclusive day range.

    The returned rows span several stored counters, so ``id`` and ``day``
    are None. Ordering matches ``top_for_day``.
    """
    if limit <= 0:
        return []
    pipeline = [
        {"$match": {"day": {"$gte": from_day.isoformat(), "$lte": to_day.isoformat()}}},
        {"$group": {"_id": "$query", "count": {"$sum": "$count"}}},
        {"$sort": {"count": DESCENDING, "_id": ASCENDING}},
        {"$limit": limit},
    ]
    docs = await db[DAILY_STATS_COLLECTION].aggregate(pipeline).to_list(length=limit)
    return [DailyQueryStatDB(id=None, day=None, query=doc["_id"], count=doc["count"]) for doc in docs]
