# Domain service for updating and querying daily search statistics
import datetime
import logging
from typing import List
from motor.motor_asyncio import AsyncIOMotorDatabase, AsyncIOMotorClientSession
from pymongo.errors import DuplicateKeyError

from search_analytics_service.app.models import DailyQueryStatDB
from search_analytics_service.app.service.exceptions import EventValidationError
from search_analytics_service.infrastructure.database import daily_stats_store, outbox_store
from search_analytics_service.infrastructure.database.connection import run_in_transaction
from search_analytics_service.infrastructure.kafka.schemas import SearchEventPayload

logger = logging.getLogger(__name__)


def utc_day(occurred_at: datetime.datetime) -> datetime.date:
    """UTC calendar day of a timestamp; naive timestamps are taken as UTC."""
    if occurred_at.tzinfo is None:
        return occurred_at.date()
    return occurred_at.astimezone(datetime.UTC).date()


async def increment_from_event(
    db: AsyncIOMotorDatabase,
    event: SearchEventPayload,
    emit_outbox_event: bool = False
) -> DailyQueryStatDB:
    """
    Adds one to the (UTC day of occurred_at, query) counter.

    With ``emit_outbox_event`` the increment and a SEARCH_STATS_UPDATED outbox
    row are written in one transaction.
    """
    if not event.is_valid_for_aggregation():
        raise EventValidationError("SearchEventPayload invalid for aggregation (missing query or occurredAt)")

    day = utc_day(event.occurred_at)
    if not emit_outbox_event:
        return await daily_stats_store.increment(db, day, event.query)

    async def _increment_and_stage(session: AsyncIOMotorClientSession) -> DailyQueryStatDB:
        stat = await daily_stats_store.increment(db, day, event.query, session=session)
        await outbox_store.stage_stats_updated(db, stat, session=session)
        return stat

    # A lost first-insert race aborts the transaction; rerun it from the start
    for attempt in range(1, daily_stats_store.UPSERT_ATTEMPTS + 1):
        try:
            return await run_in_transaction(db, _increment_and_stage)
        except DuplicateKeyError:
            if attempt == daily_stats_store.UPSERT_ATTEMPTS:
                raise
            logger.debug(f"Upsert race on daily stat ({day}, '{event.query}'), rerunning transaction (attempt {attempt}).")


async def get_top_for_day(db: AsyncIOMotorDatabase, day: datetime.date, limit: int) -> List[DailyQueryStatDB]:
    return await daily_stats_store.top_for_day(db, day, limit)


async def get_top_in_range(
    db: AsyncIOMotorDatabase,
    from_day: datetime.date,
    to_day: datetime.date,
    limit: int
) -> List[DailyQueryStatDB]:
    if from_day > to_day:
        logger.info(f"Empty stats range requested: {from_day} > {to_day}")
        return []
    return await daily_stats_store.top_in_range(db, from_day, to_day, limit)
