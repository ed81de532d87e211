# Append-only log of processing failures
import datetime
import logging
from typing import List, Optional
from motor.motor_asyncio import AsyncIOMotorDatabase

from .indexes import PROCESSING_ERRORS_COLLECTION
from search_analytics_service.app.models import ProcessingErrorDB
from search_analytics_service.infrastructure.kafka.schemas import KafkaPosition

logger = logging.getLogger(__name__)


async def log_error(
    db: AsyncIOMotorDatabase,
    raw_event_id: Optional[str],
    position: KafkaPosition,
    error_type: str,
    error_message: Optional[str],
    stack_trace: Optional[str] = None
) -> Optional[str]:
    """
    Appends a processing error and returns its id.

    Never raises: the caller is already on a failure path and must still
    reach acknowledgment, so a write failure here is only logged and
    reported as None.
    """
    error = ProcessingErrorDB(
        raw_event_id=raw_event_id,
        kafka_topic=position.topic,
        kafka_partition=position.partition,
        kafka_offset=position.offset,
        error_type=error_type,
        error_message=error_message,
        stack_trace=stack_trace,
    )
    try:
        await db[PROCESSING_ERRORS_COLLECTION].insert_one(error.model_dump())
    except Exception as e:
        logger.error(
            f"Failed to record {error_type} processing error for {position} "
            f"(raw event {raw_event_id}): {e}",
            exc_info=True
        )
        return None
    logger.info(f"Processing error recorded with ID: {error.id} ({error_type}) for {position}")
    return error.id


async def increment_retry(db: AsyncIOMotorDatabase, error_id: str) -> bool:
    """Bumps the retry bookkeeping. Called by external retry drivers, not by ingestion."""
    result = await db[PROCESSING_ERRORS_COLLECTION].update_one(
        {"id": error_id},
        {
            "$inc": {"retry_count": 1},
            "$set": {"last_retry_at": datetime.datetime.now(datetime.UTC)},
        }
    )
    if result.matched_count == 0:
        logger.warning(f"Processing error ID: {error_id} not found for retry increment.")
        return False
    return True


async def find_for_raw_event(db: AsyncIOMotorDatabase, raw_event_id: str) -> List[ProcessingErrorDB]:
    docs = await db[PROCESSING_ERRORS_COLLECTION].find({"raw_event_id": raw_event_id}).sort("occurred_at", 1).to_list(length=None)
    return [ProcessingErrorDB(**doc) for doc in docs]
