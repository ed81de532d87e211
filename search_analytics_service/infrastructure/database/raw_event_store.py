# Functions for Storing Raw Search Events
import logging
from typing import List, Optional, Dict, Any
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel
from pymongo import ReturnDocument, DESCENDING
from pymongo.errors import DuplicateKeyError

from .indexes import RAW_EVENTS_COLLECTION
from search_analytics_service.app.models import RawSearchEventDB, ProcessingStatus
from search_analytics_service.infrastructure.kafka.schemas import KafkaPosition, SearchEventPayload

logger = logging.getLogger(__name__)


class RecordedRawEvent(BaseModel):
    id: str
    processing_status: ProcessingStatus
    duplicate: bool = False # True when the position had already been recorded


def _position_filter(position: KafkaPosition) -> Dict[str, Any]:
    return {
        "kafka_topic": position.topic,
        "kafka_partition": position.partition,
        "kafka_offset": position.offset,
    }


async def record_received(
    db: AsyncIOMotorDatabase,
    position: KafkaPosition,
    key: Optional[str],
    event: SearchEventPayload,
    raw_payload: str
) -> RecordedRawEvent:
    """
    Inserts a RECEIVED raw event for ``position`` unless one already exists.

    A redelivered position is not an error: the existing document's id and
    status are returned with ``duplicate=True``.
    """
    raw_event = RawSearchEventDB(
        event_key=key,
        user_id=event.user_id,
        query=event.query,
        country=event.country,
        occurred_at=event.occurred_at,
        kafka_topic=position.topic,
        kafka_partition=position.partition,
        kafka_offset=position.offset,
        payload=raw_payload,
    )
    position_filter = _position_filter(position)

    try:
        stored = await db[RAW_EVENTS_COLLECTION].find_one_and_update(
            position_filter,
            {"$setOnInsert": raw_event.model_dump()},
            upsert=True,
            return_document=ReturnDocument.AFTER
        )
    except DuplicateKeyError:
        # Concurrent upsert for the same position won the insert
        stored = await db[RAW_EVENTS_COLLECTION].find_one(position_filter)

    if stored is None:
        raise RuntimeError(f"Raw event at {position} could not be recorded or read back.")

    duplicate = stored["id"] != raw_event.id
    if duplicate:
        logger.info(f"Raw event at {position} already recorded with ID: {stored['id']} (status {stored['processing_status']}).")
    else:
        logger.info(f"Raw event added to store with ID: {raw_event.id} at {position}")
    return RecordedRawEvent(id=stored["id"], processing_status=stored["processing_status"], duplicate=duplicate)


async def _update_status(db: AsyncIOMotorDatabase, raw_event_id: str, status: ProcessingStatus, error_message: Optional[str]) -> None:
    result = await db[RAW_EVENTS_COLLECTION].update_one(
        {"id": raw_event_id},
        {"$set": {"processing_status": status.value, "error_message": error_message}}
    )
    if result.matched_count == 0:
        logger.warning(f"Raw event ID: {raw_event_id} not found for status update to {status.value}.")


async def mark_processed(db: AsyncIOMotorDatabase, raw_event_id: str) -> None:
    await _update_status(db, raw_event_id, ProcessingStatus.PROCESSED, None)


async def mark_error(db: AsyncIOMotorDatabase, raw_event_id: str, error_message: Optional[str]) -> None:
    await _update_status(db, raw_event_id, ProcessingStatus.ERROR, error_message)


async def find_by_position(db: AsyncIOMotorDatabase, position: KafkaPosition) -> Optional[RawSearchEventDB]:
    doc = await db[RAW_EVENTS_COLLECTION].find_one(_position_filter(position))
    return RawSearchEventDB(**doc) if doc else None


async def list_raw_events(
    db: AsyncIOMotorDatabase,
    limit: int = 100,
    skip: int = 0,
    status: Optional[ProcessingStatus] = None
) -> List[RawSearchEventDB]:
    query_filter: Dict[str, Any] = {}
    if status:
        query_filter["processing_status"] = ProcessingStatus(status).value

    cursor = db[RAW_EVENTS_COLLECTION].find(query_filter).sort("received_at", DESCENDING).skip(skip).limit(limit)
    docs = await cursor.to_list(length=limit)
    return [RawSearchEventDB(**doc) for doc in docs]
