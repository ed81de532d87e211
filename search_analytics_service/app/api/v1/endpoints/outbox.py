# API Router for outbox maintenance
import logging
from fastapi import APIRouter, Depends, HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase

from search_analytics_service.app.models import OutboxEventDB, OutboxStatus
from search_analytics_service.app.service.exceptions import OutboxEventNotFoundError
from search_analytics_service.infrastructure.database import outbox_store
from search_analytics_service.infrastructure.database.connection import get_db

logger = logging.getLogger(__name__)
router = APIRouter()


async def retry_failed_event(db: AsyncIOMotorDatabase, outbox_id: str) -> OutboxEventDB:
    """Resets a FAILED row to NEW so the publisher picks it up again."""
    event = await outbox_store.get_outbox_event(db, outbox_id)
    if event is None:
        raise OutboxEventNotFoundError(outbox_id)
    if event.status != OutboxStatus.FAILED.value:
        return event
    await outbox_store.reset_to_new(db, outbox_id)
    return await outbox_store.get_outbox_event(db, outbox_id)


@router.post("/outbox/{outbox_id}/retry", response_model=OutboxEventDB, tags=["Outbox"])
async def retry_outbox_event(outbox_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    try:
        event = await retry_failed_event(db, outbox_id)
    except OutboxEventNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    if event.status != OutboxStatus.NEW.value:
        raise HTTPException(status_code=409, detail=f"Outbox event '{outbox_id}' is {event.status}, only FAILED events can be retried")
    return event
