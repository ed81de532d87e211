# API Router for Raw Events
from fastapi import APIRouter, Depends, HTTPException, Query
from typing import List, Optional
import logging
from motor.motor_asyncio import AsyncIOMotorDatabase

from search_analytics_service.app.models import RawSearchEventDB, ProcessingStatus
from search_analytics_service.infrastructure.database import raw_event_store
from search_analytics_service.infrastructure.database.connection import get_db

logger = logging.getLogger(__name__)
router = APIRouter()

@router.get("/events/raw", response_model=List[RawSearchEventDB], tags=["Events"])
async def list_raw_events(
    limit: int = Query(10, ge=1, le=1000),
    skip: int = Query(0, ge=0),
    status: Optional[ProcessingStatus] = None,
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    try:
        return await raw_event_store.list_raw_events(db, limit=limit, skip=skip, status=status)
    except Exception as e:
        logger.error(f"Error retrieving raw events: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to retrieve raw events")
