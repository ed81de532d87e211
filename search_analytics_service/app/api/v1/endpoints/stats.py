# API Router for aggregated search statistics (read-only)
import datetime
import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from motor.motor_asyncio import AsyncIOMotorDatabase

from search_analytics_service.app.config import settings
from search_analytics_service.app.models import DailyQueryStatDB
from search_analytics_service.app.service import stats_service
from search_analytics_service.infrastructure.database.connection import get_db

logger = logging.getLogger(__name__)
router = APIRouter()


def effective_limit(limit: Optional[int]) -> int:
    if limit is None:
        return settings.STATS_DEFAULT_LIMIT
    return min(limit, settings.STATS_MAX_LIMIT)


@router.get("/stats/daily", response_model=List[DailyQueryStatDB], tags=["Stats"])
async def get_daily_stats(
    day: datetime.date,
    limit: Optional[int] = None,
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    try:
        return await stats_service.get_top_for_day(db, day, effective_limit(limit))
    except Exception as e:
        logger.error(f"Error retrieving daily stats for {day}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to retrieve daily stats")


@router.get("/stats/range", response_model=List[DailyQueryStatDB], tags=["Stats"])
async def get_range_stats(
    from_day: datetime.date = Query(..., alias="from"),
    to_day: datetime.date = Query(..., alias="to"),
    limit: Optional[int] = None,
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    try:
        return await stats_service.get_top_in_range(db, from_day, to_day, effective_limit(limit))
    except Exception as e:
        logger.error(f"Error retrieving stats for range {from_day}..{to_day}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to retrieve range stats")
