# API Router for Health Checks
import datetime
import logging
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from motor.motor_asyncio import AsyncIOMotorDatabase

from search_analytics_service.infrastructure.database.connection import get_db
from search_analytics_service.app.config import settings

logger = logging.getLogger(__name__)
router = APIRouter()


def _now() -> str:
    return datetime.datetime.now(datetime.UTC).isoformat()


async def _mongodb_status(db: AsyncIOMotorDatabase) -> str:
    try:
        await db.command('ping')
    except Exception as e:
        logger.error(f"MongoDB health check ping failed: {e}")
        return "disconnected"
    return "connected"


@router.get("", tags=["Monitoring"])
async def health_check(db: AsyncIOMotorDatabase = Depends(get_db)):
    mongodb_status = await _mongodb_status(db)
    return {
        "status": "ok",
        "components": {"mongodb": mongodb_status},
        "service_name": settings.SERVICE_NAME_API,
        "timestamp": _now(),
    }


@router.get("/live", tags=["Monitoring"])
async def live():
    return {"status": "UP", "timestamp": _now()}


@router.get("/ready", tags=["Monitoring"])
async def ready(db: AsyncIOMotorDatabase = Depends(get_db)):
    mongodb_status = await _mongodb_status(db)
    body = {
        "status": "UP" if mongodb_status == "connected" else "DOWN",
        "timestamp": _now(),
        "components": {"mongodb": mongodb_status},
        "kafkaTopics": {
            "searchEvents": settings.SEARCH_EVENTS_TOPIC,
            "searchEventsDlt": settings.SEARCH_EVENTS_DLT_TOPIC,
            "outbox": settings.OUTBOX_TOPIC,
        },
    }
    return JSONResponse(status_code=200 if body["status"] == "UP" else 503, content=body)
