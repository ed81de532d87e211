# API Router for publishing search events into Kafka
import datetime
import logging
from fastapi import APIRouter, Depends, HTTPException, status

from search_analytics_service.app.config import settings
from search_analytics_service.app.service import search_event_producer
from search_analytics_service.infrastructure.kafka.producer import KafkaProducerService, get_kafka_producer
from search_analytics_service.infrastructure.kafka.schemas import SearchEventPayload

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/search-events", status_code=status.HTTP_202_ACCEPTED, tags=["Search Events"])
async def publish_search_event(
    payload: SearchEventPayload,
    producer: KafkaProducerService = Depends(get_kafka_producer)
):
    try:
        sent = search_event_producer.send_from_api(producer, settings.SEARCH_EVENTS_TOPIC, payload)
    except BufferError as e:
        logger.error(f"Kafka producer queue full while publishing search event: {e}")
        raise HTTPException(status_code=503, detail="Event queue is full, retry later")
    except Exception as e:
        logger.error(f"Error publishing search event: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to publish search event")

    return {
        "status": "ACCEPTED",
        "eventId": sent.event_id,
        "occurredAt": sent.occurred_at,
        "sentAt": sent.sent_at,
        "timestamp": datetime.datetime.now(datetime.UTC),
    }
