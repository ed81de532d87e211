# Publishes search events submitted over HTTP to the search events topic
import datetime
import logging
import uuid
from typing import Optional

from search_analytics_service.app.observability import tracer
from search_analytics_service.infrastructure.kafka.producer import KafkaProducerService
from search_analytics_service.infrastructure.kafka.schemas import SearchEventPayload

logger = logging.getLogger(__name__)


def _present(value: Optional[str]) -> bool:
    return value is not None and value.strip() != ""


def enrich_payload(payload: SearchEventPayload, now: Optional[datetime.datetime] = None) -> SearchEventPayload:
    """Fills in a missing event id, occurred_at and sent_at. Returns a new model."""
    now = now or datetime.datetime.now(datetime.UTC)
    updates = {}
    if not _present(payload.event_id):
        updates["event_id"] = str(uuid.uuid4())
    if payload.occurred_at is None:
        updates["occurred_at"] = now
    if payload.sent_at is None:
        updates["sent_at"] = now
    return payload.model_copy(update=updates)


def resolve_key(payload: SearchEventPayload) -> Optional[str]:
    # Same user lands on the same partition; the event id is the last resort
    for candidate in (payload.user_id, payload.anonymous_id, payload.session_id):
        if _present(candidate):
            return candidate
    return payload.event_id


def send_from_api(producer: KafkaProducerService, topic: str, incoming: SearchEventPayload) -> SearchEventPayload:
    """Enriches ``incoming`` and enqueues it; returns the payload that was sent."""
    with tracer.start_as_current_span("publish_search_event") as span:
        payload = enrich_payload(incoming)
        key = resolve_key(payload)
        span.set_attribute("messaging.destination.name", topic)
        span.set_attribute("search_event.id", payload.event_id)

        logger.info(f"Producing search event to topic='{topic}', key='{key}', eventId='{payload.event_id}'")
        producer.produce_message(topic, payload, key=key)
        return payload
