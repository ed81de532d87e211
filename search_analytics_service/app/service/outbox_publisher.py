# Outbox relay: polls NEW rows and forwards them to Kafka
import asyncio
import logging
from typing import Optional
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel

from search_analytics_service.app.observability import (
    tracer,
    outbox_events_published_counter,
    outbox_events_failed_counter,
)
from search_analytics_service.infrastructure.database import outbox_store
from search_analytics_service.infrastructure.kafka.producer import KafkaProducerService

logger = logging.getLogger(__name__)


class OutboxDrainResult(BaseModel):
    selected: int = 0
    published: int = 0
    failed: int = 0
    undetermined: int = 0


class OutboxPublisher:
    """
    Forwards staged outbox rows to the outbox topic.

    Each pass takes up to ``batch_size`` NEW rows, oldest first. A row whose
    send fails is marked FAILED and is not selected again unless something
    outside this class resets it to NEW; there is no automatic retry.
    FAILED is only set from a delivery report, so it always means the
    message was not published. A send that gets no report stays NEW.
    """

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        producer: KafkaProducerService,
        topic: str,
        delivery_timeout: float = 10.0
    ):
        self._db = db
        self._producer = producer
        self._topic = topic
        self._delivery_timeout = delivery_timeout

    async def drain_and_publish(self, batch_size: int) -> OutboxDrainResult:
        result = OutboxDrainResult()
        with tracer.start_as_current_span("outbox_drain") as span:
            events = await outbox_store.find_next_new_events(self._db, batch_size)
            result.selected = len(events)
            span.set_attribute("outbox.batch.selected", result.selected)

            for event in events:
                try:
                    await self._producer.send_and_wait(
                        self._topic,
                        event.payload,
                        key=event.partition_key,
                        headers=event.headers,
                        timeout=self._delivery_timeout
                    )
                except asyncio.TimeoutError:
                    # No delivery report: the message may still be sent, so FAILED would be wrong
                    logger.warning(f"No delivery report for outbox event {event.id} ({event.event_type}); leaving it NEW.")
                    result.undetermined += 1
                    continue
                except Exception as e:
                    error_message = str(e) or type(e).__name__
                    logger.error(f"Failed to publish outbox event {event.id} ({event.event_type}): {error_message}")
                    await outbox_store.mark_failed(self._db, event.id, error_message)
                    result.failed += 1
                    if hasattr(outbox_events_failed_counter, "add"):
                        outbox_events_failed_counter.add(1, {"event_type": event.event_type})
                    continue

                await outbox_store.mark_published(self._db, event.id)
                result.published += 1
                if hasattr(outbox_events_published_counter, "add"):
                    outbox_events_published_counter.add(1, {"event_type": event.event_type})

            span.set_attribute("outbox.batch.published", result.published)
            span.set_attribute("outbox.batch.failed", result.failed)

        if result.selected:
            logger.info(f"Outbox drain finished: {result.published} published, {result.failed} failed of {result.selected}.")
        return result

    async def run(self, batch_size: int, poll_interval: float, stop_event: Optional[asyncio.Event] = None):
        """Drains on a fixed interval until ``stop_event`` is set."""
        stop_event = stop_event or asyncio.Event()
        logger.info(f"Outbox publisher started (topic={self._topic}, batch_size={batch_size}, interval={poll_interval}s).")
        while not stop_event.is_set():
            try:
                result = await self.drain_and_publish(batch_size)
            except Exception as e:
                # Store outage; the NEW rows stay put for the next pass
                logger.error(f"Outbox drain pass failed: {e}", exc_info=True)
                result = OutboxDrainResult()

            if result.selected < batch_size:
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=poll_interval)
                except asyncio.TimeoutError:
                    pass
        logger.info("Outbox publisher stopped.")
