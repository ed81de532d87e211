# Ingestion controller: drives the stores for one delivered search event
import logging
import time
import traceback
from contextlib import contextmanager
from typing import Callable, Optional, Set, Tuple, Union
from motor.motor_asyncio import AsyncIOMotorDatabase

from opentelemetry.trace import SpanKind
from opentelemetry.trace.status import Status, StatusCode

from search_analytics_service.app.models import ProcessingStatus
from search_analytics_service.app.observability import (
    tracer,
    search_events_processed_counter,
    search_events_failed_counter,
    event_processing_latency_histogram,
)
from search_analytics_service.app.service import stats_service
from search_analytics_service.app.service.dead_letter_publisher import DeadLetterPublisher
from search_analytics_service.app.service.exceptions import PartitionOwnershipError
from search_analytics_service.infrastructure.database import raw_event_store, processing_error_store
from search_analytics_service.infrastructure.kafka.schemas import KafkaPosition, SearchEventPayload
from search_analytics_service.infrastructure.kafka.serialization import EventSerializer

logger = logging.getLogger(__name__)

ERROR_KIND_VALIDATION = "VALIDATION"
ERROR_KIND_DESERIALIZATION = "DESERIALIZATION"
ERROR_KIND_PROCESSING = "PROCESSING_ERROR"

INVALID_EVENT_MESSAGE = "SearchEventPayload invalid for aggregation (missing query or occurredAt)"

Ack = Callable[[], None]


def _stack_trace(exc: BaseException) -> str:
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))


def _error_message(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


class SearchEventIngestionController:
    """
    Sole entry point for delivered search events.

    For each event: record the raw event (idempotent on its Kafka position),
    validate, aggregate, mark processed, acknowledge. Failures are written to
    the raw event, the processing error log and the dead-letter topic, and
    the position is acknowledged anyway. Poison messages get zero retries.

    One worker owns a partition at a time. A concurrent ``handle`` for a
    partition that already has an event in flight raises
    PartitionOwnershipError without touching any store or acknowledging.
    """

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        dead_letter_publisher: DeadLetterPublisher,
        serializer: EventSerializer,
        emit_stats_outbox_events: bool = False
    ):
        self._db = db
        self._dead_letters = dead_letter_publisher
        self._serializer = serializer
        self._emit_stats_outbox_events = emit_stats_outbox_events
        self._in_flight: Set[Tuple[str, int]] = set()

    @contextmanager
    def _own_partition(self, position: KafkaPosition):
        partition_key = (position.topic, position.partition)
        if partition_key in self._in_flight:
            raise PartitionOwnershipError(position.topic, position.partition)
        self._in_flight.add(partition_key)
        try:
            yield
        finally:
            self._in_flight.discard(partition_key)

    async def handle(
        self,
        event: SearchEventPayload,
        position: KafkaPosition,
        ack: Ack,
        key: Optional[str] = None
    ) -> ProcessingStatus:
        start_time = time.monotonic()
        with self._own_partition(position), \
                tracer.start_as_current_span("handle_search_event", kind=SpanKind.INTERNAL) as span:
            span.set_attribute("messaging.destination.name", position.topic)
            span.set_attribute("messaging.kafka.partition", position.partition)
            span.set_attribute("messaging.kafka.message.offset", position.offset)

            raw_event_id: Optional[str] = None
            try:
                recorded = await raw_event_store.record_received(
                    self._db, position, key, event, self._serializer.to_json(event)
                )
                raw_event_id = recorded.id
                span.add_event("RawEventRecorded", {"raw_event.id": raw_event_id, "duplicate": recorded.duplicate})

                if recorded.duplicate and recorded.processing_status != ProcessingStatus.RECEIVED:
                    logger.info(
                        f"Redelivered event at {position} already {recorded.processing_status.value} "
                        f"(raw event {raw_event_id}); acknowledging without reprocessing."
                    )
                    outcome = recorded.processing_status
                elif not event.is_valid_for_aggregation():
                    outcome = await self._reject_invalid(position, key, raw_event_id)
                    span.add_event("EventRejected", {"error.kind": ERROR_KIND_VALIDATION})
                else:
                    stat = await stats_service.increment_from_event(
                        self._db, event, emit_outbox_event=self._emit_stats_outbox_events
                    )
                    span.add_event("DailyStatIncremented", {"stat.day": stat.day or "", "stat.count": stat.count})
                    await raw_event_store.mark_processed(self._db, raw_event_id)
                    outcome = ProcessingStatus.PROCESSED
                    if hasattr(search_events_processed_counter, "add"):
                        search_events_processed_counter.add(1, {"topic": position.topic})
            except Exception as exc:
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, description=f"Processing Error: {type(exc).__name__}"))
                outcome = await self._record_failure(exc, event, position, key, raw_event_id)

            ack()
            span.add_event("OffsetAcknowledged")

        latency = time.monotonic() - start_time
        if hasattr(event_processing_latency_histogram, "record"):
            event_processing_latency_histogram.record(latency, attributes={"outcome": outcome.value})
        logger.debug(f"Event at {position} handled with outcome {outcome.value} in {latency:.4f}s")
        return outcome

    async def handle_undecodable(
        self,
        raw_value: Union[bytes, str, None],
        position: KafkaPosition,
        ack: Ack,
        key: Optional[str],
        error: BaseException
    ) -> ProcessingStatus:
        """Bytes that are not a search event: no raw event row exists, so the error has no raw event id."""
        with self._own_partition(position):
            if isinstance(raw_value, bytes):
                raw_value = raw_value.decode("utf-8", errors="replace")
            logger.error(f"Undecodable message at {position}: {error}")

            await processing_error_store.log_error(
                self._db, None, position, ERROR_KIND_DESERIALIZATION, _error_message(error), _stack_trace(error)
            )
            await self._dead_letters.publish(key, raw_value, position, error, ERROR_KIND_DESERIALIZATION)
            if hasattr(search_events_failed_counter, "add"):
                search_events_failed_counter.add(1, {"error_kind": ERROR_KIND_DESERIALIZATION})
            ack()
        return ProcessingStatus.ERROR

    async def _reject_invalid(self, position: KafkaPosition, key: Optional[str], raw_event_id: str) -> ProcessingStatus:
        logger.warning(f"{INVALID_EVENT_MESSAGE}; key={key}, position={position}")
        await raw_event_store.mark_error(self._db, raw_event_id, INVALID_EVENT_MESSAGE)
        await processing_error_store.log_error(
            self._db, raw_event_id, position, ERROR_KIND_VALIDATION, INVALID_EVENT_MESSAGE, None
        )
        if hasattr(search_events_failed_counter, "add"):
            search_events_failed_counter.add(1, {"error_kind": ERROR_KIND_VALIDATION})
        return ProcessingStatus.ERROR

    async def _record_failure(
        self,
        exc: Exception,
        event: SearchEventPayload,
        position: KafkaPosition,
        key: Optional[str],
        raw_event_id: Optional[str]
    ) -> ProcessingStatus:
        # Nothing in here may raise: acknowledgment comes next
        logger.error(f"Failed to process search event; key={key}, position={position}: {exc}", exc_info=exc)
        message = _error_message(exc)

        if raw_event_id is not None:
            try:
                await raw_event_store.mark_error(self._db, raw_event_id, message)
            except Exception as mark_exc:
                logger.error(f"Could not mark raw event {raw_event_id} as ERROR: {mark_exc}", exc_info=True)

        error_id = await processing_error_store.log_error(
            self._db, raw_event_id, position, ERROR_KIND_PROCESSING, message, _stack_trace(exc)
        )
        logger.warning(f"Recorded processing error with id={error_id}")

        await self._dead_letters.publish(key, event, position, exc, ERROR_KIND_PROCESSING)
        if hasattr(search_events_failed_counter, "add"):
            search_events_failed_counter.add(1, {"error_kind": ERROR_KIND_PROCESSING})
        return ProcessingStatus.ERROR
