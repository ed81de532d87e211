# Kafka Consumer Implementation
import asyncio
import logging
from typing import Optional

from confluent_kafka import Consumer, KafkaError, KafkaException, Message

from opentelemetry.trace import SpanKind
from opentelemetry.trace.status import StatusCode, Status

from search_analytics_service.app.config import settings
from search_analytics_service.app.observability import (
    tracer,
    kafka_messages_consumed_counter,
    extract_trace_context_from_kafka_headers,
)
from search_analytics_service.app.service.ingestion_controller import SearchEventIngestionController
from .schemas import KafkaPosition
from .serialization import EventSerializer

logger = logging.getLogger(__name__)


def build_consumer_config() -> dict:
    return {
        'bootstrap.servers': settings.KAFKA_BOOTSTRAP_SERVERS,
        'group.id': settings.KAFKA_CONSUMER_GROUP_ID,
        'auto.offset.reset': 'earliest',
        'enable.auto.commit': False, # Offsets advance only through the controller's ack
    }


async def process_message(
    msg: Message,
    consumer: Consumer,
    controller: SearchEventIngestionController,
    serializer: EventSerializer
):
    parent_context = extract_trace_context_from_kafka_headers(msg.headers())
    with tracer.start_as_current_span("kafka_message_received", kind=SpanKind.CONSUMER, context=parent_context) as consume_span:
        position = KafkaPosition(topic=msg.topic(), partition=msg.partition(), offset=msg.offset())
        key = msg.key().decode('utf-8', errors='replace') if msg.key() else None

        consume_span.set_attribute("messaging.system", "kafka")
        consume_span.set_attribute("messaging.destination.name", position.topic)
        consume_span.set_attribute("messaging.kafka.partition", position.partition)
        consume_span.set_attribute("messaging.kafka.message.offset", position.offset)
        if key:
            consume_span.set_attribute("messaging.kafka.message.key", key)

        if hasattr(kafka_messages_consumed_counter, 'add'):
            kafka_messages_consumed_counter.add(1, {"topic": position.topic, "kafka_partition": str(position.partition)})
        logger.info(f"Consumed message from {position}")

        def ack():
            try:
                consumer.commit(message=msg, asynchronous=False)
            except KafkaException as e:
                # A later commit on this partition covers this offset; a redelivery is deduplicated
                logger.error(f"Offset commit failed for {position}: {e}")

        try:
            event = serializer.decode_search_event(msg.value())
        except ValueError as e:
            consume_span.record_exception(e)
            consume_span.set_status(Status(StatusCode.ERROR, description=f"Decode Error: {type(e).__name__}"))
            await controller.handle_undecodable(msg.value(), position, ack, key, e)
            return

        outcome = await controller.handle(event, position, ack, key=key)
        consume_span.set_attribute("search_event.outcome", outcome.value)
        consume_span.set_status(Status(StatusCode.OK))


async def consume_search_events(
    controller: SearchEventIngestionController,
    serializer: EventSerializer,
    stop_event: Optional[asyncio.Event] = None
):
    """
    Single consumer loop for the search events topic.

    This loop is the only worker in the process: it hands one message at a
    time to the controller and waits for it to finish before polling again,
    so per-partition order is kept and no partition is processed twice
    concurrently. ``stop_event`` is checked between messages only; the
    consumer is closed (releasing its partitions) after the in-flight message
    has been acknowledged.
    """
    stop_event = stop_event or asyncio.Event()
    logger.info("Initializing Kafka consumer...")
    consumer = Consumer(build_consumer_config())

    try:
        consumer.subscribe([settings.SEARCH_EVENTS_TOPIC])
        logger.info(f"Kafka consumer subscribed to {settings.SEARCH_EVENTS_TOPIC} with group {settings.KAFKA_CONSUMER_GROUP_ID}. Waiting for messages...")

        while not stop_event.is_set():
            msg = await asyncio.to_thread(consumer.poll, settings.KAFKA_POLL_TIMEOUT_SECONDS)
            if msg is None:
                continue

            if msg.error():
                if msg.error().code() == KafkaError._PARTITION_EOF:
                    continue
                if msg.error().fatal():
                    raise KafkaException(msg.error())
                logger.error(f"Kafka error: {msg.error()}. Skipping.")
                continue

            await process_message(msg, consumer, controller, serializer)
    except KafkaException as ke:
        logger.critical(f"Critical KafkaException in consumer: {ke}", exc_info=True)
        raise
    finally:
        logger.info("Closing Kafka consumer...")
        consumer.close()
        logger.info("Kafka consumer closed.")
