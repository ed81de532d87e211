# Process entry points for the Kafka consumer and the outbox publisher
import asyncio
import logging
import signal
import sys
from typing import Optional

from search_analytics_service.app.config import settings
from search_analytics_service.app.observability import setup_opentelemetry
from search_analytics_service.app.service.dead_letter_publisher import DeadLetterPublisher
from search_analytics_service.app.service.ingestion_controller import SearchEventIngestionController
from search_analytics_service.app.service.outbox_publisher import OutboxPublisher
from search_analytics_service.infrastructure.database.connection import connect_to_mongo, close_mongo_connection, get_database
from search_analytics_service.infrastructure.database.indexes import ensure_indexes
from search_analytics_service.infrastructure.kafka.consumer import consume_search_events
from search_analytics_service.infrastructure.kafka.producer import get_kafka_producer, startup_kafka_producer, shutdown_kafka_producer
from search_analytics_service.infrastructure.kafka.serialization import EventSerializer

logger = logging.getLogger(__name__)


def install_stop_signals(stop_event: asyncio.Event) -> None:
    """SIGINT/SIGTERM request a graceful stop; the in-flight message is finished first."""
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            logger.warning(f"Signal handler for {sig.name} not supported on this platform.")


async def run_consumer_worker(stop_event: Optional[asyncio.Event] = None):
    stop_event = stop_event or asyncio.Event()
    connect_to_mongo()
    try:
        db = await get_database()
        await ensure_indexes(db)
        await startup_kafka_producer()

        serializer = EventSerializer()
        dead_letters = DeadLetterPublisher(
            get_kafka_producer(),
            settings.SEARCH_EVENTS_DLT_TOPIC,
            serializer,
            delivery_timeout=settings.KAFKA_DELIVERY_TIMEOUT_SECONDS
        )
        controller = SearchEventIngestionController(
            db,
            dead_letters,
            serializer,
            emit_stats_outbox_events=settings.STATS_OUTBOX_ENABLED
        )
        logger.info("Starting search events consumer...")
        await consume_search_events(controller, serializer, stop_event)
    finally:
        await shutdown_kafka_producer()
        close_mongo_connection()
        logger.info("Consumer worker finished.")


async def run_outbox_worker(stop_event: Optional[asyncio.Event] = None):
    stop_event = stop_event or asyncio.Event()
    connect_to_mongo()
    try:
        db = await get_database()
        await ensure_indexes(db)
        await startup_kafka_producer()

        publisher = OutboxPublisher(
            db,
            get_kafka_producer(),
            settings.OUTBOX_TOPIC,
            delivery_timeout=settings.KAFKA_DELIVERY_TIMEOUT_SECONDS
        )
        await publisher.run(settings.OUTBOX_BATCH_SIZE, settings.OUTBOX_POLL_INTERVAL_SECONDS, stop_event)
    finally:
        await shutdown_kafka_producer()
        close_mongo_connection()
        logger.info("Outbox worker finished.")


async def _run_until_signalled(worker) -> None:
    stop_event = asyncio.Event()
    install_stop_signals(stop_event)
    await worker(stop_event)


WORKERS = {
    "consumer": (run_consumer_worker, settings.SERVICE_NAME_CONSUMER),
    "outbox": (run_outbox_worker, settings.SERVICE_NAME_OUTBOX),
}


def main(argv=None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    if len(argv) != 1 or argv[0] not in WORKERS:
        print(f"usage: python -m search_analytics_service.app.workers {{{'|'.join(WORKERS)}}}", file=sys.stderr)
        return 2

    worker, service_name = WORKERS[argv[0]]
    setup_opentelemetry(service_name=service_name)
    asyncio.run(_run_until_signalled(worker))
    return 0


if __name__ == '__main__':
    sys.exit(main())
