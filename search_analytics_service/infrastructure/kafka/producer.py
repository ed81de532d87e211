# Kafka Producer Utility
import asyncio
import logging
from confluent_kafka import Producer
from pydantic import BaseModel
from typing import Optional, Callable, Any, Dict, Union

from search_analytics_service.app.config import settings
from search_analytics_service.app.service.exceptions import KafkaProducerError

logger = logging.getLogger(__name__)

# Headroom after message.timeout.ms for librdkafka to serve the expiry report
DELIVERY_REPORT_GRACE_SECONDS = 5.0

class KafkaProducerService:
    def __init__(self, bootstrap_servers: str, message_timeout_seconds: float = 10.0):
        self.message_timeout_seconds = message_timeout_seconds
        self.producer_config = {
            'bootstrap.servers': bootstrap_servers,
            'enable.idempotence': True,
            'acks': 'all',
            # Undelivered messages fail with _MSG_TIMED_OUT after this; every send gets a report
            'message.timeout.ms': int(message_timeout_seconds * 1000),
        }
        self.producer = Producer(self.producer_config)
        self._cancelled = False
        self._poll_loop_task: Optional[asyncio.Task] = None
        logger.info(f"KafkaProducer initialized with servers: {bootstrap_servers}")

    def _delivery_report(self, err, msg):
        """ Called once for each message produced to indicate delivery result. """
        if err is not None:
            logger.error(f'Message delivery failed: Topic {msg.topic()} Key {msg.key()!r}: {err}')
        else:
            logger.info(f'Message delivered: Topic {msg.topic()} Key {msg.key()!r} Partition [{msg.partition()}] @ Offset {msg.offset()}')

    async def _poll_loop(self):
        """ Polls the producer for delivery reports. """
        while not self._cancelled:
            self.producer.poll(0.1)
            await asyncio.sleep(0.1)
        logger.info("KafkaProducer poll loop stopped.")

    @property
    def is_polling(self) -> bool:
        return self._poll_loop_task is not None and not self._poll_loop_task.done()

    def produce_message(
        self,
        topic: str,
        message: BaseModel,
        key: Optional[str] = None,
        callback: Optional[Callable[[Any, Any], None]] = None # err, msg
    ):
        """ Produces a Pydantic model message to a Kafka topic (fire and forget). """
        if self._cancelled:
            logger.warning(f"Producer is cancelled, not producing message to {topic}.")
            return

        try:
            value_json = message.model_dump_json(by_alias=True)

            self.producer.produce(
                topic,
                value=value_json.encode('utf-8'),
                key=key.encode('utf-8') if key else None,
                callback=callback if callback else self._delivery_report
            )
            logger.debug(f"Message enqueued to topic {topic} (key: {key}): {value_json}")
        except BufferError as e:
            logger.error(f"Kafka producer queue full. Message to {topic} not produced. Error: {e}")
            raise
        except Exception as e:
            logger.error(f"Error producing message to Kafka topic {topic}: {e}", exc_info=True)
            raise

    async def send_and_wait(
        self,
        topic: str,
        value: Union[bytes, str],
        key: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 10.0
    ):
        """
        Produces a message and waits for its delivery report.

        The wait is at least ``message.timeout.ms`` plus a grace period, so a
        message that is never delivered is reported as failed before the wait
        ends. Raises KafkaProducerError if the broker rejects the message or it
        expires. asyncio.TimeoutError means no report was served at all and
        the message's fate is unknown.
        Returns the delivered confluent_kafka Message.
        """
        wait_seconds = max(timeout, self.message_timeout_seconds + DELIVERY_REPORT_GRACE_SECONDS)
        loop = asyncio.get_running_loop()
        delivered: asyncio.Future = loop.create_future()

        def _resolve(err, msg):
            if delivered.done():
                return
            if err is not None:
                delivered.set_exception(KafkaProducerError(f"Delivery to {topic} failed: {err}"))
            else:
                delivered.set_result(msg)

        def _on_delivery(err, msg):
            self._delivery_report(err, msg)
            # Reports may be served from the flush thread
            loop.call_soon_threadsafe(_resolve, err, msg)

        if isinstance(value, str):
            value = value.encode('utf-8')

        try:
            self.producer.produce(
                topic,
                value=value,
                key=key.encode('utf-8') if key else None,
                headers=list(headers.items()) if headers else None,
                callback=_on_delivery
            )
        except BufferError as e:
            logger.error(f"Kafka producer queue full. Message to {topic} not produced. Error: {e}")
            raise KafkaProducerError(f"Producer queue full: {e}") from e
        except Exception as e:
            raise KafkaProducerError(f"Error producing message to {topic}: {e}") from e

        if not self.is_polling:
            # Nobody else serves delivery callbacks
            await asyncio.to_thread(self.producer.flush, wait_seconds)
        return await asyncio.wait_for(delivered, wait_seconds)

    async def start_polling(self):
        if self._poll_loop_task is None or self._poll_loop_task.done():
            self._cancelled = False
            self._poll_loop_task = asyncio.create_task(self._poll_loop())
            logger.info("KafkaProducer polling started.")

    async def stop_polling(self):
        if self._poll_loop_task and not self._cancelled:
            self._cancelled = True
            try:
                await asyncio.wait_for(self._poll_loop_task, timeout=5.0)
            except asyncio.TimeoutError:
                logger.warning("KafkaProducer poll loop did not stop in time.")
            except Exception as e:
                logger.error(f"Error stopping KafkaProducer poll loop: {e}", exc_info=True)
            self._poll_loop_task = None


    def flush(self, timeout: float = 10.0) -> int: # Return remaining messages
        """Wait for all messages in the Producer queue to be delivered. """
        remaining = self.producer.flush(timeout)
        if remaining > 0:
            logger.warning(f"{remaining} messages still in Kafka producer queue after flush timeout.")
        else:
            logger.info("All Kafka messages flushed successfully.")
        return remaining

_kafka_producer_instance: Optional[KafkaProducerService] = None

def get_kafka_producer() -> KafkaProducerService:
    global _kafka_producer_instance
    if _kafka_producer_instance is None:
        if not settings.KAFKA_BOOTSTRAP_SERVERS:
            logger.error("KAFKA_BOOTSTRAP_SERVERS not configured in settings. KafkaProducer cannot be initialized.")
            raise ValueError("KAFKA_BOOTSTRAP_SERVERS not configured.")
        _kafka_producer_instance = KafkaProducerService(
            bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS,
            message_timeout_seconds=settings.KAFKA_DELIVERY_TIMEOUT_SECONDS
        )
    return _kafka_producer_instance

async def startup_kafka_producer():
    producer = get_kafka_producer()
    await producer.start_polling()

async def shutdown_kafka_producer():
    if _kafka_producer_instance:
        logger.info("Flushing Kafka producer before shutdown...")
        _kafka_producer_instance.flush()
        await _kafka_producer_instance.stop_polling()
        logger.info("Kafka producer shutdown complete.")
    else:
        logger.info("Kafka producer was not initialized, skipping shutdown steps.")
