# Dead-letter publishing for events that could not be processed
import logging
from typing import Optional, Union

from search_analytics_service.app.observability import dead_letter_messages_counter
from search_analytics_service.infrastructure.kafka.producer import KafkaProducerService
from search_analytics_service.infrastructure.kafka.schemas import DeadLetterEnvelope, KafkaPosition, SearchEventPayload
from search_analytics_service.infrastructure.kafka.serialization import EventSerializer

logger = logging.getLogger(__name__)


class DeadLetterPublisher:
    """
    Wraps a failing event and its error context into one envelope and sends it
    to the dead-letter topic, keyed by the original message key.

    Best effort: ``publish`` never raises, because it runs on a path that must
    still acknowledge the original message.
    """

    def __init__(
        self,
        producer: KafkaProducerService,
        topic: str,
        serializer: EventSerializer,
        delivery_timeout: float = 10.0
    ):
        self._producer = producer
        self._topic = topic
        self._serializer = serializer
        self._delivery_timeout = delivery_timeout

    def build_envelope(
        self,
        original_key: Optional[str],
        payload: Union[SearchEventPayload, str, None],
        position: KafkaPosition,
        error: Optional[BaseException],
        error_kind: str
    ) -> DeadLetterEnvelope:
        if isinstance(payload, SearchEventPayload):
            payload = self._serializer.payload_as_dict(payload)
        return DeadLetterEnvelope(
            original_key=original_key,
            original_topic=position.topic,
            original_partition=position.partition,
            original_offset=position.offset,
            error_message=str(error) if error is not None else None,
            error_type=type(error).__name__ if error is not None else None,
            error_kind=error_kind,
            payload=payload,
        )

    async def publish(
        self,
        original_key: Optional[str],
        payload: Union[SearchEventPayload, str, None],
        position: KafkaPosition,
        error: Optional[BaseException],
        error_kind: str = "PROCESSING_ERROR"
    ) -> bool:
        try:
            envelope = self.build_envelope(original_key, payload, position, error, error_kind)
            value = self._serializer.to_json(envelope)
        except Exception as e:
            logger.error(f"Failed to serialize DLT payload for {position}: {e}", exc_info=True)
            return False

        try:
            await self._producer.send_and_wait(
                self._topic,
                value,
                key=original_key,
                timeout=self._delivery_timeout
            )
        except Exception as e:
            logger.error(f"Failed to send message to DLT topic='{self._topic}' for {position}: {e}", exc_info=True)
            return False

        if hasattr(dead_letter_messages_counter, "add"):
            dead_letter_messages_counter.add(1, {"error_kind": error_kind})
        logger.warning(f"Sent message to DLT topic='{self._topic}', key='{original_key}', position={position}")
        return True
