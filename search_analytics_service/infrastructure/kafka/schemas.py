# Pydantic models for Kafka message structures
import datetime
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class KafkaPosition(BaseModel):
    """Exact location of a message in the source log."""
    model_config = ConfigDict(frozen=True)

    topic: str
    partition: int
    offset: int

    def __str__(self) -> str:
        return f"{self.topic}/{self.partition}/{self.offset}"


class SearchEventPayload(BaseModel):
    # Producers send camelCase (eventId, occurredAt); snake_case is accepted too
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    event_id: Optional[str] = None
    user_id: Optional[str] = None
    anonymous_id: Optional[str] = None
    session_id: Optional[str] = None
    query: Optional[str] = None
    country: Optional[str] = None # ISO 3166-1 alpha-2
    occurred_at: Optional[datetime.datetime] = None
    sent_at: Optional[datetime.datetime] = None

    def is_valid_for_aggregation(self) -> bool:
        return bool(self.query and self.query.strip()) and self.occurred_at is not None


class DeadLetterEnvelope(BaseModel):
    original_key: Optional[str] = None
    original_topic: str
    original_partition: int
    original_offset: int
    error_message: Optional[str] = None
    error_type: Optional[str] = None # Exception class name
    error_kind: str # VALIDATION, DESERIALIZATION, PROCESSING_ERROR
    payload: Union[Dict[str, Any], str, None] = None # Decoded event, or raw text when undecodable
    failed_at: datetime.datetime = Field(default_factory=lambda: datetime.datetime.now(datetime.UTC))
