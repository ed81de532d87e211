import datetime
import enum
import uuid
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ProcessingStatus(str, enum.Enum):
    RECEIVED = "RECEIVED"
    PROCESSED = "PROCESSED"
    SKIPPED = "SKIPPED"
    ERROR = "ERROR"


class RawSearchEventDB(BaseModel): # One document per consumed Kafka message
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4().hex))
    event_key: Optional[str] = None # Kafka record key
    user_id: Optional[str] = None
    query: Optional[str] = None
    country: Optional[str] = None
    occurred_at: Optional[datetime.datetime] = None # Producer-supplied
    received_at: datetime.datetime = Field(default_factory=lambda: datetime.datetime.now(datetime.UTC))

    # Source position; unique together, this is the dedup key for redeliveries
    kafka_topic: str
    kafka_partition: int
    kafka_offset: int

    payload: str # Serialized message as received
    processing_status: ProcessingStatus = ProcessingStatus.RECEIVED
    error_message: Optional[str] = None
