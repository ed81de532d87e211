import datetime
import uuid
from typing import Optional

from pydantic import BaseModel, Field


class ProcessingErrorDB(BaseModel): # Append-only record of a failure
    id: str = Field(default_factory=lambda: str(uuid.uuid4().hex))
    raw_event_id: Optional[str] = None # None when the raw event itself could not be created
    kafka_topic: str
    kafka_partition: int
    kafka_offset: int
    error_type: str # VALIDATION, DESERIALIZATION, PROCESSING_ERROR
    error_message: Optional[str] = None
    stack_trace: Optional[str] = None
    retry_count: int = 0
    last_retry_at: Optional[datetime.datetime] = None
    occurred_at: datetime.datetime = Field(default_factory=lambda: datetime.datetime.now(datetime.UTC))
