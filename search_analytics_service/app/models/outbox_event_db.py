import datetime
import enum
import uuid
from typing import Optional, Dict

from pydantic import BaseModel, ConfigDict, Field


class OutboxStatus(str, enum.Enum):
    NEW = "NEW"
    PUBLISHED = "PUBLISHED"
    FAILED = "FAILED"


class OutboxEventDB(BaseModel): # Internally produced event awaiting publish
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4().hex))
    aggregate_type: str # e.g., "DailyQueryStat"
    aggregate_id: str
    event_type: str # e.g., "SEARCH_STATS_UPDATED"
    payload: str # Serialized JSON, published as-is
    headers: Optional[Dict[str, str]] = None
    partition_key: Optional[str] = None
    status: OutboxStatus = OutboxStatus.NEW
    created_at: datetime.datetime = Field(default_factory=lambda: datetime.datetime.now(datetime.UTC))
    published_at: Optional[datetime.datetime] = None
    last_error: Optional[str] = None
