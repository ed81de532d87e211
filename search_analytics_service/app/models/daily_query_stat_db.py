import uuid
from typing import Optional

from pydantic import BaseModel, Field


class DailyQueryStatDB(BaseModel): # Counter per (day, query)
    id: Optional[str] = Field(default_factory=lambda: str(uuid.uuid4().hex))
    day: Optional[str] = None # ISO date (UTC), e.g. "2024-05-01"; None on range aggregates
    query: str
    count: int = 0
