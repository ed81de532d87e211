# Stateless JSON serialization for search events and envelopes
import json
import logging
from typing import Any, Union

from pydantic import BaseModel

from .schemas import SearchEventPayload

logger = logging.getLogger(__name__)


class EventSerializer:
    """
    Converts between Kafka message bytes and the service's Pydantic models.

    Holds no mutable state, so a single instance can be shared by the
    controller and the publishers and passed to them explicitly.
    """

    encoding = "utf-8"

    def decode_search_event(self, raw_value: Union[bytes, str]) -> SearchEventPayload:
        """Raises ValueError (pydantic.ValidationError, UnicodeDecodeError) when the bytes are not a search event."""
        if raw_value is None:
            raise ValueError("Message has no value")
        if isinstance(raw_value, bytes):
            raw_value = raw_value.decode(self.encoding)
        return SearchEventPayload.model_validate_json(raw_value)

    def to_json(self, value: Any) -> str:
        if isinstance(value, SearchEventPayload):
            return value.model_dump_json(by_alias=True)
        if isinstance(value, BaseModel):
            return value.model_dump_json()
        return json.dumps(value, default=str)

    def payload_as_dict(self, payload: SearchEventPayload) -> dict:
        return payload.model_dump(mode="json", by_alias=True)
