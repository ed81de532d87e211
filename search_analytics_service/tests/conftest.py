import datetime
import uuid

import pytest
from mongomock_motor import AsyncMongoMockClient

from search_analytics_service.infrastructure.kafka.schemas import KafkaPosition, SearchEventPayload


@pytest.fixture
def mongo_db():
    """In-memory Motor-compatible database; no sessions or transactions."""
    client = AsyncMongoMockClient()
    return client[f"search_analytics_test_{uuid.uuid4().hex}"]


@pytest.fixture
def make_position():
    def _make(offset: int = 0, partition: int = 0, topic: str = "search-events") -> KafkaPosition:
        return KafkaPosition(topic=topic, partition=partition, offset=offset)
    return _make


@pytest.fixture
def make_event():
    def _make(query="kafka", occurred_at=None, **kwargs) -> SearchEventPayload:
        if occurred_at is None:
            occurred_at = datetime.datetime(2024, 5, 1, 12, 0, tzinfo=datetime.timezone.utc)
        return SearchEventPayload(event_id=kwargs.pop("event_id", uuid.uuid4().hex), query=query, occurred_at=occurred_at, **kwargs)
    return _make
