# End-to-end behaviour of the ingestion path against an in-memory document store
import asyncio
import datetime
import json
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from search_analytics_service.app.models import ProcessingStatus
from search_analytics_service.app.service import stats_service
from search_analytics_service.app.service.dead_letter_publisher import DeadLetterPublisher
from search_analytics_service.app.service.ingestion_controller import SearchEventIngestionController
from search_analytics_service.infrastructure.database import daily_stats_store, raw_event_store, processing_error_store
from search_analytics_service.infrastructure.database.indexes import (
    ensure_indexes,
    RAW_EVENTS_COLLECTION,
    DAILY_STATS_COLLECTION,
    PROCESSING_ERRORS_COLLECTION,
)
from search_analytics_service.infrastructure.kafka.serialization import EventSerializer

DAY = datetime.date(2024, 5, 1)


@pytest.fixture
def producer():
    producer = MagicMock()
    producer.send_and_wait = AsyncMock()
    return producer


@pytest.fixture
def controller(mongo_db, producer):
    serializer = EventSerializer()
    dead_letters = DeadLetterPublisher(producer, "search-events-dlt", serializer)
    return SearchEventIngestionController(mongo_db, dead_letters, serializer)


@pytest.mark.asyncio
async def test_redelivery_of_same_position_counts_once(mongo_db, controller, make_event, make_position):
    await ensure_indexes(mongo_db)
    event = make_event(query="kafka")
    position = make_position(offset=10)
    acks = MagicMock()

    first = await controller.handle(event, position, acks)
    second = await controller.handle(event, position, acks)

    assert first == ProcessingStatus.PROCESSED
    assert second == ProcessingStatus.PROCESSED
    assert acks.call_count == 2
    assert (await daily_stats_store.find_by_day_and_query(mongo_db, DAY, "kafka")).count == 1
    assert await mongo_db[RAW_EVENTS_COLLECTION].count_documents({}) == 1


@pytest.mark.asyncio
async def test_increments_from_several_partitions_accumulate(mongo_db, controller, make_event, make_position):
    # Partitions interleave at await points; each upsert itself runs to completion in the in-memory store
    await ensure_indexes(mongo_db)

    async def drain_partition(partition):
        for offset in range(10):
            await controller.handle(make_event(query="kafka"), make_position(offset=offset, partition=partition), MagicMock())

    await asyncio.gather(*(drain_partition(p) for p in range(4)))

    assert (await daily_stats_store.find_by_day_and_query(mongo_db, DAY, "kafka")).count == 40
    assert await mongo_db[DAILY_STATS_COLLECTION].count_documents({}) == 1


@pytest.mark.asyncio
async def test_top_queries_for_a_day(mongo_db, controller, make_event, make_position):
    for offset, query in enumerate(["java", "java", "java", "spring"]):
        await controller.handle(make_event(query=query), make_position(offset=offset), MagicMock())

    top = await stats_service.get_top_for_day(mongo_db, DAY, 10)

    assert [(s.query, s.count) for s in top] == [("java", 3), ("spring", 1)]


@pytest.mark.asyncio
async def test_range_aggregation_across_days(mongo_db, controller, make_event, make_position):
    first_day = datetime.datetime(2024, 5, 1, 10, 0, tzinfo=datetime.timezone.utc)
    second_day = datetime.datetime(2024, 5, 2, 10, 0, tzinfo=datetime.timezone.utc)
    for offset, occurred in enumerate([first_day, first_day, second_day]):
        await controller.handle(make_event(query="kafka", occurred_at=occurred), make_position(offset=offset), MagicMock())

    top = await stats_service.get_top_in_range(mongo_db, DAY, DAY + datetime.timedelta(days=1), 10)

    assert len(top) == 1
    assert (top[0].query, top[0].count, top[0].id, top[0].day) == ("kafka", 3, None, None)


@pytest.mark.asyncio
async def test_invalid_event_short_circuits(mongo_db, controller, producer, make_event, make_position):
    position = make_position(offset=1)
    ack = MagicMock()

    outcome = await controller.handle(make_event(query=None), position, ack)

    assert outcome == ProcessingStatus.ERROR
    raw = await raw_event_store.find_by_position(mongo_db, position)
    assert raw.processing_status == "ERROR"
    errors = await processing_error_store.find_for_raw_event(mongo_db, raw.id)
    assert [e.error_type for e in errors] == ["VALIDATION"]
    assert await mongo_db[DAILY_STATS_COLLECTION].count_documents({}) == 0
    producer.send_and_wait.assert_not_called()
    ack.assert_called_once()


@pytest.mark.asyncio
async def test_processing_failure_is_isolated(mongo_db, controller, producer, make_event, make_position):
    position = make_position(offset=2)
    ack = MagicMock()

    with patch(
        "search_analytics_service.app.service.ingestion_controller.stats_service.increment_from_event",
        new_callable=AsyncMock,
        side_effect=RuntimeError("write conflict")
    ):
        outcome = await controller.handle(make_event(query="kafka", event_id="e-2"), position, ack, key="u-2")

    assert outcome == ProcessingStatus.ERROR
    raw = await raw_event_store.find_by_position(mongo_db, position)
    assert raw.processing_status == "ERROR"
    assert raw.error_message == "write conflict"
    errors = await processing_error_store.find_for_raw_event(mongo_db, raw.id)
    assert len(errors) == 1
    assert errors[0].error_type == "PROCESSING_ERROR"
    assert "RuntimeError" in errors[0].stack_trace

    producer.send_and_wait.assert_awaited_once()
    topic, value = producer.send_and_wait.call_args.args
    assert topic == "search-events-dlt"
    assert producer.send_and_wait.call_args.kwargs["key"] == "u-2"
    assert json.loads(value)["payload"]["eventId"] == "e-2"
    ack.assert_called_once()

    # The next event on the partition proceeds normally
    assert await controller.handle(make_event(query="kafka"), make_position(offset=3), MagicMock()) == ProcessingStatus.PROCESSED


@pytest.mark.asyncio
async def test_dead_letter_outage_does_not_block_ack(mongo_db, controller, producer, make_event, make_position):
    producer.send_and_wait.side_effect = ConnectionError("broker down")
    ack = MagicMock()

    with patch(
        "search_analytics_service.app.service.ingestion_controller.stats_service.increment_from_event",
        new_callable=AsyncMock,
        side_effect=RuntimeError("boom")
    ):
        outcome = await controller.handle(make_event(), make_position(offset=4), ack)

    assert outcome == ProcessingStatus.ERROR
    ack.assert_called_once()
    assert await mongo_db[PROCESSING_ERRORS_COLLECTION].count_documents({}) == 1
