import asyncio
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from search_analytics_service.app.models import ProcessingStatus, DailyQueryStatDB
from search_analytics_service.app.service.ingestion_controller import (
    SearchEventIngestionController,
    ERROR_KIND_VALIDATION,
    ERROR_KIND_PROCESSING,
    ERROR_KIND_DESERIALIZATION,
)
from search_analytics_service.app.service.exceptions import PartitionOwnershipError
from search_analytics_service.infrastructure.database.raw_event_store import RecordedRawEvent
from search_analytics_service.infrastructure.kafka.serialization import EventSerializer

MODULE = "search_analytics_service.app.service.ingestion_controller"


@pytest.fixture
def dead_letters():
    dead_letters = MagicMock()
    dead_letters.publish = AsyncMock(return_value=True)
    return dead_letters


@pytest.fixture
def controller(dead_letters):
    return SearchEventIngestionController(MagicMock(), dead_letters, EventSerializer())


@pytest.fixture
def stores():
    with patch(f"{MODULE}.raw_event_store") as raw_store, \
            patch(f"{MODULE}.processing_error_store") as error_store, \
            patch(f"{MODULE}.stats_service") as stats:
        raw_store.record_received = AsyncMock(
            return_value=RecordedRawEvent(id="raw-1", processing_status=ProcessingStatus.RECEIVED)
        )
        raw_store.mark_processed = AsyncMock()
        raw_store.mark_error = AsyncMock()
        error_store.log_error = AsyncMock(return_value="err-1")
        stats.increment_from_event = AsyncMock(
            return_value=DailyQueryStatDB(id="s-1", day="2024-05-01", query="kafka", count=1)
        )
        yield raw_store, error_store, stats


@pytest.mark.asyncio
async def test_valid_event_is_aggregated_then_acked(controller, stores, dead_letters, make_event, make_position):
    raw_store, error_store, stats = stores
    order = []
    raw_store.mark_processed.side_effect = lambda *a: order.append("processed")
    ack = MagicMock(side_effect=lambda: order.append("ack"))
    event = make_event(query="kafka")

    outcome = await controller.handle(event, make_position(offset=3), ack, key="u-1")

    assert outcome == ProcessingStatus.PROCESSED
    raw_store.record_received.assert_awaited_once()
    assert raw_store.record_received.call_args.args[2] == "u-1"
    stats.increment_from_event.assert_awaited_once_with(controller._db, event, emit_outbox_event=False)
    raw_store.mark_processed.assert_awaited_once_with(controller._db, "raw-1")
    assert order == ["processed", "ack"]
    error_store.log_error.assert_not_called()
    dead_letters.publish.assert_not_called()


@pytest.mark.asyncio
async def test_invalid_event_is_rejected_without_dead_letter(controller, stores, dead_letters, make_event, make_position):
    raw_store, error_store, stats = stores
    ack = MagicMock()

    outcome = await controller.handle(make_event(query=None), make_position(offset=4), ack)

    assert outcome == ProcessingStatus.ERROR
    stats.increment_from_event.assert_not_called()
    raw_store.mark_error.assert_awaited_once()
    assert raw_store.mark_error.call_args.args[1] == "raw-1"
    assert error_store.log_error.call_args.args[1] == "raw-1"
    assert error_store.log_error.call_args.args[3] == ERROR_KIND_VALIDATION
    dead_letters.publish.assert_not_called()
    ack.assert_called_once()


@pytest.mark.asyncio
async def test_processing_failure_is_recorded_dead_lettered_and_acked(controller, stores, dead_letters, make_event, make_position):
    raw_store, error_store, stats = stores
    stats.increment_from_event.side_effect = RuntimeError("write conflict")
    ack = MagicMock()
    event = make_event(query="kafka")
    position = make_position(offset=5)

    outcome = await controller.handle(event, position, ack, key="u-9")

    assert outcome == ProcessingStatus.ERROR
    raw_store.mark_processed.assert_not_called()
    raw_store.mark_error.assert_awaited_once_with(controller._db, "raw-1", "write conflict")
    args = error_store.log_error.call_args.args
    assert args[1:5] == ("raw-1", position, ERROR_KIND_PROCESSING, "write conflict")
    assert "RuntimeError" in args[5]
    dead_letters.publish.assert_awaited_once()
    key, payload, dlt_position, error, kind = dead_letters.publish.call_args.args
    assert (key, payload, dlt_position, kind) == ("u-9", event, position, ERROR_KIND_PROCESSING)
    assert isinstance(error, RuntimeError)
    ack.assert_called_once()


@pytest.mark.asyncio
async def test_failure_before_raw_event_exists_still_acks(controller, stores, dead_letters, make_event, make_position):
    raw_store, error_store, _ = stores
    raw_store.record_received.side_effect = ConnectionError("mongo down")
    ack = MagicMock()

    outcome = await controller.handle(make_event(), make_position(), ack)

    assert outcome == ProcessingStatus.ERROR
    raw_store.mark_error.assert_not_called()
    assert error_store.log_error.call_args.args[1] is None
    dead_letters.publish.assert_awaited_once()
    ack.assert_called_once()


@pytest.mark.asyncio
async def test_failure_while_marking_error_does_not_block_ack(controller, stores, dead_letters, make_event, make_position):
    raw_store, _, stats = stores
    stats.increment_from_event.side_effect = RuntimeError("boom")
    raw_store.mark_error.side_effect = ConnectionError("mongo down")
    ack = MagicMock()

    outcome = await controller.handle(make_event(), make_position(), ack)

    assert outcome == ProcessingStatus.ERROR
    dead_letters.publish.assert_awaited_once()
    ack.assert_called_once()


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [ProcessingStatus.PROCESSED, ProcessingStatus.ERROR, ProcessingStatus.SKIPPED])
async def test_redelivered_terminal_event_is_acked_without_reprocessing(controller, stores, dead_letters, make_event, make_position, status):
    raw_store, error_store, stats = stores
    raw_store.record_received.return_value = RecordedRawEvent(id="raw-1", processing_status=status, duplicate=True)
    ack = MagicMock()

    outcome = await controller.handle(make_event(), make_position(), ack)

    assert outcome == status
    stats.increment_from_event.assert_not_called()
    raw_store.mark_processed.assert_not_called()
    error_store.log_error.assert_not_called()
    dead_letters.publish.assert_not_called()
    ack.assert_called_once()


@pytest.mark.asyncio
async def test_redelivered_received_event_is_reprocessed(controller, stores, make_event, make_position):
    raw_store, _, stats = stores
    raw_store.record_received.return_value = RecordedRawEvent(
        id="raw-1", processing_status=ProcessingStatus.RECEIVED, duplicate=True
    )

    outcome = await controller.handle(make_event(), make_position(), MagicMock())

    assert outcome == ProcessingStatus.PROCESSED
    stats.increment_from_event.assert_awaited_once()


@pytest.mark.asyncio
async def test_outbox_flag_is_passed_to_stats(stores, dead_letters, make_event, make_position):
    _, _, stats = stores
    controller = SearchEventIngestionController(MagicMock(), dead_letters, EventSerializer(), emit_stats_outbox_events=True)

    await controller.handle(make_event(), make_position(), MagicMock())

    assert stats.increment_from_event.call_args.kwargs["emit_outbox_event"] is True


@pytest.mark.asyncio
async def test_undecodable_message_is_logged_dead_lettered_and_acked(controller, stores, dead_letters, make_position):
    raw_store, error_store, _ = stores
    ack = MagicMock()
    position = make_position(offset=8)
    error = ValueError("Invalid JSON")

    outcome = await controller.handle_undecodable(b"{oops", position, ack, "k-1", error)

    assert outcome == ProcessingStatus.ERROR
    raw_store.record_received.assert_not_called()
    args = error_store.log_error.call_args.args
    assert args[1:5] == (None, position, ERROR_KIND_DESERIALIZATION, "Invalid JSON")
    dead_letters.publish.assert_awaited_once_with("k-1", "{oops", position, error, ERROR_KIND_DESERIALIZATION)
    ack.assert_called_once()


@pytest.mark.asyncio
async def test_second_worker_on_same_partition_is_refused(controller, stores, make_event, make_position):
    raw_store, _, _ = stores
    entered = asyncio.Event()
    release = asyncio.Event()

    async def slow_record(*args):
        entered.set()
        await release.wait()
        return RecordedRawEvent(id="raw-1", processing_status=ProcessingStatus.RECEIVED)
    raw_store.record_received.side_effect = slow_record

    first_ack = MagicMock()
    second_ack = MagicMock()
    first = asyncio.create_task(controller.handle(make_event(), make_position(offset=1), first_ack))
    await entered.wait()

    with pytest.raises(PartitionOwnershipError):
        await controller.handle(make_event(), make_position(offset=2), second_ack)
    second_ack.assert_not_called()

    # Another partition is independent
    raw_store.record_received.side_effect = None
    other = await controller.handle(make_event(), make_position(offset=1, partition=1), MagicMock())
    assert other == ProcessingStatus.PROCESSED

    release.set()
    assert await first == ProcessingStatus.PROCESSED
    first_ack.assert_called_once()

    # The partition is free again once the first message is done
    assert await controller.handle(make_event(), make_position(offset=2), second_ack) == ProcessingStatus.PROCESSED
    second_ack.assert_called_once()
