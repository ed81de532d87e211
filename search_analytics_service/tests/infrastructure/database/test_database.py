# Unit Tests for the MongoDB connection helpers and index setup
import pytest
from unittest.mock import patch, AsyncMock, MagicMock

from search_analytics_service.infrastructure.database import connection as db_connection
from search_analytics_service.infrastructure.database import indexes as db_indexes
from search_analytics_service.app import config


def reset_db_connection_module_state():
    db_connection.client = None
    db_connection.db = None


@pytest.fixture(autouse=True)
def auto_reset_db_module_state():
    """Ensures db_connection module is reset before and after each test."""
    reset_db_connection_module_state()
    yield
    reset_db_connection_module_state()


@pytest.mark.asyncio
@patch('search_analytics_service.infrastructure.database.connection.AsyncIOMotorClient')
async def test_connect_to_mongo_success(mock_motor_client_cls):
    mock_client_instance = MagicMock()
    mock_motor_client_cls.return_value = mock_client_instance

    db_connection.connect_to_mongo()

    mock_motor_client_cls.assert_called_once_with(config.settings.MONGO_DETAILS, tz_aware=True)
    assert db_connection.db == mock_client_instance[config.settings.DB_NAME]

    db_instance = await db_connection.get_database()
    assert db_instance == mock_client_instance[config.settings.DB_NAME]

    # Second connect is a no-op
    db_connection.connect_to_mongo()
    assert mock_motor_client_cls.call_count == 1


@patch('search_analytics_service.infrastructure.database.connection.AsyncIOMotorClient')
def test_connect_to_mongo_failure_resets_state(mock_motor_client_cls):
    mock_motor_client_cls.side_effect = Exception("bad uri")

    with pytest.raises(ConnectionError, match="bad uri"):
        db_connection.connect_to_mongo()

    assert db_connection.client is None
    assert db_connection.db is None


@patch('search_analytics_service.infrastructure.database.connection.AsyncIOMotorClient')
def test_close_mongo_connection(mock_motor_client_cls):
    mock_client_instance = MagicMock()
    mock_motor_client_cls.return_value = mock_client_instance
    db_connection.connect_to_mongo()

    db_connection.close_mongo_connection()

    mock_client_instance.close.assert_called_once()
    assert db_connection.client is None
    assert db_connection.db is None


@pytest.mark.asyncio
async def test_get_db_yields_shared_database():
    db_connection.db = MagicMock()
    db_connection.client = MagicMock()

    yielded = [db async for db in db_connection.get_db()]

    assert yielded == [db_connection.db]


@pytest.mark.asyncio
async def test_run_in_transaction_delegates_to_with_transaction():
    session = MagicMock()
    session.__aenter__ = AsyncMock(return_value=session)
    session.__aexit__ = AsyncMock(return_value=False)
    session.with_transaction = AsyncMock(return_value="stat")

    database = MagicMock()
    database.client.start_session = AsyncMock(return_value=session)

    async def callback(active):
        return active

    result = await db_connection.run_in_transaction(database, callback)

    assert result == "stat"
    database.client.start_session.assert_awaited_once()
    session.with_transaction.assert_awaited_once_with(callback)
    session.__aexit__.assert_awaited_once()


@pytest.mark.asyncio
async def test_ensure_indexes_declares_unique_keys():
    collection = AsyncMock()
    db = MagicMock()
    db.__getitem__.return_value = collection

    await db_indexes.ensure_indexes(db)

    unique_keys = [c.args[0] for c in collection.create_index.call_args_list if c.kwargs.get("unique")]
    assert [("kafka_topic", 1), ("kafka_partition", 1), ("kafka_offset", 1)] in unique_keys
    assert [("day", 1), ("query", 1)] in unique_keys
