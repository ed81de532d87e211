# Application Configuration using Pydantic BaseSettings
from pydantic_settings import BaseSettings
from typing import Optional

class AppSettings(BaseSettings):
    # MongoDB
    MONGO_DETAILS: str = "mongodb://mongo:27017/?replicaSet=rs0"
    DB_NAME: str = "search_analytics_db"

    # Kafka
    KAFKA_BOOTSTRAP_SERVERS: str = "kafka:29092"
    KAFKA_CONSUMER_GROUP_ID: str = "search-analytics-consumer"
    SEARCH_EVENTS_TOPIC: str = "search-events" # Main input topic
    SEARCH_EVENTS_DLT_TOPIC: str = "search-events-dlt"
    OUTBOX_TOPIC: str = "search-events-outbox"
    KAFKA_POLL_TIMEOUT_SECONDS: float = 1.0
    KAFKA_DELIVERY_TIMEOUT_SECONDS: float = 10.0

    # Outbox
    OUTBOX_BATCH_SIZE: int = 100
    OUTBOX_POLL_INTERVAL_SECONDS: float = 1.0
    STATS_OUTBOX_ENABLED: bool = False # Requires a replica set (multi-document transactions)

    # Stats query surface
    STATS_DEFAULT_LIMIT: int = 10
    STATS_MAX_LIMIT: int = 1000

    # Observability
    LOG_LEVEL: str = "INFO"
    OTEL_EXPORTER_OTLP_TRACES_ENDPOINT: Optional[str] = None
    OTEL_EXPORTER_OTLP_METRICS_ENDPOINT: Optional[str] = None
    SERVICE_NAME_API: str = "search-analytics-api"
    SERVICE_NAME_CONSUMER: str = "search-analytics-consumer"
    SERVICE_NAME_OUTBOX: str = "search-analytics-outbox"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

settings = AppSettings()

import logging
logger = logging.getLogger(__name__)
logger.info("Application settings module initialized.")
