# FastAPI Application Entry Point
import logging
from fastapi import FastAPI

# Configuration and Observability
from search_analytics_service.app.config import settings
from search_analytics_service.app.observability import setup_opentelemetry, logger

# Initialize OpenTelemetry
setup_opentelemetry(service_name=settings.SERVICE_NAME_API)

# Import instrumentors after OTel SDK is initialized
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.pymongo import PymongoInstrumentor

# Database connection
from search_analytics_service.infrastructure.database.connection import connect_to_mongo, close_mongo_connection, get_database
from search_analytics_service.infrastructure.database.indexes import ensure_indexes
# Kafka Producer lifecycle
from search_analytics_service.infrastructure.kafka.producer import startup_kafka_producer, shutdown_kafka_producer

# API Routers
from search_analytics_service.app.api.v1.endpoints import health as health_router
from search_analytics_service.app.api.v1.endpoints import stats as stats_router
from search_analytics_service.app.api.v1.endpoints import search_events as search_events_router
from search_analytics_service.app.api.v1.endpoints import raw_events as raw_events_router
from search_analytics_service.app.api.v1.endpoints import outbox as outbox_router

# --- FastAPI Application Instance ---
app = FastAPI(
    title="Search Analytics Service",
    description="Ingests search events from Kafka and serves daily query statistics.",
    version="0.1.0"
)

# --- Event Handlers for DB Connection & OTel Instrumentation ---
@app.on_event("startup")
async def startup_event():
    logger.info("FastAPI application startup...")
    try:
        connect_to_mongo()
        db = await get_database()
        await ensure_indexes(db)
        logger.info("MongoDB connection established and indexes ensured.")

        PymongoInstrumentor().instrument()
        logger.info("PyMongo instrumentation complete.")

        await startup_kafka_producer() # Start Kafka producer polling
        logger.info("Kafka Producer polling started.")

    except Exception as e:
        # The API still serves health probes; /api/health/ready reports the outage
        logger.error(f"Failed during startup: {e}", exc_info=True)

@app.on_event("shutdown")
async def shutdown_event():
    logger.info("FastAPI application shutdown...")

    await shutdown_kafka_producer() # Stop Kafka producer polling and flush
    logger.info("Kafka Producer shutdown initiated and flushed.")

    close_mongo_connection()
    logger.info("MongoDB connection closed.")

FastAPIInstrumentor.instrument_app(app)
logger.info("FastAPI instrumentation complete.")

# Include API Routers
app.include_router(health_router.router, prefix="/api/health")
app.include_router(stats_router.router, prefix="/api/v1")
app.include_router(search_events_router.router, prefix="/api/v1")
app.include_router(raw_events_router.router, prefix="/api/v1")
app.include_router(outbox_router.router, prefix="/api/v1")

logger.info("API routers included. Application setup complete.")

# To run: uvicorn search_analytics_service.app.main:app --port 8000
