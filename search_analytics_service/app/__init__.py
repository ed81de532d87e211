# search_analytics_service/app/__init__.py
import logging

logger = logging.getLogger(__name__)
logger.info("Search Analytics App Initialized")
