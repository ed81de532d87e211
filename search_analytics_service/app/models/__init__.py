from .raw_search_event_db import RawSearchEventDB, ProcessingStatus
from .daily_query_stat_db import DailyQueryStatDB
from .processing_error_db import ProcessingErrorDB
from .outbox_event_db import OutboxEventDB, OutboxStatus

__all__ = [
    "RawSearchEventDB",
    "ProcessingStatus",
    "DailyQueryStatDB",
    "ProcessingErrorDB",
    "OutboxEventDB",
    "OutboxStatus",
]
