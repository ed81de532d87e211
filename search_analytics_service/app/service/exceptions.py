"""
Custom exceptions for the Search Analytics service.
"""

class SearchAnalyticsError(Exception):
    """Base class for exceptions in this module."""
    pass

class EventValidationError(SearchAnalyticsError):
    """Raised when a search event cannot be aggregated (missing query or occurred_at)."""
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)

class PartitionOwnershipError(SearchAnalyticsError):
    """Raised when a second worker tries to handle a partition that already has an event in flight."""
    def __init__(self, topic: str, partition: int):
        self.topic = topic
        self.partition = partition
        super().__init__(
            f"Partition {topic}/{partition} already has an event in flight. "
            f"Only one worker may process a partition at a time."
        )

class OutboxEventNotFoundError(SearchAnalyticsError):
    """Raised when an outbox row is not found."""
    def __init__(self, outbox_id: str):
        self.outbox_id = outbox_id
        super().__init__(f"Outbox event with ID '{outbox_id}' not found.")

class KafkaProducerError(SearchAnalyticsError):
    """Raised when there's an issue with Kafka message production."""
    pass
