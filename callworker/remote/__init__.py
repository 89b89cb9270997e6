from .queue_client import WorkQueueClient, WorkQueueError

__all__ = ["WorkQueueClient", "WorkQueueError"]
