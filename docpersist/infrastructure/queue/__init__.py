from docpersist.infrastructure.queue.snapshot_queue import SnapshotQueue, QueueOptions, QueuedJob
from docpersist.infrastructure.queue.rate_limiter import TokenBucket

__all__ = ["SnapshotQueue", "QueueOptions", "QueuedJob", "TokenBucket"]
