"""RabbitMQ job queue, queue workers and recurring jobs."""

from .manager import QUEUE_NAMES, STALE_SWEEP_KEY, JobManager, build_document_worker, enqueue_document
from .queue import Job, JobQueue, backoff_delay_ms, delay_queue, history_queue
from .rate_limiter import RateLimiter
from .recurring import RecurringJob, RecurringScheduler
from .worker import Worker

__all__ = [
    "QUEUE_NAMES",
    "STALE_SWEEP_KEY",
    "JobManager",
    "build_document_worker",
    "enqueue_document",
    "Job",
    "JobQueue",
    "backoff_delay_ms",
    "delay_queue",
    "history_queue",
    "RateLimiter",
    "RecurringJob",
    "RecurringScheduler",
    "Worker",
]
