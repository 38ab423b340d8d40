# ============================================================================
# src/care_ingestion/jobs/queue.py
# ============================================================================
"""
Job Queue

RabbitMQ-backed job queue with named logical queues. For a queue named
`documents` the broker holds:

    documents                 work queue, consumed by Worker
    documents.delay.<ms>      retry holding pens; x-message-ttl then
                              dead-letter back to `documents`
    documents.completed       finished jobs, capped at KEEP_COMPLETED
    documents.failed          jobs out of attempts, capped at KEEP_FAILED

Job lifecycle:

    published -> delivered -> ack + completed record
                           -> ack + republish to delay queue -> ... -> failed record

- Every queue is durable and every message persistent
- One delivery is owned by one consumer until it is acked or rejected
- Retries wait backoff_ms * 2 ** (attempt - 1) in the delay queue
- Attempt bookkeeping travels in message headers; a redelivered message
  (its consumer died mid-job) counts the interrupted attempt too
"""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import aio_pika
from aio_pika import DeliveryMode, Message
from aio_pika.abc import AbstractChannel, AbstractConnection, AbstractIncomingMessage, AbstractQueue
from aio_pika.exceptions import AMQPError

from ..config import queue_settings
from ..utils.exceptions import QueueError

logger = logging.getLogger(__name__)

JOB_NAME_HEADER = "x-job-name"
ATTEMPTS_HEADER = "x-attempts-made"
MAX_ATTEMPTS_HEADER = "x-max-attempts"
BACKOFF_HEADER = "x-backoff-ms"

COMPLETED_SUFFIX = "completed"
FAILED_SUFFIX = "failed"


def backoff_delay_ms(backoff_ms: int, attempt: int) -> int:
    """Delay before the retry that follows failed attempt number `attempt` (1-based)."""
    return backoff_ms * 2 ** (max(attempt, 1) - 1)


def history_queue(queue: str, outcome: str) -> str:
    return f"{queue}.{outcome}"


def delay_queue(queue: str, delay_ms: int) -> str:
    return f"{queue}.delay.{delay_ms}"


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Job:
    """One delivery of a queued job."""
    id: str
    queue: str
    name: str
    data: Dict[str, Any]
    attempts_made: int
    max_attempts: int
    backoff_ms: int
    redelivered: bool = False

    @property
    def attempts_remaining(self) -> int:
        return max(self.max_attempts - self.attempts_made, 0)

    @property
    def exhausted(self) -> bool:
        """True when this delivery is already past the attempt budget."""
        return self.attempts_made > self.max_attempts

    @classmethod
    def from_message(cls, queue: str, message: AbstractIncomingMessage) -> "Job":
        headers = message.headers or {}
        previous = int(headers.get(ATTEMPTS_HEADER, 0))
        attempts_made = previous + 1
        if message.redelivered:
            attempts_made += 1

        return cls(
            id=message.message_id or str(uuid.uuid4()),
            queue=queue,
            name=str(headers.get(JOB_NAME_HEADER, "")),
            data=json.loads(message.body or b"{}"),
            attempts_made=attempts_made,
            max_attempts=int(headers.get(MAX_ATTEMPTS_HEADER, queue_settings.DEFAULT_ATTEMPTS)),
            backoff_ms=int(headers.get(BACKOFF_HEADER, queue_settings.DEFAULT_BACKOFF_MS)),
            redelivered=bool(message.redelivered),
        )


class JobQueue:
    """
    Producer side of the queue and the shared broker connection.

    Pass `connection` to reuse an existing aio_pika connection; otherwise
    connect() opens a robust connection to the configured broker.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        connection: Optional[AbstractConnection] = None,
        keep_completed: Optional[int] = None,
        keep_failed: Optional[int] = None,
    ):
        self.url = url or queue_settings.rabbitmq_url
        self.connection = connection
        self.channel: Optional[AbstractChannel] = None
        self.keep_completed = queue_settings.KEEP_COMPLETED if keep_completed is None else keep_completed
        self.keep_failed = queue_settings.KEEP_FAILED if keep_failed is None else keep_failed

        self._owns_connection = connection is None
        self._declared: Dict[str, AbstractQueue] = {}
        self._delay_queues: set = set()

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    @property
    def connected(self) -> bool:
        return self.channel is not None and not self.channel.is_closed

    async def connect(self) -> None:
        if self.connected:
            return

        try:
            if self.connection is None:
                logger.info(f"Connecting to RabbitMQ at {queue_settings.RABBITMQ_HOST}:{queue_settings.RABBITMQ_PORT}")
                self.connection = await aio_pika.connect_robust(
                    self.url,
                    timeout=queue_settings.RABBITMQ_CONNECTION_TIMEOUT,
                )
            self.channel = await self.connection.channel()
        except (AMQPError, ConnectionError, OSError, asyncio.TimeoutError) as e:
            logger.error(f"Failed to connect to RabbitMQ: {e}")
            raise QueueError(f"Failed to connect to RabbitMQ: {e}") from e

        self._declared.clear()
        self._delay_queues.clear()
        logger.info("Job queue connected")

    def _require_channel(self) -> AbstractChannel:
        if not self.connected:
            raise QueueError("Job queue is not connected. Call connect() first.")
        return self.channel

    async def open_channel(self, prefetch_count: int) -> AbstractChannel:
        """Consumer channel whose unacked deliveries are capped at `prefetch_count`."""
        self._require_channel()
        try:
            channel = await self.connection.channel()
            await channel.set_qos(prefetch_count=prefetch_count)
        except AMQPError as e:
            raise QueueError(f"Could not open consumer channel: {e}") from e
        return channel

    async def close(self) -> None:
        if self.channel is not None and not self.channel.is_closed:
            await self.channel.close()
        self.channel = None

        if self._owns_connection and self.connection is not None:
            await self.connection.close()
            self.connection = None
            logger.info("Closed RabbitMQ connection")

    # ------------------------------------------------------------------
    # Topology
    # ------------------------------------------------------------------

    async def declare(self, queue: str, channel: Optional[AbstractChannel] = None) -> AbstractQueue:
        """Declare a work queue with its completed and failed history queues."""
        if channel is None and queue in self._declared:
            return self._declared[queue]

        channel = channel or self._require_channel()
        try:
            work = await channel.declare_queue(queue, durable=True)
            await channel.declare_queue(
                history_queue(queue, COMPLETED_SUFFIX),
                durable=True,
                arguments={"x-max-length": self.keep_completed},
            )
            await channel.declare_queue(
                history_queue(queue, FAILED_SUFFIX),
                durable=True,
                arguments={"x-max-length": self.keep_failed},
            )
        except AMQPError as e:
            raise QueueError(f"Could not declare queue {queue}: {e}") from e

        if channel is self.channel:
            self._declared[queue] = work
        return work

    async def _declare_delay(self, queue: str, delay_ms: int) -> str:
        name = delay_queue(queue, delay_ms)
        if name not in self._delay_queues:
            await self.declare(queue)
            await self._require_channel().declare_queue(
                name,
                durable=True,
                arguments={
                    "x-message-ttl": delay_ms,
                    "x-dead-letter-exchange": "",
                    "x-dead-letter-routing-key": queue,
                },
            )
            self._delay_queues.add(name)
        return name

    async def _publish(self, message: Message, routing_key: str) -> None:
        try:
            await self._require_channel().default_exchange.publish(message, routing_key=routing_key)
        except AMQPError as e:
            raise QueueError(f"Could not publish to {routing_key}: {e}") from e

    # ------------------------------------------------------------------
    # Producing
    # ------------------------------------------------------------------

    async def add(
        self,
        queue: str,
        name: str,
        data: Dict[str, Any],
        attempts: Optional[int] = None,
        backoff_ms: Optional[int] = None,
        delay_ms: int = 0,
        job_id: Optional[str] = None,
        expiration: Optional[float] = None,
    ) -> str:
        """
        Enqueue a job and return its id.

        Args:
            delay_ms: hold the job this long before it becomes deliverable
            expiration: seconds after which an undelivered job is dropped
        """
        await self.declare(queue)

        job_id = job_id or str(uuid.uuid4())
        headers = {
            JOB_NAME_HEADER: name,
            ATTEMPTS_HEADER: 0,
            MAX_ATTEMPTS_HEADER: attempts or queue_settings.DEFAULT_ATTEMPTS,
            BACKOFF_HEADER: queue_settings.DEFAULT_BACKOFF_MS if backoff_ms is None else backoff_ms,
        }
        message = Message(
            body=json.dumps(data, default=str).encode("utf-8"),
            headers=headers,
            content_type="application/json",
            delivery_mode=DeliveryMode.PERSISTENT,
            message_id=job_id,
            expiration=expiration,
        )

        routing_key = queue if delay_ms <= 0 else await self._declare_delay(queue, delay_ms)
        await self._publish(message, routing_key)

        logger.debug(f"Queued job {job_id} ({name}) on {routing_key}")
        return job_id

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    async def complete(self, job: Job, result: Any = None) -> None:
        await self._record(job, COMPLETED_SUFFIX, {"result": result})

    async def fail(self, job: Job, error: str) -> bool:
        """
        Record a failed attempt.

        Returns:
            True if the job was republished for another attempt, False if its
            attempt budget is spent and it is now failed
        """
        if job.attempts_made < job.max_attempts:
            delay = backoff_delay_ms(job.backoff_ms, job.attempts_made)
            headers = {
                JOB_NAME_HEADER: job.name,
                ATTEMPTS_HEADER: job.attempts_made,
                MAX_ATTEMPTS_HEADER: job.max_attempts,
                BACKOFF_HEADER: job.backoff_ms,
                "x-last-error": error[:1000],
            }
            message = Message(
                body=json.dumps(job.data, default=str).encode("utf-8"),
                headers=headers,
                content_type="application/json",
                delivery_mode=DeliveryMode.PERSISTENT,
                message_id=job.id,
            )
            routing_key = job.queue if delay <= 0 else await self._declare_delay(job.queue, delay)
            await self._publish(message, routing_key)
            logger.info(
                f"Job {job.id} attempt {job.attempts_made}/{job.max_attempts} failed; retrying in {delay}ms"
            )
            return True

        await self._record(job, FAILED_SUFFIX, {"error": error})
        logger.warning(f"Job {job.id} failed after {job.attempts_made} attempts: {error}")
        return False

    async def _record(self, job: Job, outcome: str, extra: Dict[str, Any]) -> None:
        await self.declare(job.queue)
        record = {
            "job_id": job.id,
            "name": job.name,
            "data": job.data,
            "attempts_made": min(job.attempts_made, job.max_attempts),
            "finished_at": _utc_now(),
            **extra,
        }
        message = Message(
            body=json.dumps(record, default=str).encode("utf-8"),
            content_type="application/json",
            delivery_mode=DeliveryMode.PERSISTENT,
            message_id=job.id,
        )
        await self._publish(message, history_queue(job.queue, outcome))

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    async def counts(self, queue: str) -> Dict[str, int]:
        """Ready message counts for the work queue and its history queues."""
        await self.declare(queue)
        channel = self._require_channel()

        counts = {}
        for status, name in (
            ("waiting", queue),
            (COMPLETED_SUFFIX, history_queue(queue, COMPLETED_SUFFIX)),
            (FAILED_SUFFIX, history_queue(queue, FAILED_SUFFIX)),
        ):
            declared = await channel.declare_queue(name, passive=True)
            counts[status] = declared.declaration_result.message_count or 0
        return counts
