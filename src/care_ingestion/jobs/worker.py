# ============================================================================
# src/care_ingestion/jobs/worker.py
# ============================================================================
"""
Queue Worker

Consumes one named queue and runs a processor coroutine per delivered job.

- Concurrency is the consumer prefetch: the broker never hands this
  worker more than `concurrency` unacked jobs
- Optional RateLimiter gating job starts
- Ack/reject through message.process(); a job whose outcome could not be
  recorded is requeued
- `completed`, `failed` and `error` hooks
- close() cancels the consumer and waits for in-flight jobs to finish
"""

import asyncio
import logging
import socket
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from aio_pika.abc import AbstractChannel, AbstractIncomingMessage, AbstractQueue

from .queue import Job, JobQueue
from .rate_limiter import RateLimiter

Processor = Callable[[Job], Awaitable[Any]]

WORKER_EVENTS = ("completed", "failed", "error")


class Worker:
    def __init__(
        self,
        queue: JobQueue,
        queue_name: str,
        processor: Processor,
        concurrency: int = 1,
        limiter: Optional[RateLimiter] = None,
        worker_id: Optional[str] = None,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        self.queue = queue
        self.name = queue_name
        self.processor = processor
        self.concurrency = concurrency
        self.limiter = limiter
        self.worker_id = worker_id or f"{socket.gethostname()}:{queue_name}:{uuid.uuid4().hex[:8]}"

        self.logger = logging.getLogger(self.__class__.__name__)

        self._handlers: Dict[str, List[Callable[..., Any]]] = {event: [] for event in WORKER_EVENTS}
        self._in_flight: Set[asyncio.Task] = set()
        self._channel: Optional[AbstractChannel] = None
        self._amqp_queue: Optional[AbstractQueue] = None
        self._consumer_tag: Optional[str] = None

        self.stats = {"completed": 0, "failed": 0, "retried": 0}

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        """
        Register a hook.

        completed(job, result), failed(job, error, will_retry), error(error)
        """
        if event not in self._handlers:
            raise ValueError(f"Unknown worker event: {event}")
        self._handlers[event].append(handler)

    def _emit(self, event: str, *args) -> None:
        for handler in self._handlers[event]:
            try:
                handler(*args)
            except Exception as e:
                self.logger.error(f"Worker {self.name} {event} hook raised: {e}")

    @property
    def running(self) -> bool:
        return self._consumer_tag is not None

    async def start(self) -> None:
        """Open a consumer channel and start receiving jobs."""
        if self.running:
            return

        self._channel = await self.queue.open_channel(prefetch_count=self.concurrency)
        self._amqp_queue = await self.queue.declare(self.name, channel=self._channel)
        self._consumer_tag = await self._amqp_queue.consume(self._on_message, consumer_tag=self.worker_id)

        self.logger.info(f"Worker {self.worker_id} started (concurrency {self.concurrency})")

    async def _on_message(self, message: AbstractIncomingMessage) -> None:
        task = asyncio.create_task(self._execute(message), name=f"job:{message.message_id}")
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _execute(self, message: AbstractIncomingMessage) -> None:
        try:
            job = Job.from_message(self.name, message)
        except (TypeError, ValueError) as e:
            self.logger.error(f"Worker {self.name} dropped malformed job {message.message_id}: {e}")
            await message.reject(requeue=False)
            self._emit("error", e)
            return

        try:
            async with message.process(requeue=True):
                await self._run(job)
        except Exception as e:
            # Outcome not recorded; the broker redelivers the job
            self.logger.exception(f"Worker {self.name} lost track of job {message.message_id}: {e}")
            self._emit("error", e)

    async def _run(self, job: Job) -> None:
        if job.exhausted:
            await self.queue.fail(job, "Job stalled")
            self.stats["failed"] += 1
            self._emit("failed", job, RuntimeError("Job stalled"), False)
            return

        if self.limiter is not None:
            await self.limiter.acquire()

        self.logger.debug(f"Job {job.id} ({job.name}) attempt {job.attempts_made}/{job.max_attempts}")
        try:
            result = await self.processor(job)
        except Exception as e:
            will_retry = await self.queue.fail(job, f"{type(e).__name__}: {e}")
            self.stats["retried" if will_retry else "failed"] += 1
            self._emit("failed", job, e, will_retry)
            return

        await self.queue.complete(job, result)
        self.stats["completed"] += 1
        self._emit("completed", job, result)

    async def drain(self) -> None:
        """Wait for every job currently in flight."""
        if self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    async def close(self) -> None:
        if self._consumer_tag is not None:
            await self._amqp_queue.cancel(self._consumer_tag)
            self._consumer_tag = None
            self.logger.info(f"Worker {self.worker_id} stopped consuming")

        await self.drain()

        if self._channel is not None:
            if not self._channel.is_closed:
                await self._channel.close()
            self._channel = None

        self.logger.info(
            f"Worker {self.worker_id} closed "
            f"(completed={self.stats['completed']}, failed={self.stats['failed']}, retried={self.stats['retried']})"
        )
