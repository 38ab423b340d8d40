# ============================================================================
# src/care_ingestion/jobs/manager.py
# ============================================================================
"""
Job Manager

Wires the RabbitMQ job queue to its workers:

- document-processing: DocumentProcessingWorker, prefetch 3, rate
  limited to 5 job starts per second
- maintenance: the recurring stale-document sweep, prefetch 1
"""

import logging
from typing import Any, Dict, List, Optional, Union

from ..config import ai_settings, queue_settings, threshold_settings
from ..extractors import ExtractionAdapter, create_client
from ..extractors.download import FileDownloader
from ..pipeline import DocumentJobPayload, DocumentProcessingWorker
from ..storage import CareStore
from .queue import Job, JobQueue
from .rate_limiter import RateLimiter
from .recurring import RecurringScheduler
from .worker import Worker

logger = logging.getLogger(__name__)

QUEUE_NAMES = {
    "DOCUMENT_PROCESSING": "document-processing",
    "MAINTENANCE": "maintenance",
}

PROCESS_DOCUMENT_JOB = "process-document"
STALE_SWEEP_KEY = "stale-document-sweep"


def build_document_worker(store: CareStore) -> DocumentProcessingWorker:
    """DocumentProcessingWorker backed by the configured AI provider."""
    adapter = ExtractionAdapter(
        client=create_client(),
        downloader=FileDownloader(timeout_seconds=ai_settings.DOWNLOAD_TIMEOUT_SECONDS),
    )
    return DocumentProcessingWorker(store, adapter)


async def enqueue_document(queue: JobQueue, payload: Union[DocumentJobPayload, Dict[str, Any]]) -> str:
    """
    Queue a document for processing.

    Document jobs get fewer attempts than the queue default since every
    attempt is a paid AI call.

    Returns:
        The job id
    """
    if not isinstance(payload, DocumentJobPayload):
        payload = DocumentJobPayload.model_validate(payload)

    logger.info(f"Queueing document {payload.document_id} for processing")
    job_id = await queue.add(
        QUEUE_NAMES["DOCUMENT_PROCESSING"],
        PROCESS_DOCUMENT_JOB,
        payload.model_dump(),
        attempts=queue_settings.DOCUMENT_ATTEMPTS,
        backoff_ms=queue_settings.DOCUMENT_BACKOFF_MS,
    )
    logger.info(f"Document processing job {job_id} queued for document {payload.document_id}")
    return job_id


class JobManager:
    """Owns the broker connection, the queue workers and the recurring schedules."""

    def __init__(
        self,
        queue: JobQueue,
        store: CareStore,
        document_worker: Optional[DocumentProcessingWorker] = None,
        limiter: Optional[RateLimiter] = None,
    ):
        self.queue = queue
        self.store = store
        self.document_worker = document_worker or build_document_worker(store)
        self.limiter = limiter or RateLimiter(
            max_calls=queue_settings.RATE_LIMIT_MAX,
            duration_ms=queue_settings.RATE_LIMIT_DURATION_MS,
        )
        self.scheduler = RecurringScheduler(queue)
        self.workers: List[Worker] = []

    async def initialize(self) -> None:
        """Connect, start consuming and register recurring jobs."""
        logger.info("Initializing background jobs...")

        await self.queue.connect()

        document_worker = Worker(
            self.queue,
            QUEUE_NAMES["DOCUMENT_PROCESSING"],
            self._process_document_job,
            concurrency=queue_settings.DOCUMENT_CONCURRENCY,
            limiter=self.limiter,
        )
        document_worker.on("completed", self._on_document_completed)
        document_worker.on("failed", self._on_document_failed)
        document_worker.on("error", self._on_worker_error)

        maintenance_worker = Worker(
            self.queue,
            QUEUE_NAMES["MAINTENANCE"],
            self._sweep_stale_documents,
            concurrency=1,
        )
        maintenance_worker.on("failed", self._on_maintenance_failed)
        maintenance_worker.on("error", self._on_worker_error)

        self.workers = [document_worker, maintenance_worker]
        for worker in self.workers:
            await worker.start()
        logger.info(f"Job workers started: {[worker.name for worker in self.workers]}")

        self.setup_recurring_jobs()

        logger.info("Background jobs initialized successfully")

    def setup_recurring_jobs(self) -> None:
        self.scheduler.add(
            QUEUE_NAMES["MAINTENANCE"],
            key=STALE_SWEEP_KEY,
            name="sweep-stale-documents",
            data={"type": "sweep-stale-documents"},
            every_seconds=queue_settings.SWEEP_INTERVAL_SECONDS,
        )

    async def queue_document_processing(self, payload: Union[DocumentJobPayload, Dict[str, Any]]) -> str:
        return await enqueue_document(self.queue, payload)

    async def shutdown(self) -> None:
        logger.info("Shutting down background jobs...")
        await self.scheduler.close()

        for worker in self.workers:
            await worker.close()
        logger.info("All workers closed")

        await self.queue.close()
        await self.document_worker.adapter.close()
        logger.info("Background jobs shut down successfully")

    # ------------------------------------------------------------------
    # Processors
    # ------------------------------------------------------------------

    async def _process_document_job(self, job: Job) -> Dict[str, Any]:
        return await self.document_worker.process(job.data, job_id=job.id)

    async def _sweep_stale_documents(self, job: Optional[Job]) -> Dict[str, Any]:
        failed = self.store.fail_stale_documents(threshold_settings.STALE_PROCESSING_MINUTES)
        if failed:
            logger.warning(f"Marked {len(failed)} stale document(s) as FAILED: {failed}")
        return {"failed_documents": failed}

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    @staticmethod
    def _on_document_completed(job: Job, result: Dict[str, Any]) -> None:
        logger.info(
            f"Document processing job {job.id} completed for document {job.data.get('document_id')}: "
            f"{(result or {}).get('processing_result', {}).get('summary')}"
        )

    @staticmethod
    def _on_document_failed(job: Job, error: Exception, will_retry: bool) -> None:
        logger.error(
            f"Document processing job {job.id} failed for document {job.data.get('document_id')} "
            f"(attempt {job.attempts_made}/{job.max_attempts}, "
            f"{'will retry' if will_retry else 'giving up'}): {error}"
        )

    @staticmethod
    def _on_maintenance_failed(job: Job, error: Exception, will_retry: bool) -> None:
        logger.error(f"Maintenance job {job.id} ({job.name}) failed: {error}")

    @staticmethod
    def _on_worker_error(error: Exception) -> None:
        logger.error(f"Job worker error: {error}")
