# ============================================================================
# FILE: tests/conftest.py
# ============================================================================
"""
Pytest configuration and shared fixtures for testing.
"""

import asyncio
import json
from collections import deque
from contextlib import asynccontextmanager
from types import SimpleNamespace
from typing import Any, AsyncIterator, Dict, List, Optional

import pytest
import pytest_asyncio

from care_ingestion.extractors import BaseExtractionClient, ExtractionAdapter
from care_ingestion.storage import CareStore
from care_ingestion.utils.exceptions import DownloadError, ModelError


# ============================================================================
# FAKES
# ============================================================================

class FakeExtractionClient(BaseExtractionClient):
    """Streams a canned response in small chunks and records every call."""

    def __init__(self, response: str = "{}", chunk_size: int = 16, error: Exception = None):
        super().__init__()
        self.response = response
        self.chunk_size = chunk_size
        self.error = error
        self.calls: List[Dict] = []
        self.closed = False

    @property
    def model_name(self) -> str:
        return "fake-model"

    async def _stream(self, system_prompt, content) -> AsyncIterator[str]:
        self.calls.append({"system_prompt": system_prompt, "content": list(content)})
        if self.error is not None:
            raise self.error
        for start in range(0, len(self.response), self.chunk_size):
            yield self.response[start:start + self.chunk_size]

    async def close(self) -> None:
        self.closed = True


class FakeDownloader:
    """Serves bytes from a dict keyed by URL."""

    def __init__(self, files: Dict[str, bytes] = None):
        self.files = files or {}
        self.requested: List[str] = []
        self.closed = False

    async def fetch(self, url: str) -> bytes:
        self.requested.append(url)
        if url not in self.files:
            raise DownloadError("Failed to download file: HTTP 404", url=url)
        return self.files[url]

    async def close(self) -> None:
        self.closed = True


class _Delivery:
    """A message sitting in a broker queue."""

    def __init__(self, message, redelivered: bool = False):
        self.message = message
        self.redelivered = redelivered


class _Consumer:
    def __init__(self, tag: str, callback, channel: "FakeChannel"):
        self.tag = tag
        self.callback = callback
        self.channel = channel
        self.prefetch = channel.prefetch_count
        self.unacked = 0

    @property
    def has_capacity(self) -> bool:
        return self.prefetch == 0 or self.unacked < self.prefetch


class _BrokerQueue:
    """Server-side queue: ready deliveries, consumers, max-length and TTL dead-lettering."""

    def __init__(self, broker: "FakeBroker", name: str, arguments: Dict[str, Any]):
        self.broker = broker
        self.name = name
        self.arguments = arguments
        self.ready: deque = deque()
        self.consumers: Dict[str, _Consumer] = {}

    def put(self, delivery: _Delivery, front: bool = False) -> None:
        if front:
            self.ready.appendleft(delivery)
        else:
            self.ready.append(delivery)

        max_length = self.arguments.get("x-max-length")
        while max_length is not None and len(self.ready) > max_length:
            self.ready.popleft()

        ttl = self.arguments.get("x-message-ttl")
        if ttl is not None:
            asyncio.get_running_loop().call_later(ttl / 1000, self._expire, delivery)

    def _expire(self, delivery: _Delivery) -> None:
        if not any(entry is delivery for entry in self.ready):
            return
        self.ready.remove(delivery)
        routing_key = self.arguments.get("x-dead-letter-routing-key")
        if routing_key:
            self.broker.route(routing_key, delivery.message)


class FakeIncomingMessage:
    """Delivered message with the ack/reject surface the worker uses."""

    def __init__(self, queue: _BrokerQueue, consumer: _Consumer, delivery: _Delivery):
        self._queue = queue
        self._consumer = consumer
        self._delivery = delivery
        self.body = delivery.message.body
        self.headers = dict(delivery.message.headers or {})
        self.message_id = delivery.message.message_id
        self.redelivered = delivery.redelivered
        self.outcome: Optional[str] = None

    def _settle(self, outcome: str) -> None:
        if self.outcome is not None:
            raise RuntimeError(f"Message already processed ({self.outcome})")
        self.outcome = outcome
        self._consumer.unacked -= 1
        self._queue.broker.settled.append((self._queue.name, self.message_id, outcome))
        if outcome == "requeued":
            self._queue.put(_Delivery(self._delivery.message, redelivered=True), front=True)
        self._queue.broker.dispatch()

    async def ack(self) -> None:
        self._settle("acked")

    async def reject(self, requeue: bool = False) -> None:
        self._settle("requeued" if requeue else "rejected")

    @asynccontextmanager
    async def process(self, requeue: bool = False, **kwargs):
        try:
            yield self
        except BaseException:
            await self.reject(requeue=requeue)
            raise
        else:
            await self.ack()


class _QueueHandle:
    def __init__(self, channel: "FakeChannel", queue: _BrokerQueue):
        self.channel = channel
        self.name = queue.name
        self.arguments = queue.arguments
        self._queue = queue
        self.declaration_result = SimpleNamespace(message_count=len(queue.ready))

    async def consume(self, callback, consumer_tag: Optional[str] = None, **kwargs) -> str:
        broker = self._queue.broker
        tag = consumer_tag or f"ctag-{len(broker.consumer_tags) + 1}"
        broker.consumer_tags.append(tag)
        self._queue.consumers[tag] = _Consumer(tag, callback, self.channel)
        broker.dispatch()
        return tag

    async def cancel(self, consumer_tag: str, **kwargs) -> None:
        self._queue.consumers.pop(consumer_tag, None)


class _DefaultExchange:
    def __init__(self, broker: "FakeBroker"):
        self.broker = broker

    async def publish(self, message, routing_key: str, **kwargs) -> None:
        self.broker.published.append((routing_key, message))
        self.broker.route(routing_key, message)


class FakeChannel:
    def __init__(self, broker: "FakeBroker"):
        self.broker = broker
        self.prefetch_count = 0
        self.is_closed = False
        self.default_exchange = _DefaultExchange(broker)

    async def set_qos(self, prefetch_count: int = 0, **kwargs) -> None:
        self.prefetch_count = prefetch_count

    async def declare_queue(self, name: str, durable: bool = False, arguments=None, passive: bool = False, **kwargs):
        if passive:
            if name not in self.broker.queues:
                raise LookupError(f"NOT_FOUND - no queue '{name}'")
        else:
            self.broker.declare(name, durable, arguments or {})
        return _QueueHandle(self, self.broker.queues[name])

    async def close(self) -> None:
        self.is_closed = True
        for queue in self.broker.queues.values():
            for tag, consumer in list(queue.consumers.items()):
                if consumer.channel is self:
                    del queue.consumers[tag]


class FakeConnection:
    def __init__(self, broker: "FakeBroker"):
        self.broker = broker
        self.is_closed = False
        self.channels: List[FakeChannel] = []

    async def channel(self) -> FakeChannel:
        channel = FakeChannel(self.broker)
        self.channels.append(channel)
        return channel

    async def close(self) -> None:
        self.is_closed = True


class FakeBroker:
    """
    In-memory stand-in for a RabbitMQ server behind aio_pika's channel API.

    Routes through the default exchange, enforces consumer prefetch,
    x-max-length, x-message-ttl and dead-lettering, and requeues rejected
    deliveries as redelivered.
    """

    def __init__(self):
        self.queues: Dict[str, _BrokerQueue] = {}
        self.durable: Dict[str, bool] = {}
        self.published: List = []
        self.settled: List = []
        self.consumer_tags: List[str] = []
        self._tasks = set()

    def connection(self) -> FakeConnection:
        return FakeConnection(self)

    def declare(self, name: str, durable: bool, arguments: Dict[str, Any]) -> None:
        if name in self.queues:
            if self.queues[name].arguments != arguments:
                raise ValueError(f"PRECONDITION_FAILED - inequivalent arg for queue '{name}'")
            return
        self.queues[name] = _BrokerQueue(self, name, arguments)
        self.durable[name] = durable

    def route(self, routing_key: str, message) -> None:
        queue = self.queues.get(routing_key)
        if queue is not None:
            queue.put(_Delivery(message))
            self.dispatch()

    def dispatch(self) -> None:
        for queue in self.queues.values():
            while queue.ready:
                consumer = next((c for c in queue.consumers.values() if c.has_capacity), None)
                if consumer is None:
                    break
                delivery = queue.ready.popleft()
                consumer.unacked += 1
                incoming = FakeIncomingMessage(queue, consumer, delivery)
                task = asyncio.get_running_loop().create_task(consumer.callback(incoming))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)

    def mark_redelivered(self, name: str) -> None:
        for delivery in self.queues[name].ready:
            delivery.redelivered = True

    def bodies(self, name: str) -> List[Any]:
        """Decoded JSON bodies of the messages ready in `name`."""
        return [json.loads(delivery.message.body) for delivery in self.queues[name].ready]

    def headers(self, name: str) -> List[Dict[str, Any]]:
        return [dict(delivery.message.headers or {}) for delivery in self.queues[name].ready]

    def routing_keys(self) -> List[str]:
        return [routing_key for routing_key, _ in self.published]


# ============================================================================
# SAMPLE DATA
# ============================================================================

@pytest.fixture
def sample_extraction() -> Dict:
    """Model response for a primary care visit, in the model's camelCase shape"""
    return {
        "documentType": "medical record",
        "patient": {"name": "Margaret Ellis", "dateOfBirth": "1941-03-02"},
        "visit": {
            "dateOfService": "03/14/2024",
            "facility": "Riverside Family Clinic",
            "summary": "Follow-up for type 2 diabetes and hypertension. Blood pressure well controlled.",
            "provider": {
                "name": "Dr. Alan Whitfield",
                "specialty": "Internal Medicine",
                "phone": "555-0142",
                "address": "200 Oak Street, Springfield, IL 62704",
            },
            "followUp": "Return in 3 months",
        },
        "diagnoses": [{"name": "Type 2 diabetes mellitus", "icd10": "E11.9"}],
        "medications": [
            {"name": "Metformin", "dosage": "1000mg", "frequency": "twice daily", "status": "active"},
            {"name": "Warfarin", "dosage": "5mg", "frequency": "daily"},
        ],
        "allergies": [{"substance": "Penicillin", "reaction": "rash"}],
        "recommendations": [
            {"text": "Walk 30 minutes daily", "type": "exercise", "priority": "medium"},
            {"text": "Start Lisinopril 10mg once daily", "type": "medication", "priority": "high"},
            {"text": "Schedule HbA1c lab test before next visit", "priority": "low"},
        ],
    }


@pytest.fixture
def sample_response(sample_extraction) -> str:
    """Model output wrapped in a markdown fence"""
    return "```json\n" + json.dumps(sample_extraction) + "\n```"


@pytest.fixture
def visit_note_text() -> str:
    return (
        "Riverside Family Clinic - Visit Note\n"
        "Patient: Margaret Ellis  DOB: 03/02/1941\n"
        "Provider: Dr. Alan Whitfield, Internal Medicine\n"
        "Assessment: Type 2 diabetes, hypertension. Continue Metformin 1000mg twice daily.\n"
        "Plan: Walk 30 minutes daily. Recheck HbA1c in 3 months.\n"
    )


# ============================================================================
# STORE
# ============================================================================

@pytest.fixture
def store(tmp_path) -> CareStore:
    return CareStore(tmp_path / "care.db")


@pytest.fixture
def family(store):
    """Family with one patient; returns (family_id, patient_id)"""
    family_id = store.create_family("Ellis family")
    patient_id = store.create_patient(family_id, "Margaret Ellis", "1941-03-02")
    return family_id, patient_id


@pytest.fixture
def document_id(store, family):
    family_id, _ = family
    return store.create_document(
        family_id=family_id,
        user_id="user-1",
        file_url="https://files.example.com/visit.pdf",
        file_type="application/pdf",
        file_name="visit.pdf",
    )


# ============================================================================
# EXTRACTION
# ============================================================================

@pytest.fixture
def fake_client(sample_response) -> FakeExtractionClient:
    return FakeExtractionClient(sample_response)


@pytest.fixture
def failing_client() -> FakeExtractionClient:
    return FakeExtractionClient(error=ModelError("APITimeoutError: Request timed out."))


@pytest.fixture
def downloader() -> FakeDownloader:
    return FakeDownloader()


@pytest.fixture
def adapter(fake_client, downloader) -> ExtractionAdapter:
    return ExtractionAdapter(fake_client, downloader=downloader)


# ============================================================================
# PDFS
# ============================================================================

@pytest.fixture
def text_pdf_bytes(tmp_path) -> bytes:
    """PDF with a real text layer"""
    from reportlab.lib.pagesizes import letter
    from reportlab.pdfgen import canvas

    pdf_path = tmp_path / "visit_note.pdf"
    c = canvas.Canvas(str(pdf_path), pagesize=letter)
    lines = [
        "Riverside Family Clinic - Visit Note",
        "Patient: Margaret Ellis",
        "Provider: Dr. Alan Whitfield, Internal Medicine",
        "Assessment: Type 2 diabetes mellitus, essential hypertension.",
        "Medications: Metformin 1000mg twice daily, Warfarin 5mg daily.",
        "Plan: Walk 30 minutes daily. Recheck HbA1c in three months.",
    ]
    y = 750
    for line in lines:
        c.drawString(72, y, line)
        y -= 20
    c.save()
    return pdf_path.read_bytes()


@pytest.fixture
def scanned_pdf_bytes(tmp_path) -> bytes:
    """Two pages with shapes only (no text layer), like a scan"""
    from reportlab.lib.pagesizes import letter
    from reportlab.pdfgen import canvas

    pdf_path = tmp_path / "scan.pdf"
    c = canvas.Canvas(str(pdf_path), pagesize=letter)
    c.rect(72, 600, 300, 100, fill=1)
    c.showPage()
    c.rect(72, 400, 200, 200, fill=0)
    c.showPage()
    c.save()
    return pdf_path.read_bytes()


# ============================================================================
# JOB QUEUE
# ============================================================================

@pytest.fixture
def broker() -> FakeBroker:
    return FakeBroker()


@pytest_asyncio.fixture
async def job_queue(broker):
    from care_ingestion.jobs import JobQueue

    queue = JobQueue(connection=broker.connection(), keep_completed=100, keep_failed=200)
    await queue.connect()
    yield queue
    await queue.close()
