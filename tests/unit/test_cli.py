# ============================================================================
# FILE: tests/unit/test_cli.py
# ============================================================================
"""
Unit tests for the command line entry point
"""

import pytest

from care_ingestion.cli import build_parser, enqueue_once, resolve_document_payload
from care_ingestion.jobs import JobQueue


def test_parse_enqueue_arguments():
    args = build_parser().parse_args([
        "--log-level", "DEBUG",
        "enqueue",
        "--family-id", "fam-1",
        "--user-id", "user-1",
        "--file-url", "scans/visit.pdf",
        "--file-type", "application/pdf",
    ])

    assert args.command == "enqueue"
    assert args.log_level == "DEBUG"
    assert args.file_url == "scans/visit.pdf"
    assert args.document_id is None


def test_command_is_required():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_resolve_existing_document(store, document_id):
    args = build_parser().parse_args(["process", "--document-id", document_id])

    payload = resolve_document_payload(store, args)

    assert payload["document_id"] == document_id
    assert payload["file_url"] == "https://files.example.com/visit.pdf"
    assert payload["file_type"] == "application/pdf"


def test_resolve_unknown_document(store):
    args = build_parser().parse_args(["process", "--document-id", "missing"])

    with pytest.raises(SystemExit, match="Document not found"):
        resolve_document_payload(store, args)


def test_resolve_registers_new_document(store, family):
    family_id, _ = family
    args = build_parser().parse_args([
        "enqueue",
        "--family-id", family_id,
        "--user-id", "user-1",
        "--file-url", "file:///scans/visit.png",
        "--file-type", "image/png",
    ])

    payload = resolve_document_payload(store, args)

    document = store.get_document(payload["document_id"])
    assert document.family_id == family_id
    assert document.file_type == "image/png"
    assert document.parsing_status == "PENDING"


def test_resolve_requires_document_fields(store):
    args = build_parser().parse_args(["enqueue", "--family-id", "fam-1"])

    with pytest.raises(SystemExit, match="--user-id, --file-url, --file-type"):
        resolve_document_payload(store, args)


@pytest.mark.asyncio
async def test_enqueue_once_publishes_and_disconnects(broker, store, document_id):
    args = build_parser().parse_args(["enqueue", "--document-id", document_id])
    payload = resolve_document_payload(store, args)
    queue = JobQueue(connection=broker.connection())

    job_id = await enqueue_once(queue, payload)

    assert broker.routing_keys() == ["document-processing"]
    assert broker.published[0][1].message_id == job_id
    assert broker.bodies("document-processing")[0]["document_id"] == document_id
    assert not queue.connected
