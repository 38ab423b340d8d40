# ============================================================================
# src/care_ingestion/cli.py
# ============================================================================
"""
Command line entry point.

Usage:
    python -m care_ingestion worker
    python -m care_ingestion enqueue --family-id F --user-id U --file-url path/to/visit.pdf --file-type application/pdf
    python -m care_ingestion process --document-id D
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Optional

from .config import base_settings, logging_settings
from .jobs import JobManager, JobQueue, enqueue_document
from .jobs.manager import build_document_worker
from .storage import CareStore
from .utils.exceptions import CareIngestionError
from .utils.logging import LogContext, setup_logging

logger = logging.getLogger(__name__)


def _add_document_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--document-id", help="Existing document record (otherwise one is created)")
    parser.add_argument("--family-id", help="Owning family")
    parser.add_argument("--user-id", help="Uploading user")
    parser.add_argument("--file-url", help="http(s) URL, file:// URL or local path")
    parser.add_argument("--file-type", help="MIME type, e.g. application/pdf")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="care_ingestion",
        description="Care document ingestion and medication reconciliation",
    )
    parser.add_argument(
        "--log-level",
        default=logging_settings.LOG_LEVEL,
        help="Logging level (default: %(default)s)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        default=logging_settings.LOG_JSON,
        help="Emit JSON log lines",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("worker", help="Run queue workers until interrupted")

    enqueue = subparsers.add_parser("enqueue", help="Queue one document for processing")
    _add_document_arguments(enqueue)

    process = subparsers.add_parser("process", help="Process one document now, without the queue")
    _add_document_arguments(process)

    return parser


def resolve_document_payload(store: CareStore, args: argparse.Namespace) -> dict:
    """Job payload for an existing document, or for a newly registered one."""
    if args.document_id:
        document = store.get_document(args.document_id)
        if document is None:
            raise SystemExit(f"Document not found: {args.document_id}")
        return {
            "document_id": document.id,
            "family_id": document.family_id,
            "user_id": document.user_id,
            "file_url": document.file_url,
            "file_type": document.file_type,
        }

    missing = [name for name in ("family_id", "user_id", "file_url", "file_type") if not getattr(args, name)]
    if missing:
        flags = ", ".join("--" + name.replace("_", "-") for name in missing)
        raise SystemExit(f"Missing {flags} (or pass --document-id)")

    document_id = store.create_document(
        family_id=args.family_id,
        user_id=args.user_id,
        file_url=args.file_url,
        file_type=args.file_type,
    )
    logger.info(f"Registered document {document_id}")
    return {
        "document_id": document_id,
        "family_id": args.family_id,
        "user_id": args.user_id,
        "file_url": args.file_url,
        "file_type": args.file_type,
    }


async def run_workers(store: CareStore, queue: JobQueue) -> None:
    manager = JobManager(queue, store)
    stop = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl+C still raises
            pass

    await manager.initialize()
    logger.info("Workers running; press Ctrl+C to stop")
    try:
        await stop.wait()
    finally:
        await manager.shutdown()


async def enqueue_once(queue: JobQueue, payload: dict) -> str:
    await queue.connect()
    try:
        return await enqueue_document(queue, payload)
    finally:
        await queue.close()


async def process_once(store: CareStore, payload: dict) -> dict:
    worker = build_document_worker(store)
    try:
        with LogContext(document_id=payload["document_id"]):
            return await worker.process(payload)
    finally:
        await worker.adapter.close()


def main(argv: Optional[list] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(
        level=args.log_level,
        log_file=logging_settings.LOG_FILE,
        format_json=args.json_logs,
    )

    base_settings.create_directories()
    store = CareStore()

    try:
        if args.command == "worker":
            asyncio.run(run_workers(store, JobQueue()))
            return 0

        payload = resolve_document_payload(store, args)

        if args.command == "enqueue":
            job_id = asyncio.run(enqueue_once(JobQueue(), payload))
            print(json.dumps({"job_id": job_id, "document_id": payload["document_id"]}))
            return 0

        result = asyncio.run(process_once(store, payload))
        print(json.dumps(result, indent=2, default=str))
        return 0

    except CareIngestionError as e:
        logger.error(f"{e.kind.value}: {e}")
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
