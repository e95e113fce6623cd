"""
Worker process entrypoint.

Environment:
    WORKER_KINDS  — comma-separated job kinds to serve (default: all kinds)
    WORKER_DRAIN  — "1" to process every due job once and exit

The worker:
    1. Builds the dependency container from Settings.
    2. Registers the transcribe and extract handlers with their own pools.
    3. Runs until SIGTERM/SIGINT (or until drained).
    4. Exits 0 on clean shutdown, 1 on startup failure.

All logging is JSON (structlog).
"""

from __future__ import annotations

import os
import signal
import sys
import threading
from typing import Dict, List, Optional

from domain.models import JobKind
from shared_utils.constants import LogScope
from shared_utils.di_container import Container, build_container
from shared_utils.logging_utils import configure_logging, get_scoped_logger
from worker.runtime import JobContext, JobHandler, WorkerPool

logger = get_scoped_logger(LogScope.WORKER)


def build_handlers(container: Container) -> Dict[JobKind, JobHandler]:
    """Map each job kind to a handler bound to the container's services."""
    transcription = container.get_transcription_service()
    extraction = container.get_extraction_service()

    def transcribe(ctx: JobContext) -> Dict[str, object]:
        transcript = transcription.process(
            ctx.payload["recording_id"], progress=ctx.progress, reclaim=ctx.lease_expired
        )
        if transcript is None:
            return {"skipped": True}
        return {"transcription_id": transcript.id, "characters": len(transcript.content)}

    def extract(ctx: JobContext) -> Dict[str, object]:
        result = extraction.process_message(ctx.payload["message_id"])
        return {
            "entities": len(result.entities),
            "tasks": len(result.tasks),
            "requirements": len(result.requirements),
        }

    return {JobKind.TRANSCRIBE: transcribe, JobKind.EXTRACT: extract}


def parse_kinds(raw: str) -> List[JobKind]:
    if not raw.strip():
        return list(JobKind)
    return [JobKind(part.strip().lower()) for part in raw.split(",") if part.strip()]


def build_pool(container: Container, kinds: List[JobKind]) -> WorkerPool:
    settings = container.settings
    concurrency = {
        JobKind.TRANSCRIBE: settings.transcribe_concurrency,
        JobKind.EXTRACT: settings.extract_concurrency,
    }
    handlers = build_handlers(container)
    pool = WorkerPool(container.get_job_queue(), poll_interval=settings.worker_poll_interval)
    for kind in kinds:
        pool.register(kind, handlers[kind], concurrency=concurrency[kind])
    return pool


def main(container: Optional[Container] = None) -> int:
    """Worker main — build deps, run the pools, shut down cleanly."""
    drain = os.environ.get("WORKER_DRAIN", "") == "1"

    try:
        kinds = parse_kinds(os.environ.get("WORKER_KINDS", ""))
        container = container or build_container()
        configure_logging(container.settings.log_level)
        pool = build_pool(container, kinds)
    except Exception as exc:
        logger.error("worker_startup_failed", error_type=type(exc).__name__, error=str(exc))
        print(f"ERROR: worker startup failed: {exc}", file=sys.stderr)
        return 1

    logger.info("worker_booted", kinds=[k.value for k in kinds], drain=drain)

    if drain:
        totals = pool.drain()
        logger.info("worker_drained", processed=totals)
        container.close()
        return 0

    stop = threading.Event()

    def _shutdown(signum, _frame):
        logger.info("worker_signal_received", signal=signum)
        stop.set()

    signal.signal(signal.SIGTERM, _shutdown)
    signal.signal(signal.SIGINT, _shutdown)

    pool.start()
    stop.wait()
    pool.stop()
    container.close()
    logger.info("worker_shutdown_complete")
    return 0


if __name__ == "__main__":
    sys.exit(main())
