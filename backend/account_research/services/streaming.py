from __future__ import annotations

import asyncio
import json
import logging
from typing import AsyncIterator, Callable, List, Optional, Tuple

from sqlalchemy.orm import Session

from .events import event_payload, events_since
from ..models.processing_job import TERMINAL_JOB_STATUSES, JobType, ProcessingJob

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_event(payload: dict) -> str:
    return f"id: {payload['id']}\ndata: {json.dumps(payload)}\n\n"


def format_done(status: str) -> str:
    # no id line: clients must not resume from this frame
    return f"data: {json.dumps({'event_type': 'job_done', 'status': status})}\n\n"


def parse_last_event_id(value: Optional[str]) -> int:
    """Missing or malformed Last-Event-ID headers mean "replay from the start"."""
    if not value:
        return 0
    try:
        return max(int(value.strip()), 0)
    except ValueError:
        return 0


def _poll(
    session_factory: Callable[[], Session],
    job_id: int,
    job_type: JobType,
    since_id: int,
) -> Tuple[List[dict], Optional[str]]:
    db = session_factory()
    try:
        job = db.get(ProcessingJob, job_id)
        status = job.status.value if job is not None else None
        payloads = [event_payload(e) for e in events_since(db, job_id, job_type, since_id)]
        return payloads, status
    finally:
        db.close()


async def stream_job_events(
    job_id: int,
    job_type: JobType,
    since_id: int,
    session_factory: Callable[[], Session],
    is_disconnected: Callable,
    poll_interval: float = 0.5,
) -> AsyncIterator[str]:
    """
    Yield SSE frames for a job: stored events after ``since_id`` first, then new
    ones as they are committed, until the job reaches a terminal status.

    Each poll reads the job status before the events. The terminal event is
    committed together with the terminal status, so it is always sent before
    ``job_done``.
    """
    last_id = since_id
    logger.info(
        "SSE stream opened after event %s",
        since_id,
        extra={"job_id": job_id, "step": "stream"},
    )
    try:
        while True:
            payloads, status = await asyncio.to_thread(
                _poll, session_factory, job_id, job_type, last_id
            )
            for payload in payloads:
                last_id = payload["id"]
                yield format_event(payload)

            if status is None or status in {s.value for s in TERMINAL_JOB_STATUSES}:
                yield format_done(status or "deleted")
                return

            if await is_disconnected():
                return
            await asyncio.sleep(poll_interval)
    finally:
        logger.info(
            "SSE stream closed",
            extra={"job_id": job_id, "step": "stream"},
        )
