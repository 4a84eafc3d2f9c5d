"""Worker that drives bulk research jobs to completion.

Each loop picks up pending/running jobs from ``bulk_research_jobs`` and
processes one batch of tasks per job via the streaming chat endpoint.
"""

from __future__ import annotations

import logging
import os
import time

from rebar_agentic.services import bulk_research, supabase_client
from rebar_agentic.workers.utils import configure_logging, load_env_files, max_loops_from_env

logger = logging.getLogger(__name__)


def process_active_jobs(job_limit: int = 10) -> int:
    """Run one batch for each active job; returns the number of tasks processed."""

    jobs = supabase_client.list_active_bulk_jobs(limit=job_limit)
    processed = 0
    for job in jobs:
        try:
            summary = bulk_research.process_job_batch(job["id"])
        except Exception:
            logger.exception("Error while processing bulk job %s", job["id"])
            continue
        processed += int(summary.get("processed") or 0)
        logger.info(
            "Bulk job %s: processed=%s remaining=%s",
            job["id"],
            summary.get("processed"),
            summary.get("remaining"),
        )
    return processed


def main() -> None:
    load_env_files()
    configure_logging()

    idle_sleep = int(os.getenv("BULK_RESEARCH_IDLE_SLEEP", "5"))
    job_limit = int(os.getenv("BULK_RESEARCH_JOB_LIMIT", "10"))
    bulk_research.resolve_chat_endpoint()
    logger.info("Bulk research worker starting up job_limit=%s", job_limit)

    max_loops = max_loops_from_env()
    loops = 0
    while True:
        try:
            processed = process_active_jobs(job_limit)
        except Exception:
            logger.exception("Error while listing active bulk research jobs")
            processed = 0
        if not processed:
            logger.info("No bulk research tasks ready; sleeping %s seconds", idle_sleep)
            time.sleep(idle_sleep)
        loops += 1
        if max_loops is not None and loops >= max_loops:
            logger.info("WORKER_MAX_LOOPS=%s reached in bulk_research_runner; exiting", max_loops)
            break


if __name__ == "__main__":  # pragma: no cover
    main()
