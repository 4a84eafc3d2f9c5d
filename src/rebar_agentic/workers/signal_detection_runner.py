"""Scheduled signal detection over every monitored account.

Runs :func:`detect_signals_for_all_users` once per interval (default six
hours). Set ``WORKER_MAX_LOOPS=1`` for a single cron-style pass.
"""

from __future__ import annotations

import logging
import os
import time

from rebar_agentic.config.settings import get_settings
from rebar_agentic.services import signal_monitor
from rebar_agentic.workers.utils import configure_logging, load_env_files, max_loops_from_env

logger = logging.getLogger(__name__)


def _ensure_openai_api_key() -> None:
    settings = get_settings()
    if settings.openai_api_key and "OPENAI_API_KEY" not in os.environ:
        os.environ["OPENAI_API_KEY"] = settings.openai_api_key


def main() -> None:
    load_env_files()
    configure_logging()
    _ensure_openai_api_key()

    interval = int(os.getenv("SIGNAL_DETECTION_INTERVAL_SECONDS", str(6 * 60 * 60)))
    max_loops = max_loops_from_env()
    logger.info("Signal detection worker starting up interval=%ss", interval)

    loops = 0
    while True:
        try:
            summary = signal_monitor.detect_signals_for_all_users()
            logger.info(
                "Signal sweep done: users=%s accounts=%s signals=%s",
                summary["users_processed"],
                summary["accounts_processed"],
                summary["signals_detected"],
            )
        except Exception:
            logger.exception("Error during signal detection sweep")
        loops += 1
        if max_loops is not None and loops >= max_loops:
            logger.info("WORKER_MAX_LOOPS=%s reached in signal_detection_runner; exiting", max_loops)
            break
        time.sleep(interval)


if __name__ == "__main__":  # pragma: no cover
    main()
