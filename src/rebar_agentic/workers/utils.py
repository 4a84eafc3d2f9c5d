import logging
import os
from typing import List, Optional

from dotenv import load_dotenv


def load_env_files(
    *,
    root_dir: Optional[str] = None,
    env_files: Optional[List[str]] = None,
) -> None:
    """Load environment variables from .env.local and .env if present.

    Existing environment variables win, so a deployment can override
    anything a checked-out env file sets.
    """

    if root_dir is None:
        base_dir = os.path.dirname(os.path.abspath(__file__))
        # workers -> rebar_agentic -> src -> repo root
        root_dir = os.path.abspath(os.path.join(base_dir, os.pardir, os.pardir, os.pardir))

    if env_files is None:
        env_files = [".env.local", ".env"]

    for rel in env_files:
        path = os.path.join(root_dir, rel)
        if os.path.exists(path):
            load_dotenv(path, override=False)


def configure_logging() -> None:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def max_loops_from_env() -> Optional[int]:
    raw = os.getenv("WORKER_MAX_LOOPS")
    try:
        return int(raw) if raw is not None else None
    except ValueError:
        return None
