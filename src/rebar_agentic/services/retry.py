"""Retry logic with exponential backoff.

Used around OpenAI/Agents SDK calls, Supabase writes and the bulk
runner's calls into the chat endpoint, all of which fail transiently
(rate limits, dropped connections, cold starts).
"""

import functools
import logging
import time
from typing import Any, Callable, Optional, Tuple, Type

logger = logging.getLogger(__name__)


def backoff_delay(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
) -> float:
    """Delay before retry number ``attempt`` (1-based), capped at ``max_delay``."""

    return min(base_delay * (exponential_base ** (attempt - 1)), max_delay)


def with_exponential_backoff(
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    should_retry: Optional[Callable[[BaseException], bool]] = None,
    on_retry: Optional[Callable[[BaseException, int], None]] = None,
):
    """Decorator that retries a function with exponential backoff.

    Args:
        max_attempts: Maximum number of attempts (default 3)
        base_delay: Initial delay in seconds (default 1.0)
        max_delay: Maximum delay in seconds (default 60.0)
        exponential_base: Multiplier applied per attempt (default 2.0)
        exceptions: Exception types that are candidates for a retry
        should_retry: Optional predicate; returning False re-raises at once
        on_retry: Optional callback(exception, attempt) called before each wait

    Example:
        @with_exponential_backoff(max_attempts=3, should_retry=is_network_error)
        def fetch_context():
            return supabase_client.rpc("get_user_context", {"p_user": uid})

    The exception from the final attempt propagates unchanged.
    """

    def decorator(func: Callable) -> Callable:
        name = getattr(func, "__name__", "call")

        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            for attempt in range(1, max_attempts + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if should_retry is not None and not should_retry(e):
                        raise
                    if attempt == max_attempts:
                        logger.error(
                            "%s failed after %d attempts: %s",
                            name,
                            max_attempts,
                            e,
                        )
                        raise

                    delay = backoff_delay(attempt, base_delay, max_delay, exponential_base)
                    logger.warning(
                        "%s attempt %d/%d failed: %s. Retrying in %.1fs...",
                        name,
                        attempt,
                        max_attempts,
                        e,
                        delay,
                    )
                    if on_retry:
                        try:
                            on_retry(e, attempt)
                        except Exception as callback_error:
                            logger.error("on_retry callback failed: %s", callback_error)
                    time.sleep(delay)
            raise RuntimeError(f"{name} called with max_attempts={max_attempts}")

        return wrapper

    return decorator


def retry_agent_call(
    func: Callable,
    *args,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    **kwargs,
) -> Any:
    """Functional form of :func:`with_exponential_backoff`.

    Example:
        from agents import Runner
        result = retry_agent_call(Runner.run_sync, agent, prompt, max_attempts=3)
    """

    wrapped = with_exponential_backoff(
        max_attempts=max_attempts,
        base_delay=base_delay,
    )(func)
    return wrapped(*args, **kwargs)

