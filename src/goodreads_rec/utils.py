"""Utility functions and decorators for goodreads_rec."""

import re
import logging
import asyncio
from functools import wraps
from typing import Awaitable, Callable, Sequence, TypeVar

from tqdm import tqdm

logger = logging.getLogger(__name__)

T = TypeVar('T')
U = TypeVar('U')


def async_retry_with_backoff(
    max_retries: int = 3,
    initial_delay: float = 1.0,
    backoff_factor: float = 2.0,
    exceptions: tuple = (Exception,)
):
    """
    Async decorator that retries a coroutine with exponential backoff on failure.

    The last exception is re-raised once every attempt has failed.

    Args:
        max_retries: Maximum number of attempts
        initial_delay: Initial delay in seconds before first retry
        backoff_factor: Multiplier for delay between retries (exponential backoff)
        exceptions: Tuple of exception types to catch and retry

    Example:
        @async_retry_with_backoff(max_retries=3, initial_delay=2.0)
        async def fetch_data():
            # ... async code that might fail
            pass
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            delay = initial_delay
            last_exception = None

            for attempt in range(max_retries):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    last_exception = e
                    if attempt < max_retries - 1:
                        logger.warning(
                            f"{func.__name__} failed (attempt {attempt + 1}/{max_retries}): {e}. "
                            f"Retrying in {delay:.1f}s..."
                        )
                        await asyncio.sleep(delay)
                        delay *= backoff_factor
                    else:
                        logger.error(
                            f"{func.__name__} failed after {max_retries} attempts: {e}"
                        )

            raise last_exception

        return wrapper
    return decorator


async def run_sequence(
    label: str,
    tasks: Sequence[T],
    step: Callable[[T], Awaitable[U]],
) -> list[U]:
    """
    Run an async step for each task, strictly one after another.

    Results come back in task order. Progress is shown with tqdm when
    attached to a terminal and logged at debug level otherwise.
    """
    total = len(tasks)
    logger.info(f"{label} ({total} items)")

    results: list[U] = []
    for index, task in enumerate(tqdm(tasks, desc=label, unit="item", disable=None), 1):
        logger.debug(f"{index}/{total} {label}: {task}")
        results.append(await step(task))

    return results


def normalize_string(value: str) -> str:
    """Trim a string and collapse runs of whitespace."""
    return re.sub(r"\s{2,}", " ", value.strip())


def formalize_author_name(name: str) -> str:
    """
    Display an author's name as "Last, First Middle" when possible.

    >>> formalize_author_name("Ursula K. Le Guin")
    'Guin, Ursula K. Le'
    """
    parts = normalize_string(name).split()
    if not parts:
        return ""

    last = parts[-1]
    rest = " ".join(parts[:-1])
    return ", ".join(p for p in (last, rest) if p)


def underline(value: str, character: str = "=") -> str:
    """Underline text for a Markdown heading."""
    return f"{value}\n{character * len(value)}"
