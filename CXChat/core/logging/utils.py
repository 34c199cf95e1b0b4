"""
Timing helpers used around store round-trips and fan-out.
"""

import functools
import logging
import time
from typing import Any, Callable, Optional, TypeVar

F = TypeVar('F', bound=Callable[..., Any])


class LogTimer:
    """
    Context manager for timing operations and logging the duration.

    Example:
        with LogTimer("insert_message", logger):
            store.insert_message(...)
    """

    def __init__(
        self,
        operation: str,
        logger: Optional[logging.Logger] = None,
        level: int = logging.DEBUG
    ):
        self.operation = operation
        self.logger = logger or logging.getLogger(__name__)
        self.level = level
        self.start_time: Optional[float] = None
        self.duration: Optional[float] = None

    def __enter__(self) -> 'LogTimer':
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.start_time is None:
            return
        self.duration = time.perf_counter() - self.start_time
        if exc_type is not None:
            self.logger.error(
                "Operation '%s' failed after %.4f seconds: %s",
                self.operation, self.duration, exc_val
            )
        else:
            self.logger.log(
                self.level,
                "Operation '%s' completed in %.4f seconds",
                self.operation, self.duration
            )


def timed(
    operation: Optional[str] = None,
    logger: Optional[logging.Logger] = None,
    level: int = logging.DEBUG
) -> Callable[[F], F]:
    """
    Decorator form of ``LogTimer`` for plain (non-async) functions.

    Example:
        @timed("chat_history")
        def chat_history(self, user_id): ...
    """
    def decorator(func: F) -> F:
        name = operation or func.__name__
        log = logger or logging.getLogger(func.__module__)

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            with LogTimer(name, log, level):
                return func(*args, **kwargs)

        return wrapper  # type: ignore[return-value]
    return decorator


__all__ = [
    'LogTimer',
    'timed',
]
