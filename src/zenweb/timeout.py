"""
Bounded sub-operations for handlers.

The engine never enforces a global request timeout. A handler that calls a
slow collaborator (database, upstream API) wraps the call instead:

    try:
        rows = call_with_timeout(db.query, sql, timeout=2.0)
    except DeadlineExceeded:
        ctx.json(HTTPStatus.GATEWAY_TIMEOUT, {"error": "upstream timed out"})
        return

The call runs on a small shared executor so the request thread can stop
waiting. The callable itself is not interrupted (Python threads cannot be
killed); it finishes in the background and its result is discarded.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Any, Callable, Optional, TypeVar

from .errors import DeadlineExceeded


logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUT = 10.0

_executor: Optional[ThreadPoolExecutor] = None
_executor_lock = threading.Lock()


def _get_executor() -> ThreadPoolExecutor:
    global _executor
    with _executor_lock:
        if _executor is None:
            _executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix="zen-timeout")
        return _executor


def call_with_timeout(
    fn: Callable[..., T],
    *args: Any,
    timeout: Optional[float] = DEFAULT_TIMEOUT,
    **kwargs: Any,
) -> T:
    """
    Run fn(*args, **kwargs) and wait at most `timeout` seconds for it.

    Args:
        fn: The operation to bound.
        timeout: Seconds to wait. None waits forever.

    Returns:
        Whatever fn returns.

    Raises:
        DeadlineExceeded: fn did not finish in time.
        Exception: Anything fn raised is re-raised unchanged.
    """
    future = _get_executor().submit(fn, *args, **kwargs)
    try:
        return future.result(timeout=timeout)
    except FutureTimeout:
        future.cancel()
        logger.debug(f"{getattr(fn, '__name__', fn)!s} exceeded {timeout}s")
        raise DeadlineExceeded(timeout) from None


def shutdown_timeout_executor(wait: bool = False) -> None:
    """Release the shared executor threads (used on engine shutdown)."""
    global _executor
    with _executor_lock:
        if _executor is not None:
            _executor.shutdown(wait=wait)
            _executor = None
