from __future__ import annotations

import functools
import logging
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


def retry(
    *,
    retries: int,
    delay: float,
    backoff: float = 2.0,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    giveup_on: tuple[type[BaseException], ...] = (),
    on_retry: Optional[Callable[[int, BaseException], None]] = None,
    sleep: Callable[[float], None] = time.sleep,
):
    """
    Retry decorator for idempotent operations.

    retries: total number of attempts
    delay: seconds before the second attempt
    backoff: multiplier applied to the delay after every failed attempt
    retry_on: exception types to retry
    giveup_on: subclasses of ``retry_on`` that must propagate immediately
    on_retry: callback(attempt, exception)
    """

    if retries < 1:
        raise ValueError("retries must be at least 1")

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            wait = delay
            for attempt in range(1, retries + 1):
                try:
                    return fn(*args, **kwargs)
                except giveup_on:
                    raise
                except retry_on as exc:
                    if attempt == retries:
                        raise
                    if on_retry:
                        on_retry(attempt, exc)
                    logger.debug(
                        "retry fn=%s attempt=%s/%s wait=%.1fs error=%s",
                        fn.__name__, attempt, retries, wait, exc,
                    )
                    sleep(wait)
                    wait *= backoff
            raise AssertionError("unreachable")
        return wrapper
    return decorator
