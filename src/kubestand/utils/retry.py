# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

import functools
import time
from typing import Callable, Optional


class RetryError(RuntimeError):
    def __init__(self, name: str, attempts: int, last: Optional[BaseException]):
        super().__init__(f"{name} gave up after {attempts} attempts: {last}")
        self.attempts = attempts
        self.last = last


def retry(
    *,
    retries: int,
    delay: float,
    backoff: float = 1.0,
    max_delay: Optional[float] = None,
    retry_on: tuple[type[Exception], ...] = (Exception,),
    on_retry: Callable[[int, Exception], None] | None = None,
):
    """
    Poll a read-only lookup until it stops raising one of `retry_on`.

    The wait between attempts starts at `delay` and is multiplied by
    `backoff` after each miss, capped at `max_delay`. Other exceptions
    propagate on the first attempt.
    """

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            wait = delay
            last: Optional[Exception] = None
            attempt = 0
            while attempt < retries:
                attempt += 1
                try:
                    return fn(*args, **kwargs)
                except retry_on as exc:
                    last = exc
                    if on_retry:
                        on_retry(attempt, exc)
                if attempt < retries:
                    time.sleep(wait)
                    wait = wait * backoff if max_delay is None else min(wait * backoff, max_delay)
            raise RetryError(fn.__name__, attempt, last) from last
        return wrapper
    return decorator
