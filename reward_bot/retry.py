import time
from typing import Callable, Tuple, Type, TypeVar

from .logs import warn
from . import metrics

T = TypeVar("T")


def retry(fn: Callable[[], T], attempts: int = 3, delay: float = 3.0, backoff: float = 1.0,
          label: str = "op", retry_on: Tuple[Type[BaseException], ...] = (Exception,)) -> T:
    """Call ``fn`` up to ``attempts`` times, sleeping ``delay * backoff**n`` between tries.

    The last error is re-raised once attempts are exhausted.
    """
    attempts = max(1, attempts)
    pause = delay
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except retry_on as e:
            warn("attempt_failed", op=label, attempt=attempt, of=attempts, error=str(e))
            if attempt == attempts:
                raise
            metrics.C_RETRIES.labels(op=label).inc()
            if pause > 0:
                time.sleep(pause)
            pause *= backoff
    raise AssertionError("unreachable")
