# wellen/retry.py
import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """
    How often and how patiently to retry an async call.

    `attempts` counts the first try. The delay before retry n (1-based) is
    `delay * backoff ** (n - 1)`, plus up to `jitter` seconds of random
    spread.
    """

    attempts: int = 3
    delay: float = 0.5
    backoff: float = 1.0
    jitter: float = 0.0

    def wait_before(self, retry_number: int) -> float:
        base = self.delay * (self.backoff ** (retry_number - 1))
        if self.jitter:
            base += random.uniform(0, self.jitter)
        return base


async def retry_async(
    call: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    retry_if: Optional[Callable[[T], bool]] = None,
    label: str = "call",
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """
    Run `call` under `policy`.

    Retries when it raises one of `retry_on`, or when `retry_if(result)` is
    true. On the last attempt an exception propagates and an unsatisfying
    result is returned as is.
    """
    attempts = max(1, policy.attempts)
    for attempt in range(1, attempts + 1):
        last = attempt == attempts
        try:
            result = await call()
        except retry_on as exc:
            if last:
                logger.error("[RETRY] %s failed after %d attempts: %s", label, attempts, exc)
                raise
            logger.warning(
                "[RETRY] %s failed, retrying (attempt %d/%d): %s", label, attempt + 1, attempts, exc
            )
        else:
            if last or retry_if is None or not retry_if(result):
                return result
            logger.info("[RETRY] %s returned nothing, retrying (attempt %d/%d)", label, attempt + 1, attempts)
        await sleep(policy.wait_before(attempt))

    raise RuntimeError("unreachable")  # pragma: no cover
