import logging
from typing import Awaitable, Callable, TypeVar

import anyio

from src.docflow.domain.value_objects import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")


def compute_backoff(policy: RetryPolicy, attempt: int) -> float:
    """
    Задержка перед следующей попыткой, attempt считается с 1:
    min(initial * multiplier ** (attempt - 1), max).
    """
    if attempt <= 0:
        return 0.0
    delay = policy.initial_backoff * policy.multiplier ** (attempt - 1)
    return min(delay, policy.max_backoff)


def _always(exc: BaseException) -> bool:
    return True


async def retry_async(
    op: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    is_retryable: Callable[[Exception], bool] = _always,
    sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
    describe: str = "operation",
) -> T:
    """
    Повторяет op не более policy.max_attempts раз.
    Отмена (cancel scope) прерывает и ожидание, и саму попытку.
    """
    attempt = 1
    while True:
        try:
            return await op()
        except Exception as exc:
            if attempt >= policy.max_attempts or not is_retryable(exc):
                raise
            delay = compute_backoff(policy, attempt)
            logger.warning(
                "%s failed (attempt %s/%s), retrying in %.2fs: %s",
                describe, attempt, policy.max_attempts, delay, exc,
            )
            await sleep(delay)
            attempt += 1
