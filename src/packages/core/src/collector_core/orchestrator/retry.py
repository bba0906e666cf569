"""Fixed-backoff retry for pipeline stages, built on tenacity."""
import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_chain,
    wait_fixed,
    wait_none,
)

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """delays[i] is the wait before attempt i + 2; attempts = len(delays) + 1."""

    delays: tuple[float, ...] = ()

    @property
    def attempts(self) -> int:
        return len(self.delays) + 1

    def wait(self):
        if not self.delays:
            return wait_none()
        return wait_chain(*[wait_fixed(d) for d in self.delays])


EXTRACTION_RETRY = RetryPolicy(delays=(1.0, 2.0))
PERSISTENCE_RETRY = RetryPolicy(delays=(1.0,))
REGISTRATION_RETRY = RetryPolicy(delays=(2.0,))


def _always(exc: BaseException) -> bool:
    return True


def _log_retry(stage: str, log_context: dict) -> Callable[[RetryCallState], None]:
    def before_sleep(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "stage_retry",
            stage=stage,
            attempt=retry_state.attempt_number,
            next_delay=retry_state.next_action.sleep if retry_state.next_action else None,
            error=str(exc),
            **log_context,
        )

    return before_sleep


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    stage: str,
    should_retry: Callable[[BaseException], bool] = _always,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    **log_context,
) -> T:
    """Await fn(), retrying per policy. The last exception is re-raised."""
    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.attempts),
        wait=policy.wait(),
        # cancellation is never retried
        retry=retry_if_exception(lambda e: isinstance(e, Exception) and should_retry(e)),
        sleep=sleep,
        reraise=True,
        before_sleep=_log_retry(stage, log_context),
    )
    return await retrying(fn)
