"""Single retry combinator shared by every step invocation."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, TypeVar

from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt, wait_incrementing

from config.settings import StepSettings
from utils.exceptions import RetryableStepError, StepFailedError


logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """``max_attempts`` tries with linear backoff ``attempt * backoff_base_s``."""

    max_attempts: int = 3
    backoff_base_s: float = 0.15
    sleep: Callable[[float], None] = field(default=time.sleep, compare=False)

    @classmethod
    def from_settings(cls, settings: StepSettings) -> "RetryPolicy":
        return cls(
            max_attempts=max(1, settings.max_attempts),
            backoff_base_s=max(0, settings.retry_backoff_ms) / 1000.0,
        )

    def backoff_for(self, attempt: int) -> float:
        return attempt * self.backoff_base_s


def _log_retry(state: RetryCallState) -> None:
    exc = state.outcome.exception() if state.outcome else None
    logger.warning(
        "step_retry step=%s attempt=%s status=%s error=%s",
        getattr(exc, "step", None),
        state.attempt_number,
        getattr(exc, "status_code", None),
        exc,
    )


def with_retry(fn: Callable[[], T], policy: Optional[RetryPolicy] = None, step: Optional[str] = None) -> T:
    """Call ``fn`` retrying ``RetryableStepError``; exhaustion raises ``StepFailedError``.

    Any other exception (including ``StepFailedError`` for non-retryable
    responses) propagates on the first occurrence.
    """
    policy = policy or RetryPolicy()
    retrying = Retrying(
        stop=stop_after_attempt(max(1, policy.max_attempts)),
        wait=wait_incrementing(start=policy.backoff_base_s, increment=policy.backoff_base_s),
        retry=retry_if_exception_type(RetryableStepError),
        sleep=policy.sleep,
        before_sleep=_log_retry,
        reraise=True,
    )
    try:
        return retrying(fn)
    except RetryableStepError as exc:
        attempts = retrying.statistics.get("attempt_number", policy.max_attempts)
        raise StepFailedError(
            exc.step or step or "unknown",
            status_code=exc.status_code,
            reason=exc.message,
            attempts=attempts,
        ) from exc
