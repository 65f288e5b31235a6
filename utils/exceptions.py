"""
Custom Exceptions
Error taxonomy for trend selection and pipeline orchestration.
"""
from typing import Optional, Sequence


class PodcastEngineError(Exception):
    """Base error for the daily podcast engine."""

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self):
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(PodcastEngineError):
    """Missing credential or inconsistent configuration. Never retried."""
    pass


class StorageError(PodcastEngineError):
    """Repository read/write failure."""
    pass


class LedgerError(StorageError):
    """Idempotency ledger could not be read or written."""
    pass


class StepError(PodcastEngineError):
    """Base for failures of a single pipeline step call."""

    def __init__(self, message: str, step: str = None, **kwargs):
        super().__init__(message, kwargs)
        self.step = step


class RetryableStepError(StepError):
    """Transient step failure (HTTP 5xx, 429, timeout, transport error)."""

    def __init__(self, message: str, step: str = None, status_code: Optional[int] = None, **kwargs):
        super().__init__(message, step, **kwargs)
        self.status_code = status_code


class StepFailedError(StepError):
    """Step failed for good: retries exhausted or non-retryable response."""

    def __init__(self, step: str, status_code: Optional[int] = None, reason: str = "", attempts: int = 0):
        super().__init__(f"step_failed:{step}", step)
        self.status_code = status_code
        self.reason = reason
        self.attempts = attempts
        self.details = {
            key: value
            for key, value in {"status_code": status_code, "reason": reason, "attempts": attempts}.items()
            if value not in (None, "", 0)
        }

    def __str__(self):
        return self.message


class ResponseDecodeError(StepError):
    """Step answered 2xx with a body that does not match the expected shape."""

    def __init__(self, step: str, missing: Sequence[str] = ()):
        super().__init__(f"invalid_step_response:{step}", step, missing=list(missing))

    def __str__(self):
        return self.message


class ScriptGateError(PodcastEngineError):
    """Generated script failed the length/duplication/URL gate."""

    def __init__(self, code: str, violations: Sequence[str] = (), **kwargs):
        message = code
        if code == "script_quality_failed" and violations:
            message = f"{code}:{','.join(violations)}"
        super().__init__(message, kwargs)
        self.code = code
        self.violations = list(violations)

    def __str__(self):
        return self.message


class SelectionValidationError(PodcastEngineError):
    """Planned topic set violates the editorial composition policy."""

    def __init__(self, code: str, **kwargs):
        super().__init__(code, kwargs)
        self.code = code

    def __str__(self):
        return self.message
