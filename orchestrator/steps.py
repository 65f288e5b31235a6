"""
Step HTTP client and response decoders.

Every pipeline step is a ``POST {base_url}/{step}`` with a flat JSON body and
a bearer credential. Responses are ``{ok: bool, ...}``; anything that is not
a 2xx with ``ok: true`` is a step failure.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from config.settings import StepSettings
from core.contracts import StepResult
from utils.exceptions import ConfigurationError, ResponseDecodeError, RetryableStepError, StepFailedError

from .retry import RetryPolicy, with_retry


logger = logging.getLogger(__name__)

_REASON_MAX_CHARS = 200


def is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


class StepClient:
    """Invoke named step actions over HTTP with the shared retry policy."""

    def __init__(
        self,
        base_url: str,
        service_key: str,
        *,
        timeout_s: float = 120.0,
        policy: Optional[RetryPolicy] = None,
        transport: Optional[httpx.BaseTransport] = None,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.base_url = str(base_url or "").strip().rstrip("/")
        self.service_key = str(service_key or "").strip()
        self.timeout_s = float(timeout_s)
        self.policy = policy or RetryPolicy()
        self._client = client or httpx.Client(transport=transport, timeout=httpx.Timeout(self.timeout_s))

    @classmethod
    def from_settings(
        cls,
        settings: StepSettings,
        *,
        policy: Optional[RetryPolicy] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> "StepClient":
        return cls(
            settings.functions_base_url,
            settings.service_role_key,
            timeout_s=settings.timeout_s,
            policy=policy or RetryPolicy.from_settings(settings),
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def _require_credentials(self) -> None:
        if not self.base_url:
            raise ConfigurationError("missing_functions_base_url")
        if not self.service_key:
            raise ConfigurationError("missing_service_role_key")

    def invoke(self, step: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """One attempt. Raises ``RetryableStepError`` for transient failures."""
        self._require_credentials()
        try:
            response = self._client.post(
                f"{self.base_url}/{step}",
                json=payload,
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {self.service_key}",
                },
            )
        except httpx.TimeoutException as exc:
            raise RetryableStepError("step_timeout", step, error=str(exc)) from exc
        except httpx.TransportError as exc:
            raise RetryableStepError("step_transport_error", step, error=str(exc)) from exc

        status = response.status_code
        if is_retryable_status(status):
            raise RetryableStepError(f"http_{status}", step, status_code=status)

        try:
            body = response.json()
        except ValueError:
            body = None

        if status >= 400:
            reason = body.get("error") if isinstance(body, dict) else response.text
            raise StepFailedError(step, status_code=status, reason=str(reason or "")[:_REASON_MAX_CHARS])
        if not isinstance(body, dict):
            raise ResponseDecodeError(step, ["body"])
        if body.get("ok") is not True:
            raise StepFailedError(step, status_code=status, reason=str(body.get("error") or "ok_false"))
        return body

    def call(self, step: str, payload: Dict[str, Any]) -> StepResult:
        """Invoke with retries; returns a ``StepResult`` carrying the attempt count."""
        attempts = 0

        def attempt() -> Dict[str, Any]:
            nonlocal attempts
            attempts += 1
            return self.invoke(step, payload)

        try:
            body = with_retry(attempt, self.policy, step=step)
        except StepFailedError as exc:
            exc.attempts = attempts
            exc.details["attempts"] = attempts
            logger.warning("step_failed step=%s attempts=%s status=%s", step, attempts, exc.status_code)
            raise

        logger.info("step_ok step=%s attempts=%s", step, attempts)
        return StepResult(step=step, ok=True, skipped=bool(body.get("skipped")), attempts=attempts, output=body)


class _StepResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    ok: bool = True
    skipped: bool = False


class SelectionSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    hard_count: int = Field(alias="hardCount")
    entertainment_count: int = Field(alias="entertainmentCount")
    fallback_count: int = Field(default=0, alias="fallbackCount")
    category_distribution: Dict[str, int] = Field(default_factory=dict, alias="categoryDistribution")


class PlanResponse(_StepResponse):
    trend_items: List[Dict[str, Any]] = Field(alias="trendItems")
    selection: SelectionSummary
    topic: Dict[str, Any] = Field(default_factory=dict)
    used_trend_fallback: bool = Field(default=False, alias="usedTrendFallback")


class EpisodeResponse(_StepResponse):
    episode_id: str = Field(alias="episodeId", min_length=1)
    script: Optional[str] = None
    script_chars: Optional[int] = Field(default=None, alias="scriptChars")
    status: Optional[str] = None


class ExpandResponse(_StepResponse):
    episode_id: str = Field(alias="episodeId", min_length=1)
    attempt: int = 1
    script: Optional[str] = None
    script_chars: Optional[int] = Field(default=None, alias="scriptChars")
    added_chars: int = Field(default=0, alias="addedChars")


class PublishResponse(_StepResponse):
    episode_id_ja: str = Field(alias="episodeIdJa", min_length=1)
    episode_id_en: str = Field(alias="episodeIdEn", min_length=1)
    published_at_ja: Optional[str] = Field(default=None, alias="publishedAtJa")
    published_at_en: Optional[str] = Field(default=None, alias="publishedAtEn")


def _decode(model, step: str, body: Dict[str, Any]):
    try:
        return model.model_validate(body)
    except ValidationError as exc:
        missing = [".".join(str(part) for part in error["loc"]) for error in exc.errors()]
        raise ResponseDecodeError(step, missing) from exc


def decode_plan_response(body: Dict[str, Any], step: str = "plan-topics") -> PlanResponse:
    return _decode(PlanResponse, step, body)


def decode_episode_response(body: Dict[str, Any], step: str) -> EpisodeResponse:
    return _decode(EpisodeResponse, step, body)


def decode_expand_response(body: Dict[str, Any], step: str = "expand-script-ja") -> ExpandResponse:
    return _decode(ExpandResponse, step, body)


def decode_publish_response(body: Dict[str, Any], step: str = "publish") -> PublishResponse:
    return _decode(PublishResponse, step, body)
