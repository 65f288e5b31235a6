"""FastAPI surface: daily-generate trigger, local step actions and ledger inspection."""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any, Dict, Optional

from fastapi import Body, FastAPI, Header
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from core.contracts import DailyGenerateRequest, JobStatus
from utils.exceptions import PodcastEngineError, StepError
from webapp.runtime import get_orchestrator, get_runtime


logger = logging.getLogger(__name__)

app = FastAPI(title="Daily Podcast Engine API")


class ExpandScriptPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    episode_id: str = Field(alias="episodeId")
    episode_date: Optional[str] = Field(default=None, alias="episodeDate")
    idempotency_key: Optional[str] = Field(default=None, alias="idempotencyKey")
    attempt: int = Field(default=1, ge=1)
    chars_shortage: Optional[int] = Field(default=None, alias="charsShortage")
    run_id: Optional[str] = Field(default=None, alias="runId")

    @field_validator("episode_id")
    @classmethod
    def _strip_required(cls, value: str) -> str:
        text = str(value or "").strip()
        if not text:
            raise ValueError("episodeId is required")
        return text


def _error(status_code: int, error: str, details: Optional[Dict[str, Any]] = None) -> JSONResponse:
    content: Dict[str, Any] = {"ok": False, "error": error}
    if details:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)


def _validation_details(exc: ValidationError) -> Dict[str, Any]:
    return {
        "fields": [".".join(str(part) for part in item["loc"]) for item in exc.errors()],
        "messages": [str(item.get("msg", "")) for item in exc.errors()],
    }


def _authorized(authorization: Optional[str]) -> bool:
    expected = get_runtime().settings.steps.service_role_key
    if not expected:
        return True
    return str(authorization or "").strip() == f"Bearer {expected}"


def _parse_request(payload: Optional[Dict[str, Any]]) -> DailyGenerateRequest:
    return DailyGenerateRequest.model_validate(payload or {})


@app.get("/health")
def health() -> Dict[str, Any]:
    return {"ok": True, "ts": datetime.now(timezone.utc).isoformat(timespec="seconds")}


@app.post("/daily-generate")
def daily_generate(payload: Optional[Dict[str, Any]] = Body(default=None)):
    try:
        request = _parse_request(payload)
    except ValidationError as exc:
        return _error(400, "invalid_request", _validation_details(exc))

    try:
        result = get_orchestrator().run(request)
    except PodcastEngineError as exc:
        logger.error("daily_generate_error error=%s", exc)
        return _error(500, exc.message, exc.details)

    if not result.get("ok"):
        return JSONResponse(status_code=500, content=result)
    return result


@app.post("/plan-topics")
def plan_topics(
    payload: Optional[Dict[str, Any]] = Body(default=None),
    authorization: Optional[str] = Header(default=None),
):
    if not _authorized(authorization):
        return _error(401, "unauthorized")
    try:
        request = _parse_request(payload)
    except ValidationError as exc:
        return _error(400, "invalid_request", _validation_details(exc))

    episode_date = request.resolve_episode_date()
    try:
        return get_runtime().planner.plan(episode_date, request.resolve_idempotency_key(episode_date))
    except PodcastEngineError as exc:
        return _error(500, exc.message, exc.details)


@app.post("/expand-script")
@app.post("/expand-script-ja")
def expand_script(
    payload: Optional[Dict[str, Any]] = Body(default=None),
    authorization: Optional[str] = Header(default=None),
):
    if not _authorized(authorization):
        return _error(401, "unauthorized")
    try:
        body = ExpandScriptPayload.model_validate(payload or {})
        request = _parse_request(payload)
    except ValidationError as exc:
        return _error(400, "invalid_request", _validation_details(exc))

    episode_date = request.resolve_episode_date()
    try:
        return get_runtime().expander.expand(
            body.episode_id,
            episode_date,
            request.resolve_idempotency_key(episode_date),
            attempt=body.attempt,
            chars_shortage=body.chars_shortage,
            run_id=body.run_id,
        )
    except StepError as exc:
        return _error(404 if exc.message == "episode_not_found" else 400, exc.message, exc.details)
    except PodcastEngineError as exc:
        return _error(500, exc.message, exc.details)


@app.get("/job-runs")
def job_runs(status: Optional[str] = None, job: Optional[str] = None, limit: int = 50):
    job_status = None
    if status:
        try:
            job_status = JobStatus(status.strip().lower())
        except ValueError:
            return _error(400, "invalid_status", {"allowed": [item.value for item in JobStatus]})

    runs = get_runtime().ledger.list_runs(status=job_status, job_name=job or None, limit=limit)
    return {"ok": True, "count": len(runs), "runs": [record.model_dump(mode="json") for record in runs]}
