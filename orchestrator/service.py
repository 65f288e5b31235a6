"""Daily generation orchestrator: one sequential driver per invocation."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from core.contracts import DailyGenerateRequest, JobStatus, PipelineRun, StepResult
from episode_script.quality import ScriptGateConfig
from storage.repositories import EpisodeRepository
from trends.selection import SelectionConfig
from utils.exceptions import SelectionValidationError, StepError

from .gate import ScriptQualityGate, metrics_payload
from .ledger import IdempotencyLedger, JobRunContext
from .pipeline import PipelineDefinition, StepRole, StepSpec
from .steps import (
    PlanResponse,
    StepClient,
    decode_episode_response,
    decode_expand_response,
    decode_plan_response,
    decode_publish_response,
)


logger = logging.getLogger(__name__)

ORCHESTRATE_JOB_NAME = "daily-generate"
ORCHESTRATE_STEP_NAME = "orchestrate"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_run_id(now: Optional[datetime] = None) -> str:
    now = now or _utcnow()
    return f"run_{now.strftime('%Y%m%d_%H%M%S')}_{uuid4().hex[:8]}"


def validate_plan(plan: PlanResponse, config: SelectionConfig) -> None:
    """Reject a planned topic set that breaks the editorial composition policy."""
    selection = plan.selection
    if selection.hard_count > config.max_hard_topics:
        raise SelectionValidationError(
            "too_many_hard_topics",
            hardCount=selection.hard_count,
            maxHardTopics=config.max_hard_topics,
        )
    if selection.entertainment_count < config.min_entertainment:
        raise SelectionValidationError(
            "insufficient_entertainment_topics",
            entertainmentCount=selection.entertainment_count,
            minEntertainment=config.min_entertainment,
        )


class _RunState:
    """Derived state threaded from one step to the next."""

    def __init__(self, run: PipelineRun) -> None:
        self.run = run
        self.plan: Optional[PlanResponse] = None
        self.episode_ids: Dict[str, str] = {}
        self.gate_payload: Dict[str, Any] = {}
        self.expand_outputs: List[Dict[str, Any]] = []


class DailyGenerateOrchestrator:
    """
    Drive ``plan-topics → write → gate/expand → [polish] → tts → adapt → [polish] → tts → publish``.

    The whole sequence is wrapped in the ledger under
    ``(daily-generate, orchestrate, <idempotencyKey>)``; a key that already
    succeeded returns ``skipped`` without invoking any step.
    """

    def __init__(
        self,
        *,
        ledger: IdempotencyLedger,
        episodes: EpisodeRepository,
        step_client: StepClient,
        pipeline: Optional[PipelineDefinition] = None,
        gate_config: Optional[ScriptGateConfig] = None,
        selection_config: Optional[SelectionConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.ledger = ledger
        self.episodes = episodes
        self.step_client = step_client
        self.pipeline = pipeline or PipelineDefinition()
        self.gate = ScriptQualityGate(gate_config)
        self.selection_config = selection_config or SelectionConfig()
        self._clock = clock or _utcnow

    def run(self, request: Optional[DailyGenerateRequest] = None) -> Dict[str, Any]:
        request = request or DailyGenerateRequest()
        now = self._clock()
        episode_date = request.resolve_episode_date(now)
        idempotency_key = request.resolve_idempotency_key(episode_date)
        pipeline = self.pipeline.with_skip_tts(request.skip_tts)

        run = PipelineRun(run_id=new_run_id(now), episode_date=episode_date, idempotency_key=idempotency_key)
        ctx = JobRunContext(ORCHESTRATE_JOB_NAME, ORCHESTRATE_STEP_NAME, idempotency_key)
        base = {
            "step": ORCHESTRATE_STEP_NAME,
            "runId": run.run_id,
            "episodeDate": episode_date,
            "idempotencyKey": idempotency_key,
            "orderedSteps": list(pipeline.step_names()),
            "polishEnabled": pipeline.polish_enabled,
            "skipTts": pipeline.skip_tts,
        }

        started = self.ledger.start_run(ctx, base)
        if started.should_skip:
            run.outcome = "skipped"
            stored = dict(started.record.payload)
            logger.info("run_skip key=%s status=%s", idempotency_key, started.status.value)
            return {
                **stored,
                "ok": True,
                "skipped": True,
                "runId": stored.get("runId", run.run_id),
                "episodeDate": episode_date,
                "idempotencyKey": idempotency_key,
                "status": started.status.value,
            }

        logger.info("run_start run_id=%s key=%s date=%s", run.run_id, idempotency_key, episode_date)
        state = _RunState(run)
        try:
            self._execute(state, pipeline, episode_date, idempotency_key)
        except Exception as exc:
            message = getattr(exc, "message", None) or str(exc) or exc.__class__.__name__
            details = dict(getattr(exc, "details", None) or {})
            run.outcome = "failed"
            run.error = message
            self.ledger.fail_run(
                ctx,
                message,
                {
                    **base,
                    "failedStep": getattr(exc, "step", None),
                    "steps": self._steps_summary(run),
                    "details": details,
                },
                episode_id=state.episode_ids.get("ja"),
            )
            logger.error("run_failed run_id=%s key=%s error=%s", run.run_id, idempotency_key, message)
            response: Dict[str, Any] = {"ok": False, "error": message, "runId": run.run_id}
            if details:
                response["details"] = details
            return response

        run.outcome = "succeeded"
        payload = {
            **base,
            "orderedSteps": list(pipeline.ordered_step_names(run.expand_attempts)),
            "trendItems": state.plan.trend_items if state.plan else [],
            "usedTrendFallback": state.plan.used_trend_fallback if state.plan else False,
            "scriptMetrics": metrics_payload(run.latest_metrics) if run.latest_metrics else {},
            "scriptGate": state.gate_payload,
            "episodeIds": dict(state.episode_ids),
            "steps": self._steps_summary(run),
            "outputs": self._outputs(state),
        }
        self.ledger.finish_run(ctx, JobStatus.SUCCEEDED, payload, episode_id=state.episode_ids.get("ja"))
        logger.info(
            "run_succeeded run_id=%s key=%s steps=%s expands=%s",
            run.run_id,
            idempotency_key,
            len(run.steps),
            run.expand_attempts,
        )
        return {**payload, "ok": True, "skipped": False}

    def _execute(self, state: _RunState, pipeline: PipelineDefinition, episode_date: str, key: str) -> None:
        common = {"episodeDate": episode_date, "idempotencyKey": key}
        for spec in pipeline.steps():
            if spec.role is StepRole.PLAN:
                result = self._call(state, spec, common)
                state.plan = decode_plan_response(result.output, spec.name)
                validate_plan(state.plan, self.selection_config)
            elif spec.role is StepRole.WRITE:
                plan = state.plan
                payload = {
                    **common,
                    "topic": plan.topic if plan else {},
                    "trendItems": plan.trend_items if plan else [],
                }
                result = self._call(state, spec, payload)
                written = decode_episode_response(result.output, spec.name)
                state.episode_ids[spec.lang or "ja"] = written.episode_id
                self._enforce_gate(state, pipeline, spec, common, written.script)
            elif spec.role is StepRole.TRANSLATE:
                payload = {**common, "masterEpisodeId": self._episode_id(state, "ja", spec)}
                result = self._call(state, spec, payload)
                state.episode_ids[spec.lang or "en"] = decode_episode_response(result.output, spec.name).episode_id
            elif spec.role is StepRole.PUBLISH:
                payload = {
                    **common,
                    "episodeIdJa": self._episode_id(state, "ja", spec),
                    "episodeIdEn": self._episode_id(state, "en", spec),
                }
                result = self._call(state, spec, payload)
                decode_publish_response(result.output, spec.name)
            else:
                lang = spec.lang or "ja"
                payload = {**common, "episodeId": self._episode_id(state, lang, spec)}
                result = self._call(state, spec, payload)
                state.episode_ids[lang] = decode_episode_response(result.output, spec.name).episode_id

    def _enforce_gate(
        self,
        state: _RunState,
        pipeline: PipelineDefinition,
        write_spec: StepSpec,
        common: Dict[str, Any],
        reported_script: Optional[str],
    ) -> None:
        episode_id = state.episode_ids[write_spec.lang or "ja"]
        expand_spec = pipeline.expand_step

        def expand(attempt: int, shortage: int) -> str:
            payload = {
                **common,
                "episodeId": episode_id,
                "runId": state.run.run_id,
                "attempt": attempt,
                "charsShortage": shortage,
            }
            result = self._call(state, expand_spec, payload)
            expanded = decode_expand_response(result.output, expand_spec.name)
            state.expand_outputs.append(result.output)
            return self._load_script(episode_id, expanded.script, expand_spec)

        script = self._load_script(episode_id, reported_script, write_spec)
        outcome = self.gate.enforce(script, expand)
        state.run.script_metrics = list(outcome.history)
        state.run.expand_attempts = outcome.expand_attempts
        state.gate_payload = outcome.as_payload(self.gate.config)

    def _load_script(self, episode_id: str, reported: Optional[str], spec: StepSpec) -> str:
        """Prefer the stored episode script; fall back to the script echoed by the step."""
        episode = self.episodes.get(episode_id)
        script = episode.script if episode is not None and episode.script else reported
        if not script:
            raise StepError("missing_script", spec.name, episode_id=episode_id)
        return script

    def _call(self, state: _RunState, spec: StepSpec, payload: Dict[str, Any]) -> StepResult:
        return state.run.record(self.step_client.call(spec.name, payload))

    @staticmethod
    def _episode_id(state: _RunState, lang: str, spec: StepSpec) -> str:
        episode_id = state.episode_ids.get(lang)
        if not episode_id:
            raise StepError(f"missing_episode_id:{lang}", spec.name)
        return episode_id

    @staticmethod
    def _steps_summary(run: PipelineRun) -> List[Dict[str, Any]]:
        return [{"step": result.step, "attempts": result.attempts, "skipped": result.skipped} for result in run.steps]

    def _outputs(self, state: _RunState) -> Dict[str, Any]:
        outputs: Dict[str, Any] = dict(state.run.outputs())
        if state.expand_outputs:
            outputs[self.pipeline.expand_step.name] = list(state.expand_outputs)
        return outputs
