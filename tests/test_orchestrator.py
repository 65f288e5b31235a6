from __future__ import annotations

import json
from datetime import datetime, timezone
from string import ascii_lowercase
from typing import Any, Dict, List

import httpx
import pytest

from config.settings import StepSettings
from core.contracts import DailyGenerateRequest, Episode, JobStatus
from episode_script.expand import ScriptExpander
from episode_script.quality import ScriptGateConfig
from orchestrator.ledger import IdempotencyLedger, JobRunContext
from orchestrator.pipeline import PipelineDefinition
from orchestrator.retry import RetryPolicy
from orchestrator.service import (
    ORCHESTRATE_JOB_NAME,
    ORCHESTRATE_STEP_NAME,
    DailyGenerateOrchestrator,
    new_run_id,
    validate_plan,
)
from orchestrator.steps import StepClient, decode_plan_response
from storage.repositories import InMemoryEpisodeRepository, InMemoryLedgerRepository
from trends.selection import SelectionConfig
from utils.exceptions import SelectionValidationError


NOW = datetime(2024, 1, 1, 3, 0, tzinfo=timezone.utc)


def _letters(index: int) -> str:
    chars = []
    for _ in range(3):
        chars.append(ascii_lowercase[index % 26])
        index //= 26
    return "".join(chars)


def _script(chars: int) -> str:
    lines: List[str] = []
    index = 0
    while len("\n".join(lines)) < chars:
        lines.append(f"話題{_letters(index)}の背景を順番に確認します。")
        index += 1
    text = "\n".join(lines)[:chars]
    if text[-1].isspace():
        text = text[:-1] + "。"
    return text


class _RecordingLedgerRepository(InMemoryLedgerRepository):
    def __init__(self) -> None:
        super().__init__()
        self.transitions: List[tuple] = []

    def upsert_started(self, job_name, step_name, idempotency_key, payload, episode_id=None):
        self.transitions.append((step_name, "started"))
        return super().upsert_started(job_name, step_name, idempotency_key, payload, episode_id)

    def update_terminal(self, job_name, step_name, idempotency_key, status, payload, error=None, episode_id=None):
        self.transitions.append((step_name, JobStatus(status).value))
        return super().update_terminal(job_name, step_name, idempotency_key, status, payload, error, episode_id)


class _FakeSteps:
    """In-process stand-in for the step actions."""

    def __init__(self, episodes: InMemoryEpisodeRepository, expander: ScriptExpander, script_chars: int) -> None:
        self.episodes = episodes
        self.expander = expander
        self.script_chars = script_chars
        self.calls: List[str] = []
        self.bodies: Dict[str, Dict[str, Any]] = {}
        self.plan_selection = {"hardCount": 1, "entertainmentCount": 4}

    def _upsert(self, episode: Episode) -> None:
        if self.episodes.get(episode.id) is None:
            self.episodes.insert(episode)
        else:
            self.episodes.update(episode.id, script=episode.script, status=episode.status)

    def handle(self, request: httpx.Request) -> httpx.Response:
        step = request.url.path.rsplit("/", 1)[-1]
        body = json.loads(request.content)
        self.calls.append(step)
        self.bodies[step] = body
        date = body["episodeDate"]

        if step == "plan-topics":
            return httpx.Response(
                200,
                json={
                    "ok": True,
                    "trendItems": [{"id": "t1", "title": "Story"}],
                    "selection": self.plan_selection,
                    "topic": {"title": "Story", "bullets": []},
                },
            )
        if step == "write-script-ja":
            episode_id = f"ja-{date}"
            self._upsert(Episode(id=episode_id, lang="ja", status="draft", script=_script(self.script_chars)))
            return httpx.Response(200, json={"ok": True, "episodeId": episode_id, "status": "draft"})
        if step == "expand-script-ja":
            result = self.expander.expand(
                body["episodeId"],
                date,
                body["idempotencyKey"],
                body["attempt"],
                body["charsShortage"],
                body.get("runId"),
            )
            return httpx.Response(200, json=result)
        if step == "adapt-script-en":
            episode_id = f"en-{date}"
            self._upsert(Episode(id=episode_id, master_id=body["masterEpisodeId"], lang="en", script="Hello"))
            return httpx.Response(200, json={"ok": True, "episodeId": episode_id})
        if step == "publish":
            return httpx.Response(
                200,
                json={"ok": True, "episodeIdJa": body["episodeIdJa"], "episodeIdEn": body["episodeIdEn"]},
            )
        return httpx.Response(200, json={"ok": True, "episodeId": body["episodeId"]})


def _build(script_chars: int = 3000, pipeline: PipelineDefinition = None, gate_config: ScriptGateConfig = None):
    episodes = InMemoryEpisodeRepository()
    repo = _RecordingLedgerRepository()
    ledger = IdempotencyLedger(repo)
    gate_config = gate_config or ScriptGateConfig()
    steps = _FakeSteps(episodes, ScriptExpander(episodes, ledger, gate_config), script_chars)
    client = StepClient(
        "http://steps.test",
        "secret",
        policy=RetryPolicy(sleep=lambda seconds: None),
        transport=httpx.MockTransport(steps.handle),
    )
    orchestrator = DailyGenerateOrchestrator(
        ledger=ledger,
        episodes=episodes,
        step_client=client,
        pipeline=pipeline,
        gate_config=gate_config,
        clock=lambda: NOW,
    )
    return orchestrator, steps, repo


def _request(**kwargs) -> DailyGenerateRequest:
    return DailyGenerateRequest(episodeDate="2024-01-01", **kwargs)


def test_full_run_calls_steps_in_order_and_records_success() -> None:
    orchestrator, steps, repo = _build()

    result = orchestrator.run(_request())

    assert result["ok"] is True
    assert result["skipped"] is False
    assert steps.calls == ["plan-topics", "write-script-ja", "tts-ja", "adapt-script-en", "tts-en", "publish"]
    assert result["episodeIds"] == {"ja": "ja-2024-01-01", "en": "en-2024-01-01"}
    assert result["idempotencyKey"] == "daily-2024-01-01"
    assert result["scriptGate"]["passed"] is True
    assert result["scriptGate"]["actualChars"] == 3000
    assert result["runId"].startswith("run_20240101_030000_")
    assert steps.bodies["adapt-script-en"]["masterEpisodeId"] == "ja-2024-01-01"
    assert steps.bodies["write-script-ja"]["trendItems"] == [{"id": "t1", "title": "Story"}]
    assert repo.transitions == [("orchestrate", "started"), ("orchestrate", "succeeded")]


def test_rerun_with_same_key_is_skipped_without_step_calls() -> None:
    orchestrator, steps, _ = _build()
    first = orchestrator.run(_request())
    calls = list(steps.calls)
    writes = steps.episodes.write_count

    second = orchestrator.run(_request())

    assert second["ok"] is True
    assert second["skipped"] is True
    assert second["status"] == "succeeded"
    assert second["runId"] == first["runId"]
    assert steps.calls == calls
    assert steps.episodes.write_count == writes


def test_short_script_triggers_expand_before_tts() -> None:
    orchestrator, steps, _ = _build(script_chars=2000)

    result = orchestrator.run(_request(skipTts=True))

    assert result["ok"] is True
    assert steps.calls[:3] == ["plan-topics", "write-script-ja", "expand-script-ja"]
    assert "tts-ja" not in steps.calls
    assert result["scriptGate"]["expandAttempts"] >= 1
    assert 2500 <= result["scriptGate"]["actualChars"] <= 5200
    assert result["orderedSteps"][2] == "expand-script-ja"
    assert isinstance(result["outputs"]["expand-script-ja"], list)
    assert steps.bodies["expand-script-ja"]["charsShortage"] > 0


def test_gate_failure_marks_run_failed_and_allows_retry() -> None:
    gate_config = ScriptGateConfig(min_chars=2500, max_chars=5200, max_expand_attempts=0)
    orchestrator, steps, repo = _build(script_chars=1000, gate_config=gate_config)

    result = orchestrator.run(_request())

    assert result["ok"] is False
    assert result["error"] == "script_too_short"
    assert result["details"]["actualChars"] == 1000
    assert "tts-ja" not in steps.calls
    record = orchestrator.ledger.get(JobRunContext(ORCHESTRATE_JOB_NAME, ORCHESTRATE_STEP_NAME, "daily-2024-01-01"))
    assert record.status is JobStatus.FAILED
    assert record.error == "script_too_short"

    steps.script_chars = 3000
    retried = orchestrator.run(_request())
    assert retried["ok"] is True
    assert retried["skipped"] is False
    assert repo.transitions[-1] == ("orchestrate", "succeeded")


def test_retry_after_short_script_expands_again_under_new_run() -> None:
    gate_config = ScriptGateConfig(min_chars=4000, max_chars=5200, max_expand_attempts=2)
    orchestrator, steps, _ = _build(script_chars=500, gate_config=gate_config)

    first = orchestrator.run(_request(skipTts=True))

    assert first["ok"] is False
    assert first["error"] == "script_too_short"
    assert steps.calls.count("expand-script-ja") == 2

    steps.script_chars = 2000
    retried = orchestrator.run(_request(skipTts=True))

    assert retried["ok"] is True
    assert retried["runId"] != first["runId"]
    assert steps.calls.count("expand-script-ja") == 4
    assert [output["skipped"] for output in retried["outputs"]["expand-script-ja"]] == [False, False]
    assert steps.bodies["expand-script-ja"]["runId"] == retried["runId"]
    assert 4000 <= retried["scriptGate"]["actualChars"] <= 5200


def test_plan_breaking_editorial_policy_aborts_run() -> None:
    orchestrator, steps, _ = _build()
    steps.plan_selection = {"hardCount": 5, "entertainmentCount": 4}

    result = orchestrator.run(_request())

    assert result["ok"] is False
    assert result["error"] == "too_many_hard_topics"
    assert steps.calls == ["plan-topics"]


def test_step_failure_is_reported_with_step_name() -> None:
    orchestrator, steps, _ = _build()
    original = steps.handle

    def failing(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/tts-en"):
            steps.calls.append("tts-en")
            return httpx.Response(503)
        return original(request)

    orchestrator.step_client = StepClient(
        "http://steps.test",
        "secret",
        policy=RetryPolicy(max_attempts=2, sleep=lambda seconds: None),
        transport=httpx.MockTransport(failing),
    )

    result = orchestrator.run(_request())

    assert result["ok"] is False
    assert result["error"] == "step_failed:tts-en"
    assert result["details"]["attempts"] == 2
    assert steps.calls.count("tts-en") == 2
    assert "publish" not in steps.calls
    record = orchestrator.ledger.get(JobRunContext(ORCHESTRATE_JOB_NAME, ORCHESTRATE_STEP_NAME, "daily-2024-01-01"))
    assert record.payload["failedStep"] == "tts-en"


def test_polish_steps_run_only_when_enabled() -> None:
    pipeline = PipelineDefinition.from_settings(StepSettings(polish_enabled=True))
    orchestrator, steps, _ = _build(pipeline=pipeline)

    orchestrator.run(_request())

    assert steps.calls == [
        "plan-topics",
        "write-script-ja",
        "polish-script-ja",
        "tts-ja",
        "adapt-script-en",
        "polish-script-en",
        "tts-en",
        "publish",
    ]


def test_validate_plan_checks_both_limits() -> None:
    config = SelectionConfig(max_hard_topics=2, min_entertainment=3)
    ok = decode_plan_response({"trendItems": [], "selection": {"hardCount": 2, "entertainmentCount": 3}})
    validate_plan(ok, config)

    short = decode_plan_response({"trendItems": [], "selection": {"hardCount": 0, "entertainmentCount": 2}})
    with pytest.raises(SelectionValidationError) as excinfo:
        validate_plan(short, config)
    assert excinfo.value.code == "insufficient_entertainment_topics"


def test_pipeline_ordering_helpers() -> None:
    pipeline = PipelineDefinition(skip_tts=True)

    assert pipeline.step_names() == ("plan-topics", "write-script-ja", "adapt-script-en", "publish")
    assert pipeline.ordered_step_names(2)[2:4] == ("expand-script-ja", "expand-script-ja")
    assert pipeline.with_skip_tts(False).step_names()[2] == "tts-ja"
    assert pipeline.with_skip_tts(None) is pipeline
    assert new_run_id(NOW).startswith("run_20240101_030000_")
