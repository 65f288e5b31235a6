from __future__ import annotations

import importlib
import json
from datetime import datetime, timezone
from string import ascii_lowercase

import httpx
from fastapi.testclient import TestClient

from config.settings import Settings, StepSettings, StorageSettings
from core.contracts import Episode
from orchestrator.retry import RetryPolicy
from webapp.runtime import EngineRuntime, build_runtime

webapp_module = importlib.import_module("webapp.app")

NOW = datetime(2024, 1, 1, 3, 0, tzinfo=timezone.utc)
AUTH = {"Authorization": "Bearer secret"}


def _script(chars: int) -> str:
    lines = []
    index = 0
    while len("\n".join(lines)) < chars:
        letters = "".join(ascii_lowercase[(index // 26 ** power) % 26] for power in range(3))
        lines.append(f"話題{letters}の背景を順番に確認します。")
        index += 1
    text = "\n".join(lines)[:chars]
    return text[:-1] + "。" if text[-1].isspace() else text


def _runtime() -> EngineRuntime:
    holder = {}

    def handler(request: httpx.Request) -> httpx.Response:
        runtime = holder["runtime"]
        step = request.url.path.rsplit("/", 1)[-1]
        body = json.loads(request.content)
        date, key = body["episodeDate"], body["idempotencyKey"]
        if step == "plan-topics":
            return httpx.Response(200, json=runtime.planner.plan(date, key))
        if step == "write-script-ja":
            episode = runtime.episodes.insert(Episode(id=f"ja-{date}", lang="ja", status="draft", script=_script(3000)))
            return httpx.Response(200, json={"ok": True, "episodeId": episode.id})
        if step == "expand-script-ja":
            result = runtime.expander.expand(body["episodeId"], date, key, body["attempt"], body["charsShortage"], body.get("runId"))
            return httpx.Response(200, json=result)
        if step == "adapt-script-en":
            runtime.episodes.insert(Episode(id=f"en-{date}", master_id=body["masterEpisodeId"], lang="en"))
            return httpx.Response(200, json={"ok": True, "episodeId": f"en-{date}"})
        if step == "publish":
            return httpx.Response(200, json={"ok": True, "episodeIdJa": body["episodeIdJa"], "episodeIdEn": body["episodeIdEn"]})
        return httpx.Response(200, json={"ok": True, "episodeId": body["episodeId"]})

    settings = Settings(
        steps=StepSettings(functions_base_url="http://steps.test", service_role_key="secret"),
        storage=StorageSettings(backend="memory"),
    )
    runtime = build_runtime(
        settings,
        transport=httpx.MockTransport(handler),
        retry_policy=RetryPolicy(sleep=lambda seconds: None),
        clock=lambda: NOW,
    )
    holder["runtime"] = runtime
    return runtime


def _client(monkeypatch) -> tuple:
    runtime = _runtime()
    monkeypatch.setattr(webapp_module, "get_runtime", lambda: runtime)
    monkeypatch.setattr(webapp_module, "get_orchestrator", lambda: runtime.orchestrator)
    return TestClient(webapp_module.app), runtime


def test_daily_generate_runs_pipeline_then_skips_duplicate(monkeypatch):
    client, runtime = _client(monkeypatch)

    first = client.post("/daily-generate", json={"episodeDate": "2024-01-01"})
    assert first.status_code == 200
    payload = first.json()
    assert payload["ok"] is True
    assert payload["skipped"] is False
    assert payload["usedTrendFallback"] is True
    assert 2500 <= payload["scriptGate"]["actualChars"] <= 5200
    assert payload["episodeIds"] == {"ja": "ja-2024-01-01", "en": "en-2024-01-01"}

    writes = runtime.episodes.write_count
    second = client.post("/daily-generate", json={"episodeDate": "2024-01-01"})
    assert second.status_code == 200
    assert second.json()["skipped"] is True
    assert second.json()["runId"] == payload["runId"]
    assert runtime.episodes.write_count == writes

    runs = client.get("/job-runs", params={"status": "succeeded", "job": "daily-generate"}).json()
    assert runs["ok"] is True
    assert "orchestrate" in [run["step_name"] for run in runs["runs"]]


def test_daily_generate_rejects_invalid_date(monkeypatch):
    client, runtime = _client(monkeypatch)

    response = client.post("/daily-generate", json={"episodeDate": "2024-13-01"})

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_request"
    assert runtime.ledger.list_runs() == []


def test_daily_generate_reports_step_failure_as_500(monkeypatch):
    client, runtime = _client(monkeypatch)
    runtime.orchestrator.step_client.service_key = ""

    response = client.post("/daily-generate", json={"episodeDate": "2024-01-02"})

    assert response.status_code == 500
    assert response.json() == {"ok": False, "error": "missing_service_role_key", "runId": response.json()["runId"]}


def test_health_and_job_runs_status_validation(monkeypatch):
    client, _ = _client(monkeypatch)

    health = client.get("/health").json()
    assert health["ok"] is True and health["ts"]

    bad = client.get("/job-runs", params={"status": "bogus"})
    assert bad.status_code == 400
    assert bad.json()["error"] == "invalid_status"

    empty = client.get("/job-runs").json()
    assert empty == {"ok": True, "count": 0, "runs": []}


def test_step_actions_require_bearer_credential(monkeypatch):
    client, _ = _client(monkeypatch)

    denied = client.post("/plan-topics", json={"episodeDate": "2024-01-01"})
    assert denied.status_code == 401
    assert denied.json()["error"] == "unauthorized"

    allowed = client.post("/plan-topics", json={"episodeDate": "2024-01-01"}, headers=AUTH)
    assert allowed.status_code == 200
    assert len(allowed.json()["trendItems"]) == 10


def test_expand_script_endpoint(monkeypatch):
    client, runtime = _client(monkeypatch)
    runtime.episodes.insert(Episode(id="ep-1", lang="ja", status="draft", script=_script(2000)))

    missing = client.post("/expand-script", json={"episodeId": "nope", "episodeDate": "2024-01-01"}, headers=AUTH)
    assert missing.status_code == 404
    assert missing.json()["error"] == "episode_not_found"

    invalid = client.post("/expand-script-ja", json={"episodeDate": "2024-01-01"}, headers=AUTH)
    assert invalid.status_code == 400

    response = client.post(
        "/expand-script-ja",
        json={"episodeId": "ep-1", "episodeDate": "2024-01-01", "attempt": 1, "charsShortage": 500},
        headers=AUTH,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["addedChars"] > 0
    assert "[EXPANSION 1]" in runtime.episodes.get("ep-1").script
