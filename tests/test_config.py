from __future__ import annotations

import pytest
from pydantic import ValidationError

from config.settings import (
    DigestSettings,
    ScriptGateSettings,
    SelectionSettings,
    Settings,
    StepSettings,
    StorageSettings,
    split_csv,
)
from episode_script.quality import ScriptGateConfig
from orchestrator.pipeline import PipelineDefinition
from orchestrator.retry import RetryPolicy
from trends.digest import DEFAULT_EXCLUDED_KEYWORDS, TrendDigestConfig


def test_env_prefixes_are_applied(monkeypatch):
    monkeypatch.setenv("TREND_MAX_HARD_TOPICS", "1")
    monkeypatch.setenv("TREND_CATEGORY_CAPS", '{"tech": 2}')
    monkeypatch.setenv("SCRIPT_MIN_CHARS", "3000")
    monkeypatch.setenv("STEP_MAX_ATTEMPTS", "5")
    monkeypatch.setenv("STEP_SKIP_TTS", "true")
    monkeypatch.setenv("TREND_DIGEST_DENY_KEYWORDS", "scandal, lawsuit ,")

    assert SelectionSettings().max_hard_topics == 1
    assert SelectionSettings().category_caps == {"tech": 2}
    assert ScriptGateSettings().min_chars == 3000
    assert StepSettings().max_attempts == 5
    assert StepSettings().skip_tts is True
    assert DigestSettings().deny_keyword_list == ["scandal", "lawsuit"]


def test_split_csv_handles_empty_values():
    assert split_csv(None) == []
    assert split_csv("") == []
    assert split_csv(" a, ,b ") == ["a", "b"]


def test_storage_backend_is_validated():
    assert StorageSettings(backend=" SQLite ").backend == "sqlite"
    with pytest.raises(ValidationError):
        StorageSettings(backend="postgres")


def test_functions_base_url_drops_trailing_slash():
    assert StepSettings(functions_base_url="https://x.test/functions/v1/").functions_base_url == "https://x.test/functions/v1"
    assert StepSettings(functions_base_url=" / ").functions_base_url is None


def test_load_from_env_file_reads_dotenv(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text("STEP_SERVICE_ROLE_KEY=from-dotenv\nSCRIPT_MAX_CHARS=6000\n", encoding="utf-8")
    monkeypatch.delenv("STEP_SERVICE_ROLE_KEY", raising=False)
    monkeypatch.delenv("SCRIPT_MAX_CHARS", raising=False)

    settings = Settings.load_from_env_file(env_file)

    assert settings.steps.service_role_key == "from-dotenv"
    assert settings.script.max_chars == 6000


def test_runtime_structs_resolve_from_settings():
    steps = StepSettings(max_attempts=4, retry_backoff_ms=200, polish_enabled=True)

    policy = RetryPolicy.from_settings(steps)
    assert policy.max_attempts == 4
    assert policy.backoff_base_s == pytest.approx(0.2)
    assert policy.backoff_for(2) == pytest.approx(0.4)

    pipeline = PipelineDefinition.from_settings(steps, skip_tts=True)
    assert pipeline.polish_enabled is True
    assert "tts-ja" not in pipeline.step_names()
    assert "polish-script-en" in pipeline.step_names()

    gate = ScriptGateConfig.from_settings(ScriptGateSettings(min_chars=6000, max_chars=5000))
    assert gate.max_chars == 6000


def test_digest_exclusions_resolve_from_env(monkeypatch):
    monkeypatch.setenv("TREND_DIGEST_EXCLUDED_SOURCE_CATEGORIES", "Gossip, tabloid")

    config = TrendDigestConfig.from_settings(DigestSettings())

    assert config.excluded_source_categories == ("gossip", "tabloid")
    assert config.excluded_keywords == DEFAULT_EXCLUDED_KEYWORDS
