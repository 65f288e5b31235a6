from __future__ import annotations

from string import ascii_lowercase
from typing import Callable, List, Tuple

import pytest

from episode_script.quality import (
    ScriptGateConfig,
    contains_url,
    duplicate_stats,
    estimate_duration_sec,
    measure_script,
)
from orchestrator.gate import ScriptQualityGate
from utils.exceptions import ScriptGateError


CONFIG = ScriptGateConfig(min_chars=3500, target_chars=4000, max_chars=6000, max_expand_attempts=2)


def _letters(index: int) -> str:
    chars = []
    for _ in range(3):
        chars.append(ascii_lowercase[index % 26])
        index //= 26
    return "".join(chars)


def _script(chars: int, start: int = 0) -> str:
    lines: List[str] = []
    index = start
    while len("\n".join(lines)) < chars:
        lines.append(f"話題{_letters(index)}の背景を順番に確認します。")
        index += 1
    text = "\n".join(lines)[:chars]
    if text[-1].isspace():
        text = text[:-1] + "。"
    return text


def _recording_expand(base: str, added: int) -> Tuple[list, Callable[[int, int], str]]:
    calls = []
    state = {"script": base}

    def expand(attempt: int, shortage: int) -> str:
        calls.append((attempt, shortage))
        state["script"] = state["script"] + "\n" + _script(added, start=1000 * attempt)
        return state["script"]

    return calls, expand


def test_short_script_is_expanded_once_then_passes() -> None:
    calls, expand = _recording_expand(_script(2000), 1600)

    outcome = ScriptQualityGate(CONFIG).enforce(_script(2000), expand)

    assert calls == [(1, 1500)]
    assert outcome.expand_attempts == 1
    assert outcome.metrics.actual_chars == 3601
    assert [metrics.actual_chars for metrics in outcome.history] == [2000, 3601]

    payload = outcome.as_payload(CONFIG)
    assert payload["passed"] is True
    assert payload["expandAttempts"] == 1
    assert payload["minChars"] == 3500
    assert "normalization" not in payload


def test_expansion_stops_at_attempt_limit() -> None:
    calls, expand = _recording_expand(_script(2000), 100)

    with pytest.raises(ScriptGateError) as excinfo:
        ScriptQualityGate(CONFIG).enforce(_script(2000), expand)

    assert excinfo.value.code == "script_too_short"
    assert [attempt for attempt, _ in calls] == [1, 2]
    assert excinfo.value.details["expandAttempts"] == 2
    assert excinfo.value.details["actualChars"] == 2202


def test_script_within_bounds_is_not_expanded() -> None:
    calls, expand = _recording_expand("", 100)

    outcome = ScriptQualityGate(CONFIG).enforce(_script(4000), expand)

    assert calls == []
    assert outcome.expand_attempts == 0


def test_overlong_script_is_rejected_without_expanding() -> None:
    calls, expand = _recording_expand("", 100)

    with pytest.raises(ScriptGateError) as excinfo:
        ScriptQualityGate(CONFIG).enforce(_script(7000), expand)

    assert str(excinfo.value) == "script_too_long"
    assert calls == []


def test_repeated_lines_fail_duplicate_ratio() -> None:
    block = _script(2000)

    with pytest.raises(ScriptGateError) as excinfo:
        ScriptQualityGate(CONFIG).enforce(block + "\n" + block, lambda attempt, shortage: "")

    assert str(excinfo.value) == "script_quality_failed:duplicate_ratio_exceeded"
    assert excinfo.value.violations == ["duplicate_ratio_exceeded"]
    assert excinfo.value.details["duplicateRatio"] > 0.4


def test_url_in_spoken_body_fails_but_sources_section_may_link() -> None:
    gate = ScriptQualityGate(CONFIG)

    with pytest.raises(ScriptGateError) as excinfo:
        gate.enforce(_script(3600) + "\n詳しくは https://example.com をどうぞ", lambda attempt, shortage: "")
    assert excinfo.value.code == "script_contains_url"

    outcome = gate.enforce(_script(3600) + "\n\n[SOURCES]\n- https://example.com/a", lambda attempt, shortage: "")
    assert outcome.metrics.contains_url is False


def test_duplicate_stats_ignore_numbering_prefixes() -> None:
    script = "補足1: 同じ内容をもう一度説明します\n補足2: 同じ内容をもう一度説明します\n短い\n短い"

    ratio, duplicates, lines = duplicate_stats(script)

    assert (duplicates, lines) == (1, 4)
    assert ratio == pytest.approx(0.25)


def test_measure_script_reports_duration_and_url() -> None:
    metrics = measure_script("www.example.com を見てください。" * 10, CONFIG)

    assert metrics.contains_url is True
    assert metrics.estimated_duration_sec == 60
    assert estimate_duration_sec(3000, 300) == 600
    assert contains_url("[SOURCES]\nhttps://a.example.com") is False


def test_gate_config_keeps_bounds_monotone() -> None:
    config = ScriptGateConfig(min_chars=4000, target_chars=3000, max_chars=3500, max_expand_attempts=-1)

    assert (config.min_chars, config.target_chars, config.max_chars) == (4000, 4000, 4000)
    assert config.max_expand_attempts == 0
    assert config.as_payload()["targetSec"] == 800
