"""Script quality gate: bounded expand loop, then length/duplicate/URL checks."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from core.contracts import ScriptMetrics
from episode_script.quality import ScriptGateConfig, measure_script
from utils.exceptions import ScriptGateError


logger = logging.getLogger(__name__)

# (attempt, chars_shortage) -> script text after expansion
ExpandFn = Callable[[int, int], str]


def metrics_payload(metrics: ScriptMetrics) -> Dict[str, Any]:
    return {
        "actualChars": metrics.actual_chars,
        "duplicateRatio": metrics.duplicate_ratio,
        "duplicateLineCount": metrics.duplicate_line_count,
        "lineCount": metrics.line_count,
        "containsUrl": metrics.contains_url,
        "estimatedDurationSec": metrics.estimated_duration_sec,
        "normalization": dict(metrics.normalization),
    }


@dataclass
class GateOutcome:
    metrics: ScriptMetrics
    history: List[ScriptMetrics] = field(default_factory=list)
    expand_attempts: int = 0

    def as_payload(self, config: ScriptGateConfig) -> Dict[str, Any]:
        payload = {**config.as_payload(), **metrics_payload(self.metrics)}
        payload.pop("normalization", None)
        payload.update(expandAttempts=self.expand_attempts, passed=True)
        return payload


class ScriptQualityGate:
    def __init__(
        self,
        config: Optional[ScriptGateConfig] = None,
        measure: Callable[[str, ScriptGateConfig], ScriptMetrics] = measure_script,
    ) -> None:
        self.config = config or ScriptGateConfig()
        self._measure = measure

    def measure(self, script: str) -> ScriptMetrics:
        return self._measure(script, self.config)

    def enforce(self, script: str, expand: ExpandFn) -> GateOutcome:
        """
        Expand a short script up to ``max_expand_attempts`` times, then validate.

        Raises:
            ScriptGateError: ``script_too_short``, ``script_too_long``,
                ``script_quality_failed:duplicate_ratio_exceeded`` or
                ``script_contains_url``. The error details carry the last
                measurement.
        """
        config = self.config
        metrics = self.measure(script)
        outcome = GateOutcome(metrics=metrics, history=[metrics])

        while metrics.actual_chars < config.min_chars and outcome.expand_attempts < config.max_expand_attempts:
            outcome.expand_attempts += 1
            shortage = config.min_chars - metrics.actual_chars
            logger.info(
                "script_expand attempt=%s chars=%s shortage=%s",
                outcome.expand_attempts,
                metrics.actual_chars,
                shortage,
            )
            script = expand(outcome.expand_attempts, shortage)
            metrics = self.measure(script)
            outcome.history.append(metrics)
            outcome.metrics = metrics

        details = {
            "actualChars": metrics.actual_chars,
            "minChars": config.min_chars,
            "maxChars": config.max_chars,
            "expandAttempts": outcome.expand_attempts,
        }
        if metrics.actual_chars < config.min_chars:
            raise ScriptGateError("script_too_short", **details)
        if metrics.actual_chars > config.max_chars:
            raise ScriptGateError("script_too_long", **details)
        if metrics.duplicate_ratio > config.max_duplicate_ratio:
            raise ScriptGateError(
                "script_quality_failed",
                ["duplicate_ratio_exceeded"],
                duplicateRatio=metrics.duplicate_ratio,
                **details,
            )
        if metrics.contains_url:
            raise ScriptGateError("script_contains_url", **details)

        logger.info(
            "script_gate_passed chars=%s duplicate_ratio=%s expands=%s",
            metrics.actual_chars,
            metrics.duplicate_ratio,
            outcome.expand_attempts,
        )
        return outcome
