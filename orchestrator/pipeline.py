"""Data-driven step list for the daily generation pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from config.settings import StepSettings


class StepRole(str, Enum):
    PLAN = "plan"
    WRITE = "write"
    EXPAND = "expand"
    POLISH = "polish"
    TTS = "tts"
    TRANSLATE = "translate"
    PUBLISH = "publish"


@dataclass(frozen=True)
class StepSpec:
    """One named HTTP step action."""

    name: str
    role: StepRole
    lang: Optional[str] = None
    optional: bool = False


PLAN_TOPICS = StepSpec("plan-topics", StepRole.PLAN)
WRITE_SCRIPT_JA = StepSpec("write-script-ja", StepRole.WRITE, "ja")
EXPAND_SCRIPT_JA = StepSpec("expand-script-ja", StepRole.EXPAND, "ja")
POLISH_SCRIPT_JA = StepSpec("polish-script-ja", StepRole.POLISH, "ja", optional=True)
TTS_JA = StepSpec("tts-ja", StepRole.TTS, "ja", optional=True)
ADAPT_SCRIPT_EN = StepSpec("adapt-script-en", StepRole.TRANSLATE, "en")
POLISH_SCRIPT_EN = StepSpec("polish-script-en", StepRole.POLISH, "en", optional=True)
TTS_EN = StepSpec("tts-en", StepRole.TTS, "en", optional=True)
PUBLISH = StepSpec("publish", StepRole.PUBLISH)

DEFAULT_STEPS: Tuple[StepSpec, ...] = (
    PLAN_TOPICS,
    WRITE_SCRIPT_JA,
    POLISH_SCRIPT_JA,
    TTS_JA,
    ADAPT_SCRIPT_EN,
    POLISH_SCRIPT_EN,
    TTS_EN,
    PUBLISH,
)


@dataclass(frozen=True)
class PipelineDefinition:
    """
    Ordered step list plus feature flags.

    The expand step is not part of the linear list: the quality gate invokes
    it between ``write-script-ja`` and the next step, zero to
    ``max_expand_attempts`` times.
    """

    steps_all: Tuple[StepSpec, ...] = DEFAULT_STEPS
    expand_step: StepSpec = EXPAND_SCRIPT_JA
    polish_enabled: bool = False
    skip_tts: bool = False

    @classmethod
    def from_settings(cls, settings: StepSettings, skip_tts: Optional[bool] = None) -> "PipelineDefinition":
        return cls(
            polish_enabled=bool(settings.polish_enabled),
            skip_tts=bool(settings.skip_tts if skip_tts is None else skip_tts),
        )

    def with_skip_tts(self, skip_tts: Optional[bool]) -> "PipelineDefinition":
        if skip_tts is None or bool(skip_tts) == self.skip_tts:
            return self
        return PipelineDefinition(self.steps_all, self.expand_step, self.polish_enabled, bool(skip_tts))

    def is_enabled(self, spec: StepSpec) -> bool:
        if spec.role is StepRole.POLISH:
            return self.polish_enabled
        if spec.role is StepRole.TTS:
            return not self.skip_tts
        return True

    def steps(self) -> Tuple[StepSpec, ...]:
        return tuple(spec for spec in self.steps_all if self.is_enabled(spec))

    def step_names(self) -> Tuple[str, ...]:
        return tuple(spec.name for spec in self.steps())

    def ordered_step_names(self, expand_attempts: int = 0) -> Tuple[str, ...]:
        """Step names as executed, with the expand step repeated after the write step."""
        names = []
        for spec in self.steps():
            names.append(spec.name)
            if spec.role is StepRole.WRITE and spec.lang == "ja":
                names.extend([self.expand_step.name] * max(0, expand_attempts))
        return tuple(names)
