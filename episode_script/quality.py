"""Script measurements: length, near-duplicate ratio, URL leaks and duration estimate."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from config.settings import ScriptGateSettings
from core.contracts import ScriptMetrics
from episode_script.normalize import (
    DEFAULT_LOOKBACK_LINES,
    DEFAULT_MIN_COMPARABLE_LENGTH,
    SOURCES_SECTION_RE,
    normalize_line_for_similarity,
    normalize_script_text,
)


_URL_LEAK_RE = re.compile(r"https?://|\bwww\.", flags=re.IGNORECASE)


@dataclass(frozen=True)
class ScriptGateConfig:
    """Length bounds; target and max are pushed up so min <= target <= max always holds."""

    min_chars: int = 2500
    target_chars: int = 3200
    max_chars: int = 5200
    chars_per_min: int = 300
    max_duplicate_ratio: float = 0.05
    max_expand_attempts: int = 2

    def __post_init__(self) -> None:
        min_chars = max(1, int(self.min_chars))
        target = max(min_chars, int(self.target_chars))
        object.__setattr__(self, "min_chars", min_chars)
        object.__setattr__(self, "target_chars", target)
        object.__setattr__(self, "max_chars", max(target, int(self.max_chars)))
        object.__setattr__(self, "chars_per_min", max(1, int(self.chars_per_min)))
        object.__setattr__(self, "max_expand_attempts", max(0, int(self.max_expand_attempts)))

    @classmethod
    def from_settings(cls, settings: ScriptGateSettings) -> "ScriptGateConfig":
        return cls(
            min_chars=settings.min_chars,
            target_chars=settings.target_chars,
            max_chars=settings.max_chars,
            chars_per_min=settings.chars_per_min,
            max_duplicate_ratio=settings.max_duplicate_ratio,
            max_expand_attempts=settings.max_expand_attempts,
        )

    def estimate_duration_sec(self, chars: int) -> int:
        return estimate_duration_sec(chars, self.chars_per_min)

    def as_payload(self) -> dict:
        return {
            "minChars": self.min_chars,
            "targetChars": self.target_chars,
            "maxChars": self.max_chars,
            "charsPerMin": self.chars_per_min,
            "maxDuplicateRatio": self.max_duplicate_ratio,
            "targetSec": self.estimate_duration_sec(self.target_chars),
        }


def estimate_duration_sec(chars: int, chars_per_min: int) -> int:
    return max(60, round(chars / float(max(1, chars_per_min)) * 60))


def strip_sources_sections(script: str) -> str:
    return SOURCES_SECTION_RE.sub(" ", script)


def contains_url(script: str) -> bool:
    """URL leak check on the spoken body; SOURCES sections may carry links."""
    return bool(_URL_LEAK_RE.search(strip_sources_sections(script)))


def duplicate_stats(
    script: str,
    min_comparable_length: int = DEFAULT_MIN_COMPARABLE_LENGTH,
    lookback_lines: int = DEFAULT_LOOKBACK_LINES,
):
    """Return ``(duplicate_ratio, duplicate_line_count, line_count)``."""
    lines = [line.strip() for line in script.replace("\r\n", "\n").split("\n") if line.strip()]
    if not lines:
        return 0.0, 0, 0

    previous = []
    duplicates = 0
    for line in lines:
        normalized = normalize_line_for_similarity(line)
        if len(normalized) < min_comparable_length:
            continue
        if normalized in previous[-lookback_lines:]:
            duplicates += 1
        previous.append(normalized)
    return duplicates / float(len(lines)), duplicates, len(lines)


def measure_script(script: Optional[str], config: Optional[ScriptGateConfig] = None) -> ScriptMetrics:
    config = config or ScriptGateConfig()
    text = str(script or "").strip()
    ratio, duplicate_count, line_count = duplicate_stats(text)
    _, normalization = normalize_script_text(text, preserve_source_urls=True)
    return ScriptMetrics(
        actual_chars=len(text),
        duplicate_ratio=round(ratio, 6),
        duplicate_line_count=duplicate_count,
        line_count=line_count,
        contains_url=contains_url(text),
        estimated_duration_sec=config.estimate_duration_sec(len(text)),
        normalization=normalization.model_dump(),
    )
