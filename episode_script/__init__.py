"""Script sections, normalization, quality measurement and expansion."""

from .quality import ScriptGateConfig, contains_url, duplicate_stats, estimate_duration_sec, measure_script
from .sections import ScriptSection, parse_script_sections, render_script_sections, sections_chars_breakdown

__all__ = [
    "ScriptGateConfig",
    "ScriptSection",
    "contains_url",
    "duplicate_stats",
    "estimate_duration_sec",
    "measure_script",
    "parse_script_sections",
    "render_script_sections",
    "sections_chars_breakdown",
]
