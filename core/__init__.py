"""Core contracts and shared types."""

from .contracts import (
    JST,
    CanonicalCategory,
    DailyGenerateRequest,
    Episode,
    IdempotencyRecord,
    JobStatus,
    PipelineRun,
    ProgramTopic,
    ScriptMetrics,
    SelectedTopicSet,
    SelectionAudit,
    StepResult,
    TrendCandidate,
    today_in_jst,
)

__all__ = [
    "JST",
    "CanonicalCategory",
    "DailyGenerateRequest",
    "Episode",
    "IdempotencyRecord",
    "JobStatus",
    "PipelineRun",
    "ProgramTopic",
    "ScriptMetrics",
    "SelectedTopicSet",
    "SelectionAudit",
    "StepResult",
    "TrendCandidate",
    "today_in_jst",
]
