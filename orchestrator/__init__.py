"""Idempotency ledger, step invocation and the daily generation orchestrator."""

from .gate import GateOutcome, ScriptQualityGate
from .ledger import IdempotencyLedger, JobRunContext, StartRunResult
from .pipeline import PipelineDefinition, StepRole, StepSpec
from .retry import RetryPolicy, with_retry
from .service import DailyGenerateOrchestrator, validate_plan
from .steps import (
    StepClient,
    decode_episode_response,
    decode_expand_response,
    decode_plan_response,
    decode_publish_response,
)

__all__ = [
    "GateOutcome",
    "ScriptQualityGate",
    "IdempotencyLedger",
    "JobRunContext",
    "StartRunResult",
    "PipelineDefinition",
    "StepRole",
    "StepSpec",
    "RetryPolicy",
    "with_retry",
    "DailyGenerateOrchestrator",
    "validate_plan",
    "StepClient",
    "decode_episode_response",
    "decode_expand_response",
    "decode_plan_response",
    "decode_publish_response",
]
