"""Shared runtime singletons for web/CLI entrypoints."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from threading import Lock
from typing import Callable, Optional

import httpx

from config.settings import Settings, get_settings
from episode_script.expand import ScriptExpander
from episode_script.quality import ScriptGateConfig
from orchestrator.ledger import IdempotencyLedger
from orchestrator.pipeline import PipelineDefinition
from orchestrator.retry import RetryPolicy
from orchestrator.service import DailyGenerateOrchestrator
from orchestrator.steps import StepClient
from storage import (
    EpisodeRepository,
    InMemoryEpisodeRepository,
    InMemoryLedgerRepository,
    InMemoryTrendRepository,
    TrendRepository,
    open_sqlite_repositories,
)
from trends.digest import TrendDigestConfig
from trends.planner import TopicPlanner
from trends.selection import SelectionConfig


@dataclass
class EngineRuntime:
    settings: Settings
    trends: TrendRepository
    episodes: EpisodeRepository
    ledger: IdempotencyLedger
    planner: TopicPlanner
    expander: ScriptExpander
    orchestrator: DailyGenerateOrchestrator


def build_runtime(
    settings: Optional[Settings] = None,
    *,
    transport: Optional[httpx.BaseTransport] = None,
    retry_policy: Optional[RetryPolicy] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> EngineRuntime:
    """Resolve per-run config structs from settings and wire repositories."""
    settings = settings or get_settings()
    if settings.storage.backend == "sqlite":
        trends, episodes, ledger_repo = open_sqlite_repositories(settings.storage.sqlite_path)
    else:
        trends, episodes, ledger_repo = (
            InMemoryTrendRepository(),
            InMemoryEpisodeRepository(),
            InMemoryLedgerRepository(),
        )

    selection_config = SelectionConfig.from_settings(settings.selection)
    gate_config = ScriptGateConfig.from_settings(settings.script)
    ledger = IdempotencyLedger(ledger_repo)
    step_client = StepClient.from_settings(settings.steps, policy=retry_policy, transport=transport)

    return EngineRuntime(
        settings=settings,
        trends=trends,
        episodes=episodes,
        ledger=ledger,
        planner=TopicPlanner(
            trends,
            ledger,
            selection_config=selection_config,
            digest_config=TrendDigestConfig.from_settings(settings.digest),
            clock=clock,
        ),
        expander=ScriptExpander(episodes, ledger, gate_config),
        orchestrator=DailyGenerateOrchestrator(
            ledger=ledger,
            episodes=episodes,
            step_client=step_client,
            pipeline=PipelineDefinition.from_settings(settings.steps),
            gate_config=gate_config,
            selection_config=selection_config,
            clock=clock,
        ),
    )


_RUNTIME: Optional[EngineRuntime] = None
_LOCK = Lock()


def get_runtime() -> EngineRuntime:
    global _RUNTIME
    with _LOCK:
        if _RUNTIME is None:
            _RUNTIME = build_runtime()
        return _RUNTIME


def get_orchestrator() -> DailyGenerateOrchestrator:
    return get_runtime().orchestrator


def reset_runtime() -> None:
    global _RUNTIME
    with _LOCK:
        _RUNTIME = None
