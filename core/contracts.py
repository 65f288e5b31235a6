"""Canonical data contracts shared by selection, ledger and orchestration."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


JST = timezone(timedelta(hours=9))


class CanonicalCategory(str, Enum):
    """Closed set of topic classifications every raw source category maps onto."""

    ENTERTAINMENT = "entertainment"
    GAME = "game"
    MOVIE = "movie"
    ANIME = "anime"
    CULTURE = "culture"
    BUSINESS = "business"
    TECH = "tech"
    POLICY = "policy"
    GENERAL = "general"


class JobStatus(str, Enum):
    """Ledger record status."""

    STARTED = "started"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self is not JobStatus.STARTED

    @property
    def blocks_rerun(self) -> bool:
        return self in {JobStatus.SUCCEEDED, JobStatus.SKIPPED}


def _iso_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat(timespec="seconds")
    text = str(value).strip()
    return text or None


class TrendCandidate(BaseModel):
    """Scored trend item produced by upstream ingestion."""

    id: str
    title: str
    url: str = ""
    summary: str = ""
    source: str = ""
    category: CanonicalCategory = CanonicalCategory.GENERAL
    source_category: str = ""
    score: float = 0.0
    published_at: Optional[str] = None
    cluster_size: int = 1
    is_fallback: bool = False

    @model_validator(mode="before")
    @classmethod
    def _keep_source_category(cls, data: Any) -> Any:
        # the raw feed category is lost once ``category`` is canonicalized
        if isinstance(data, dict) and not data.get("source_category") and isinstance(data.get("category"), str):
            data = {**data, "source_category": data["category"]}
        return data

    @field_validator("source_category", mode="before")
    @classmethod
    def _normalize_source_category(cls, value: Any) -> str:
        if isinstance(value, Enum):
            value = value.value
        return str(value or "").strip().lower()

    @field_validator("category", mode="before")
    @classmethod
    def _normalize_category(cls, value: Any) -> CanonicalCategory:
        from trends.categories import normalize_trend_category

        return normalize_trend_category(value)

    @field_validator("published_at", mode="before")
    @classmethod
    def _normalize_published_at(cls, value: Any) -> Optional[str]:
        return _iso_or_none(value)

    @field_validator("cluster_size", mode="before")
    @classmethod
    def _positive_cluster_size(cls, value: Any) -> int:
        try:
            return max(1, int(value or 1))
        except (TypeError, ValueError):
            return 1


class SelectionAudit(BaseModel):
    """Distribution counts recorded for every planned topic set."""

    category_distribution: Dict[str, int] = Field(default_factory=dict)
    domain_distribution: Dict[str, int] = Field(default_factory=dict)
    hard_count: int = 0
    entertainment_count: int = 0
    fallback_count: int = 0
    pool_size: int = 0
    pass_counts: Dict[str, int] = Field(default_factory=dict)


class SelectedTopicSet(BaseModel):
    """Ordered final topics plus their audit record."""

    model_config = ConfigDict(frozen=True)

    items: List[TrendCandidate] = Field(default_factory=list)
    audit: SelectionAudit = Field(default_factory=SelectionAudit)
    target_deep_dive: int = 0
    target_quick_news: int = 0

    @property
    def deep_dive(self) -> List[TrendCandidate]:
        return list(self.items[: self.target_deep_dive])

    @property
    def quick_news(self) -> List[TrendCandidate]:
        start = self.target_deep_dive
        return list(self.items[start : start + self.target_quick_news])

    @property
    def small_talk(self) -> List[TrendCandidate]:
        return list(self.items[self.target_deep_dive + self.target_quick_news :])


class ProgramTopic(BaseModel):
    """Episode topic handed to script writing."""

    title: str
    bullets: List[str] = Field(default_factory=list)


class IdempotencyRecord(BaseModel):
    """One row of the job-run ledger, unique on (job_name, step_name, idempotency_key)."""

    id: str
    job_name: str
    step_name: str
    idempotency_key: str
    status: JobStatus
    payload: Dict[str, Any] = Field(default_factory=dict)
    episode_id: Optional[str] = None
    error: Optional[str] = None
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None


class Episode(BaseModel):
    """Episode row as seen through the episode repository."""

    id: str
    master_id: Optional[str] = None
    lang: Literal["ja", "en"] = "ja"
    status: Literal["queued", "draft", "generating", "ready", "failed"] = "queued"
    title: Optional[str] = None
    script: Optional[str] = None
    audio_url: Optional[str] = None
    published_at: Optional[datetime] = None
    episode_date: Optional[str] = None


class StepResult(BaseModel):
    """Outcome of one orchestrated step call."""

    step: str
    ok: bool = True
    skipped: bool = False
    attempts: int = 1
    output: Dict[str, Any] = Field(default_factory=dict)


class ScriptMetrics(BaseModel):
    """Measurements taken on a generated script."""

    actual_chars: int = 0
    duplicate_ratio: float = 0.0
    duplicate_line_count: int = 0
    line_count: int = 0
    contains_url: bool = False
    estimated_duration_sec: int = 0
    normalization: Dict[str, int] = Field(default_factory=dict)


class PipelineRun(BaseModel):
    """Per-invocation aggregate; persisted into the top-level ledger record."""

    run_id: str
    episode_date: str
    idempotency_key: str
    steps: List[StepResult] = Field(default_factory=list)
    script_metrics: List[ScriptMetrics] = Field(default_factory=list)
    expand_attempts: int = 0
    outcome: Literal["running", "succeeded", "failed", "skipped"] = "running"
    error: Optional[str] = None

    def record(self, result: StepResult) -> StepResult:
        self.steps.append(result)
        return result

    def outputs(self) -> Dict[str, Dict[str, Any]]:
        merged: Dict[str, Dict[str, Any]] = {}
        for result in self.steps:
            merged[result.step] = dict(result.output)
        return merged

    @property
    def latest_metrics(self) -> Optional[ScriptMetrics]:
        return self.script_metrics[-1] if self.script_metrics else None


def today_in_jst(now: Optional[datetime] = None) -> str:
    current = now or datetime.now(timezone.utc)
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    return current.astimezone(JST).date().isoformat()


class DailyGenerateRequest(BaseModel):
    """Top-level trigger body: ``{episodeDate?, idempotencyKey?, skipTts?}``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    episode_date: Optional[str] = Field(default=None, alias="episodeDate")
    idempotency_key: Optional[str] = Field(default=None, alias="idempotencyKey")
    skip_tts: Optional[bool] = Field(default=None, alias="skipTts")

    @field_validator("episode_date", mode="before")
    @classmethod
    def _valid_episode_date(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        if not isinstance(value, str):
            raise ValueError("episodeDate must be a string in YYYY-MM-DD format")
        text = value.strip()
        try:
            parsed = date.fromisoformat(text)
        except ValueError as exc:
            raise ValueError("episodeDate must be a valid date in YYYY-MM-DD format") from exc
        if parsed.isoformat() != text:
            raise ValueError("episodeDate must be a valid date in YYYY-MM-DD format")
        return text

    @field_validator("idempotency_key", mode="before")
    @classmethod
    def _optional_key(cls, value: Any) -> Optional[str]:
        text = str(value or "").strip()
        return text or None

    def resolve_episode_date(self, now: Optional[datetime] = None) -> str:
        return self.episode_date or today_in_jst(now)

    def resolve_idempotency_key(self, episode_date: str) -> str:
        return self.idempotency_key or f"daily-{episode_date}"
