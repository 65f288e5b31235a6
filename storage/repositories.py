"""Narrow repository interfaces and thread-safe in-memory implementations."""

from __future__ import annotations

from datetime import datetime, timezone
from threading import Lock
from typing import Any, Dict, List, Optional, Protocol, Tuple
from uuid import uuid4

from pydantic import BaseModel, Field

from core.contracts import Episode, IdempotencyRecord, JobStatus, TrendCandidate
from utils.exceptions import StorageError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def new_record_id() -> str:
    return uuid4().hex


class TrendSource(BaseModel):
    """Upstream feed a trend row came from."""

    source_key: str
    name: str
    url: str = ""
    category: str = "general"
    weight: float = 1.0
    enabled: bool = True


class TrendRow(BaseModel):
    """Stored trend item: candidate fields plus storage bookkeeping."""

    candidate: TrendCandidate
    source_key: str = ""
    is_cluster_representative: bool = True
    created_at: datetime = Field(default_factory=_utcnow)

    def reference_time(self) -> Optional[datetime]:
        return _parse_iso(self.candidate.published_at) or self.created_at


def filter_recent(rows: List[TrendRow], since: datetime, limit: int) -> List[TrendCandidate]:
    recent = [
        row
        for row in rows
        if row.is_cluster_representative and (row.reference_time() or since) >= since
    ]
    recent.sort(key=lambda row: row.candidate.published_at or "", reverse=True)
    recent.sort(key=lambda row: -row.candidate.score)
    return [row.candidate.model_copy() for row in recent[: max(0, limit)]]


class TrendRepository(Protocol):
    def load_recent_representatives(self, since: datetime, limit: int) -> List[TrendCandidate]: ...

    def upsert_source(self, source: TrendSource) -> None: ...

    def add_item(self, item: TrendCandidate, source_key: str = "", is_representative: bool = True) -> None: ...


class EpisodeRepository(Protocol):
    def get(self, episode_id: str) -> Optional[Episode]: ...

    def insert(self, episode: Episode) -> Episode: ...

    def update(self, episode_id: str, **fields: Any) -> Episode: ...


class LedgerRepository(Protocol):
    def get(self, job_name: str, step_name: str, idempotency_key: str) -> Optional[IdempotencyRecord]: ...

    def upsert_started(
        self,
        job_name: str,
        step_name: str,
        idempotency_key: str,
        payload: Dict[str, Any],
        episode_id: Optional[str] = None,
    ) -> IdempotencyRecord: ...

    def update_terminal(
        self,
        job_name: str,
        step_name: str,
        idempotency_key: str,
        status: JobStatus,
        payload: Dict[str, Any],
        error: Optional[str] = None,
        episode_id: Optional[str] = None,
    ) -> IdempotencyRecord: ...

    def list(
        self,
        status: Optional[JobStatus] = None,
        job_name: Optional[str] = None,
        limit: int = 50,
    ) -> List[IdempotencyRecord]: ...


class InMemoryTrendRepository:
    """Trend store kept in process memory."""

    def __init__(self) -> None:
        self._sources: Dict[str, TrendSource] = {}
        self._rows: Dict[str, TrendRow] = {}
        self._lock = Lock()

    def load_recent_representatives(self, since: datetime, limit: int) -> List[TrendCandidate]:
        with self._lock:
            rows = list(self._rows.values())
        return filter_recent(rows, since, limit)

    def upsert_source(self, source: TrendSource) -> None:
        with self._lock:
            self._sources[source.source_key] = source.model_copy()

    def get_source(self, source_key: str) -> Optional[TrendSource]:
        with self._lock:
            source = self._sources.get(source_key)
            return source.model_copy() if source else None

    def add_item(self, item: TrendCandidate, source_key: str = "", is_representative: bool = True) -> None:
        with self._lock:
            self._rows[item.id] = TrendRow(
                candidate=item.model_copy(),
                source_key=source_key,
                is_cluster_representative=is_representative,
            )

    def count(self) -> int:
        with self._lock:
            return len(self._rows)


class InMemoryEpisodeRepository:
    """Episode store that counts writes, so duplicate triggers can be audited."""

    def __init__(self) -> None:
        self._episodes: Dict[str, Episode] = {}
        self._lock = Lock()
        self.write_count = 0

    def get(self, episode_id: str) -> Optional[Episode]:
        with self._lock:
            episode = self._episodes.get(episode_id)
            return episode.model_copy() if episode else None

    def insert(self, episode: Episode) -> Episode:
        with self._lock:
            if episode.id in self._episodes:
                raise StorageError("episode already exists", {"episode_id": episode.id})
            self._episodes[episode.id] = episode.model_copy()
            self.write_count += 1
            return episode.model_copy()

    def update(self, episode_id: str, **fields: Any) -> Episode:
        with self._lock:
            current = self._episodes.get(episode_id)
            if current is None:
                raise StorageError("episode not found", {"episode_id": episode_id})
            updated = current.model_copy(update=fields)
            self._episodes[episode_id] = updated
            self.write_count += 1
            return updated.model_copy()

    def list(self) -> List[Episode]:
        with self._lock:
            return [episode.model_copy() for episode in self._episodes.values()]


LedgerKey = Tuple[str, str, str]


class InMemoryLedgerRepository:
    """Job-run ledger keyed by (job_name, step_name, idempotency_key)."""

    def __init__(self) -> None:
        self._records: Dict[LedgerKey, IdempotencyRecord] = {}
        self._lock = Lock()

    def get(self, job_name: str, step_name: str, idempotency_key: str) -> Optional[IdempotencyRecord]:
        with self._lock:
            record = self._records.get((job_name, step_name, idempotency_key))
            return record.model_copy(deep=True) if record else None

    def upsert_started(
        self,
        job_name: str,
        step_name: str,
        idempotency_key: str,
        payload: Dict[str, Any],
        episode_id: Optional[str] = None,
    ) -> IdempotencyRecord:
        key = (job_name, step_name, idempotency_key)
        with self._lock:
            existing = self._records.get(key)
            record = IdempotencyRecord(
                id=existing.id if existing else new_record_id(),
                job_name=job_name,
                step_name=step_name,
                idempotency_key=idempotency_key,
                status=JobStatus.STARTED,
                payload=dict(payload),
                episode_id=episode_id,
                error=None,
                started_at=_utcnow(),
                finished_at=None,
            )
            self._records[key] = record
            return record.model_copy(deep=True)

    def update_terminal(
        self,
        job_name: str,
        step_name: str,
        idempotency_key: str,
        status: JobStatus,
        payload: Dict[str, Any],
        error: Optional[str] = None,
        episode_id: Optional[str] = None,
    ) -> IdempotencyRecord:
        key = (job_name, step_name, idempotency_key)
        with self._lock:
            existing = self._records.get(key)
            record = IdempotencyRecord(
                id=existing.id if existing else new_record_id(),
                job_name=job_name,
                step_name=step_name,
                idempotency_key=idempotency_key,
                status=status,
                payload=dict(payload),
                episode_id=episode_id or (existing.episode_id if existing else None),
                error=error,
                started_at=existing.started_at if existing else _utcnow(),
                finished_at=_utcnow(),
            )
            self._records[key] = record
            return record.model_copy(deep=True)

    def list(
        self,
        status: Optional[JobStatus] = None,
        job_name: Optional[str] = None,
        limit: int = 50,
    ) -> List[IdempotencyRecord]:
        with self._lock:
            records = list(self._records.values())
        if status is not None:
            records = [record for record in records if record.status == status]
        if job_name:
            records = [record for record in records if record.job_name == job_name]
        records.sort(key=lambda record: record.started_at, reverse=True)
        return [record.model_copy(deep=True) for record in records[: max(0, limit)]]
