"""SQLite-backed trend, episode and ledger repositories."""

from __future__ import annotations

import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional

from core.contracts import Episode, IdempotencyRecord, JobStatus, TrendCandidate
from storage.repositories import TrendRow, TrendSource, filter_recent, new_record_id
from utils.exceptions import LedgerError, StorageError


logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _ensure_parent_dir(path: str) -> None:
    parent = os.path.dirname(os.path.abspath(path))
    if parent:
        os.makedirs(parent, exist_ok=True)


_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS trend_sources (
      source_key TEXT PRIMARY KEY,
      name TEXT NOT NULL,
      url TEXT NOT NULL DEFAULT '',
      category TEXT NOT NULL DEFAULT 'general',
      weight REAL NOT NULL DEFAULT 1.0,
      enabled INTEGER NOT NULL DEFAULT 1
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS trend_items (
      id TEXT PRIMARY KEY,
      source_key TEXT NOT NULL DEFAULT '',
      candidate_json TEXT NOT NULL,
      score REAL NOT NULL,
      published_at TEXT,
      is_cluster_representative INTEGER NOT NULL DEFAULT 1,
      created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_trend_items_score ON trend_items(score)",
    """
    CREATE TABLE IF NOT EXISTS episodes (
      id TEXT PRIMARY KEY,
      episode_json TEXT NOT NULL,
      updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS job_runs (
      id TEXT NOT NULL,
      job_name TEXT NOT NULL,
      step_name TEXT NOT NULL,
      idempotency_key TEXT NOT NULL,
      status TEXT NOT NULL,
      payload_json TEXT NOT NULL,
      episode_id TEXT,
      error TEXT,
      started_at TEXT NOT NULL,
      finished_at TEXT,
      UNIQUE(job_name, step_name, idempotency_key)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_job_runs_status ON job_runs(status)",
    "CREATE INDEX IF NOT EXISTS idx_job_runs_started_at ON job_runs(started_at)",
)


class _SQLiteBase:
    error_cls = StorageError

    def __init__(self, *, db_path: str) -> None:
        self._db_path = db_path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            with sqlite3.connect(self._db_path) as conn:
                conn.row_factory = sqlite3.Row
                yield conn
        except sqlite3.Error as exc:
            logger.error("sqlite_error db=%s error=%s", self._db_path, exc)
            raise self.error_cls("sqlite operation failed", {"db_path": self._db_path, "error": str(exc)}) from exc

    def ensure_schema(self) -> None:
        _ensure_parent_dir(self._db_path)
        with self._connect() as conn:
            for statement in _SCHEMA:
                conn.execute(statement)


class SQLiteTrendRepository(_SQLiteBase):
    def upsert_source(self, source: TrendSource) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO trend_sources (source_key, name, url, category, weight, enabled)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(source_key) DO UPDATE SET
                  name = excluded.name,
                  url = excluded.url,
                  category = excluded.category,
                  weight = excluded.weight,
                  enabled = excluded.enabled
                """,
                (source.source_key, source.name, source.url, source.category, source.weight, int(source.enabled)),
            )

    def get_source(self, source_key: str) -> Optional[TrendSource]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM trend_sources WHERE source_key = ?", (source_key,)).fetchone()
        if row is None:
            return None
        return TrendSource(
            source_key=row["source_key"],
            name=row["name"],
            url=row["url"],
            category=row["category"],
            weight=row["weight"],
            enabled=bool(row["enabled"]),
        )

    def add_item(self, item: TrendCandidate, source_key: str = "", is_representative: bool = True) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO trend_items (id, source_key, candidate_json, score, published_at,
                                         is_cluster_representative, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                  source_key = excluded.source_key,
                  candidate_json = excluded.candidate_json,
                  score = excluded.score,
                  published_at = excluded.published_at,
                  is_cluster_representative = excluded.is_cluster_representative
                """,
                (
                    item.id,
                    source_key,
                    item.model_dump_json(),
                    item.score,
                    item.published_at,
                    int(is_representative),
                    _now_iso(),
                ),
            )

    def load_recent_representatives(self, since: datetime, limit: int) -> List[TrendCandidate]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM trend_items
                WHERE is_cluster_representative = 1
                ORDER BY score DESC, published_at DESC
                """
            ).fetchall()
        stored = [
            TrendRow(
                candidate=TrendCandidate.model_validate_json(row["candidate_json"]),
                source_key=row["source_key"],
                is_cluster_representative=bool(row["is_cluster_representative"]),
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in rows
        ]
        return filter_recent(stored, since, limit)


class SQLiteEpisodeRepository(_SQLiteBase):
    def __init__(self, *, db_path: str) -> None:
        super().__init__(db_path=db_path)
        self.write_count = 0

    def get(self, episode_id: str) -> Optional[Episode]:
        with self._connect() as conn:
            row = conn.execute("SELECT episode_json FROM episodes WHERE id = ?", (episode_id,)).fetchone()
        return Episode.model_validate_json(row["episode_json"]) if row else None

    def insert(self, episode: Episode) -> Episode:
        try:
            with self._connect() as conn:
                conn.execute(
                    "INSERT INTO episodes (id, episode_json, updated_at) VALUES (?, ?, ?)",
                    (episode.id, episode.model_dump_json(), _now_iso()),
                )
        except StorageError as exc:
            raise StorageError("episode insert failed", {"episode_id": episode.id, **exc.details}) from exc
        self.write_count += 1
        return episode

    def update(self, episode_id: str, **fields: Any) -> Episode:
        current = self.get(episode_id)
        if current is None:
            raise StorageError("episode not found", {"episode_id": episode_id})
        updated = current.model_copy(update=fields)
        with self._connect() as conn:
            conn.execute(
                "UPDATE episodes SET episode_json = ?, updated_at = ? WHERE id = ?",
                (updated.model_dump_json(), _now_iso(), episode_id),
            )
        self.write_count += 1
        return updated


def _record_from_row(row: sqlite3.Row) -> IdempotencyRecord:
    return IdempotencyRecord(
        id=row["id"],
        job_name=row["job_name"],
        step_name=row["step_name"],
        idempotency_key=row["idempotency_key"],
        status=JobStatus(row["status"]),
        payload=json.loads(row["payload_json"] or "{}"),
        episode_id=row["episode_id"],
        error=row["error"],
        started_at=datetime.fromisoformat(row["started_at"]),
        finished_at=datetime.fromisoformat(row["finished_at"]) if row["finished_at"] else None,
    )


class SQLiteLedgerRepository(_SQLiteBase):
    """Ledger rows unique on (job_name, step_name, idempotency_key); writes are upserts."""

    error_cls = LedgerError

    def get(self, job_name: str, step_name: str, idempotency_key: str) -> Optional[IdempotencyRecord]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM job_runs WHERE job_name = ? AND step_name = ? AND idempotency_key = ?",
                (job_name, step_name, idempotency_key),
            ).fetchone()
        return _record_from_row(row) if row else None

    def upsert_started(
        self,
        job_name: str,
        step_name: str,
        idempotency_key: str,
        payload: Dict[str, Any],
        episode_id: Optional[str] = None,
    ) -> IdempotencyRecord:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO job_runs (id, job_name, step_name, idempotency_key, status, payload_json,
                                      episode_id, error, started_at, finished_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, NULL, ?, NULL)
                ON CONFLICT(job_name, step_name, idempotency_key) DO UPDATE SET
                  status = excluded.status,
                  payload_json = excluded.payload_json,
                  episode_id = excluded.episode_id,
                  error = NULL,
                  started_at = excluded.started_at,
                  finished_at = NULL
                """,
                (
                    new_record_id(),
                    job_name,
                    step_name,
                    idempotency_key,
                    JobStatus.STARTED.value,
                    json.dumps(payload, ensure_ascii=False, default=str),
                    episode_id,
                    _now_iso(),
                ),
            )
        record = self.get(job_name, step_name, idempotency_key)
        if record is None:
            raise LedgerError("ledger row missing after upsert", {"idempotency_key": idempotency_key})
        return record

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
        now = _now_iso()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO job_runs (id, job_name, step_name, idempotency_key, status, payload_json,
                                      episode_id, error, started_at, finished_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(job_name, step_name, idempotency_key) DO UPDATE SET
                  status = excluded.status,
                  payload_json = excluded.payload_json,
                  episode_id = COALESCE(excluded.episode_id, job_runs.episode_id),
                  error = excluded.error,
                  finished_at = excluded.finished_at
                """,
                (
                    new_record_id(),
                    job_name,
                    step_name,
                    idempotency_key,
                    status.value,
                    json.dumps(payload, ensure_ascii=False, default=str),
                    episode_id,
                    error,
                    now,
                    now,
                ),
            )
        record = self.get(job_name, step_name, idempotency_key)
        if record is None:
            raise LedgerError("ledger row missing after update", {"idempotency_key": idempotency_key})
        return record

    def list(
        self,
        status: Optional[JobStatus] = None,
        job_name: Optional[str] = None,
        limit: int = 50,
    ) -> List[IdempotencyRecord]:
        clauses = []
        params: List[Any] = []
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        if job_name:
            clauses.append("job_name = ?")
            params.append(job_name)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(max(0, int(limit)))
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM job_runs {where} ORDER BY started_at DESC LIMIT ?",
                params,
            ).fetchall()
        return [_record_from_row(row) for row in rows]


def open_sqlite_repositories(db_path: str):
    """Create the three repositories over one database file, schema ensured."""
    trends = SQLiteTrendRepository(db_path=db_path)
    episodes = SQLiteEpisodeRepository(db_path=db_path)
    ledger = SQLiteLedgerRepository(db_path=db_path)
    trends.ensure_schema()
    return trends, episodes, ledger
