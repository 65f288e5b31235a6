"""Idempotency ledger: at-most-one successful execution per (job, step, key)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from core.contracts import IdempotencyRecord, JobStatus
from storage.repositories import LedgerRepository
from utils.exceptions import LedgerError, StorageError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobRunContext:
    job_name: str
    step_name: str
    idempotency_key: str


@dataclass(frozen=True)
class StartRunResult:
    should_skip: bool
    status: JobStatus
    record: IdempotencyRecord


class IdempotencyLedger:
    """Thin policy layer over a ``LedgerRepository``."""

    def __init__(self, repository: LedgerRepository) -> None:
        self._repository = repository

    def _call(self, action: str, ctx: Optional[JobRunContext], fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except LedgerError:
            raise
        except StorageError as exc:
            details = dict(exc.details)
            if ctx is not None:
                details.update(job=ctx.job_name, step=ctx.step_name, key=ctx.idempotency_key)
            raise LedgerError(f"ledger_{action}_failed", details) from exc

    def get(self, ctx: JobRunContext) -> Optional[IdempotencyRecord]:
        return self._call("read", ctx, self._repository.get, ctx.job_name, ctx.step_name, ctx.idempotency_key)

    def start_run(
        self,
        ctx: JobRunContext,
        payload: Optional[Dict[str, Any]] = None,
        episode_id: Optional[str] = None,
    ) -> StartRunResult:
        existing = self.get(ctx)
        if existing is not None and existing.status.blocks_rerun:
            logger.info(
                "ledger_skip job=%s step=%s key=%s status=%s",
                ctx.job_name,
                ctx.step_name,
                ctx.idempotency_key,
                existing.status.value,
            )
            return StartRunResult(should_skip=True, status=existing.status, record=existing)

        record = self._call(
            "start",
            ctx,
            self._repository.upsert_started,
            ctx.job_name,
            ctx.step_name,
            ctx.idempotency_key,
            dict(payload or {}),
            episode_id,
        )
        logger.info(
            "ledger_start job=%s step=%s key=%s previous=%s",
            ctx.job_name,
            ctx.step_name,
            ctx.idempotency_key,
            existing.status.value if existing else "none",
        )
        return StartRunResult(should_skip=False, status=JobStatus.STARTED, record=record)

    def finish_run(
        self,
        ctx: JobRunContext,
        status: JobStatus = JobStatus.SUCCEEDED,
        payload: Optional[Dict[str, Any]] = None,
        episode_id: Optional[str] = None,
    ) -> IdempotencyRecord:
        status = JobStatus(status)
        if status not in {JobStatus.SUCCEEDED, JobStatus.SKIPPED}:
            raise ValueError(f"finish_run status must be succeeded or skipped, got {status.value}")
        record = self._call(
            "finish",
            ctx,
            self._repository.update_terminal,
            ctx.job_name,
            ctx.step_name,
            ctx.idempotency_key,
            status,
            dict(payload or {}),
            None,
            episode_id,
        )
        logger.info("ledger_finish job=%s step=%s key=%s status=%s", ctx.job_name, ctx.step_name, ctx.idempotency_key, status.value)
        return record

    def fail_run(
        self,
        ctx: JobRunContext,
        error_message: str,
        payload: Optional[Dict[str, Any]] = None,
        episode_id: Optional[str] = None,
        status: JobStatus = JobStatus.FAILED,
    ) -> IdempotencyRecord:
        status = JobStatus(status)
        if status is not JobStatus.FAILED:
            raise ValueError(f"fail_run status must be failed, got {status.value}")
        record = self._call(
            "fail",
            ctx,
            self._repository.update_terminal,
            ctx.job_name,
            ctx.step_name,
            ctx.idempotency_key,
            status,
            dict(payload or {}),
            str(error_message or "unknown_error"),
            episode_id,
        )
        logger.warning(
            "ledger_fail job=%s step=%s key=%s error=%s",
            ctx.job_name,
            ctx.step_name,
            ctx.idempotency_key,
            error_message,
        )
        return record

    def list_runs(
        self,
        status: Optional[JobStatus] = None,
        job_name: Optional[str] = None,
        limit: int = 50,
    ) -> List[IdempotencyRecord]:
        bounded = max(1, min(500, int(limit)))
        return self._call("list", None, self._repository.list, status, job_name, bounded)
