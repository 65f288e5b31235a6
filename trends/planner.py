"""plan-topics action: load recent trends, filter, cluster, select and build the program topic."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from core.contracts import JobStatus, ProgramTopic, SelectedTopicSet, TrendCandidate
from orchestrator.ledger import IdempotencyLedger, JobRunContext
from storage.repositories import TrendRepository
from trends.clustering import cluster_trend_items
from trends.digest import TrendDigestConfig, TrendDigestSourceItem, screen_digest_items
from trends.fallback import fallback_topic
from trends.selection import SelectionConfig, select_trend_items_for_plan
from trends.text import compact_text
from utils.exceptions import StorageError


logger = logging.getLogger(__name__)

PLAN_JOB_NAME = "daily-generate"
PLAN_STEP_NAME = "plan-topics"
MIN_TREND_BULLETS = 3
MAX_TREND_BULLETS = 5


def summarize_bullet(value: str, max_chars: int = 80) -> str:
    text = compact_text(value)
    if len(text) <= max_chars:
        return text
    return f"{text[:max_chars].rstrip()}…"


def build_topic_from_trends(episode_date: str, items: Sequence[TrendCandidate]) -> ProgramTopic:
    if not items:
        return fallback_topic(episode_date)
    main = items[0]
    sub_titles = [summarize_bullet(item.title, 28) for item in items[1:3]]
    sub_titles = [title for title in sub_titles if title]
    if sub_titles:
        title = f"{summarize_bullet(main.title, 40)} を軸に読む: {' / '.join(sub_titles)}"
    else:
        title = f"{summarize_bullet(main.title, 48)} の背景整理"

    count = max(MIN_TREND_BULLETS, min(MAX_TREND_BULLETS, len(items)))
    bullets = []
    for index in range(count):
        item = items[min(index, len(items) - 1)]
        bullets.append(
            f"トレンド要約{index + 1}: {summarize_bullet(item.title, 45)} - {summarize_bullet(item.summary, 55)}"
        )
    bullets.append("お便りコーナー: リスナーのお便りを紹介し、番組内で回答します。")
    bullets.append("次回予告: 今日反応が大きかった論点を次回に深掘りします。")
    return ProgramTopic(title=title, bullets=bullets)


def _section_of(index: int, selection: SelectedTopicSet) -> str:
    if index < selection.target_deep_dive:
        return "deep_dive"
    if index < selection.target_deep_dive + selection.target_quick_news:
        return "quick_news"
    return "small_talk"


def serialize_trend_items(selection: SelectedTopicSet) -> List[Dict[str, Any]]:
    return [
        {
            "id": item.id,
            "title": item.title,
            "url": item.url,
            "summary": item.summary,
            "source": item.source,
            "category": item.category.value,
            "score": item.score,
            "publishedAt": item.published_at,
            "clusterSize": item.cluster_size,
            "section": _section_of(index, selection),
            "isFallback": item.is_fallback,
        }
        for index, item in enumerate(selection.items)
    ]


def serialize_selection(selection: SelectedTopicSet) -> Dict[str, Any]:
    audit = selection.audit
    return {
        "categoryDistribution": dict(audit.category_distribution),
        "domainDistribution": dict(audit.domain_distribution),
        "hardCount": audit.hard_count,
        "entertainmentCount": audit.entertainment_count,
        "fallbackCount": audit.fallback_count,
        "poolSize": audit.pool_size,
        "passCounts": dict(audit.pass_counts),
    }


def filter_candidates(
    candidates: Sequence[TrendCandidate],
    digest_config: TrendDigestConfig,
) -> List[TrendCandidate]:
    """Screen candidates through the digest filter and map survivors back with cleaned titles.

    Only cleaning, rejection and dedupe apply here; the hard-news and size
    limits belong to selection, which sees the whole candidate pool.
    """
    by_id = {candidate.id: candidate for candidate in candidates}
    screened, rejected = screen_digest_items(
        [
            TrendDigestSourceItem(
                id=candidate.id,
                title=candidate.title,
                summary=candidate.summary,
                source=candidate.source,
                url=candidate.url,
                category=candidate.category.value,
                source_category=candidate.source_category,
                score=candidate.score,
                published_at=candidate.published_at,
                cluster_size=candidate.cluster_size,
            )
            for candidate in candidates
        ],
        digest_config,
    )
    kept = []
    for item in screened:
        original = by_id.get(item.id)
        if original is None:
            continue
        kept.append(original.model_copy(update={"title": item.cleaned_title, "summary": item.what_happened}))
    logger.info("plan_digest input=%s used=%s filtered=%s", len(candidates), len(kept), rejected)
    return kept


class TopicPlanner:
    """Ledger-wrapped plan-topics step."""

    def __init__(
        self,
        trends: TrendRepository,
        ledger: IdempotencyLedger,
        selection_config: Optional[SelectionConfig] = None,
        digest_config: Optional[TrendDigestConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.trends = trends
        self.ledger = ledger
        self.selection_config = selection_config or SelectionConfig()
        self.digest_config = digest_config or TrendDigestConfig()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def plan(self, episode_date: str, idempotency_key: str) -> Dict[str, Any]:
        config = self.selection_config
        ctx = JobRunContext(PLAN_JOB_NAME, PLAN_STEP_NAME, idempotency_key)
        base = {
            "step": PLAN_STEP_NAME,
            "episodeDate": episode_date,
            "idempotencyKey": idempotency_key,
            "lookbackHours": config.lookback_hours,
        }
        started = self.ledger.start_run(ctx, base)
        if started.should_skip:
            return {**started.record.payload, "ok": True, "skipped": True}

        try:
            payload = self._build_plan(episode_date, base)
        except Exception as exc:
            self.ledger.fail_run(ctx, str(exc), base)
            raise

        self.ledger.finish_run(ctx, JobStatus.SUCCEEDED, payload)
        return {**payload, "ok": True, "skipped": False}

    def _build_plan(self, episode_date: str, base: Dict[str, Any]) -> Dict[str, Any]:
        config = self.selection_config
        since = self._clock() - timedelta(hours=config.lookback_hours)
        fallback_reason = None
        load_error = None
        candidates: List[TrendCandidate] = []
        try:
            candidates = self.trends.load_recent_representatives(since, config.candidate_pool_size)
        except StorageError as exc:
            fallback_reason = "trend_query_failed"
            load_error = exc.message
            logger.warning("plan_trend_query_failed error=%s", exc)

        if not candidates and fallback_reason is None:
            fallback_reason = "no_recent_trends"

        clustered = cluster_trend_items(
            filter_candidates(candidates, self.digest_config),
            max_clusters=config.max_clusters,
        )
        selection = select_trend_items_for_plan(clustered, config)
        used_fallback = fallback_reason is not None
        topic = fallback_topic(episode_date) if used_fallback else build_topic_from_trends(episode_date, selection.items)

        logger.info(
            "plan_topics_done date=%s selected=%s fallback=%s reason=%s",
            episode_date,
            len(selection.items),
            selection.audit.fallback_count,
            fallback_reason,
        )
        return {
            **base,
            "topic": topic.model_dump(),
            "trendItems": serialize_trend_items(selection),
            "selection": serialize_selection(selection),
            "usedTrendFallback": used_fallback,
            "trendFallbackReason": fallback_reason,
            "trendLoadError": load_error,
        }
