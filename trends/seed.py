"""Load trend sources and items into a ``TrendRepository`` with computed scores."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from core.contracts import TrendCandidate
from storage.repositories import TrendRepository, TrendSource
from trends.categories import resolve_source_reliability_bonus
from trends.scoring import (
    DEFAULT_CLICKBAIT_KEYWORDS,
    TrendScoreInput,
    calculate_trend_score,
    contains_keyword,
)
from trends.text import clean_text, dedupe_hash


logger = logging.getLogger(__name__)


def score_candidate(item: TrendCandidate, source: Optional[TrendSource], now: Optional[datetime] = None) -> float:
    params = TrendScoreInput(
        published_at=item.published_at,
        source_weight=source.weight if source else 1.0,
        source_category=source.category if source else item.category.value,
        cluster_size=item.cluster_size,
        source_reliability_bonus=resolve_source_reliability_bonus(
            source.source_key if source else item.source,
            source.name if source else None,
        ),
        has_clickbait_keyword=contains_keyword(item.title, DEFAULT_CLICKBAIT_KEYWORDS),
    )
    return calculate_trend_score(params, now).score


def seed_trends(
    repository: TrendRepository,
    document: Mapping[str, Any],
    now: Optional[datetime] = None,
) -> Dict[str, int]:
    """
    Seed ``{"sources": [...], "items": [...]}``.

    Items without an explicit ``score`` are scored from their source weight,
    category, freshness and cluster size. Items with an empty cleaned title
    are skipped.
    """
    sources: Dict[str, TrendSource] = {}
    for raw in document.get("sources") or []:
        source = TrendSource.model_validate(raw)
        repository.upsert_source(source)
        sources[source.source_key] = source

    added = 0
    skipped = 0
    for raw in document.get("items") or []:
        data = dict(raw)
        source_key = str(data.pop("source_key", data.pop("sourceKey", "")) or "").strip()
        source = sources.get(source_key)
        title = clean_text(str(data.get("title") or ""))
        if not title:
            skipped += 1
            continue

        url = str(data.get("url") or "").strip()
        candidate = TrendCandidate(
            id=str(data.get("id") or dedupe_hash(title, url)[:16]),
            title=title,
            url=url,
            summary=clean_text(str(data.get("summary") or "")),
            source=str(data.get("source") or (source.name if source else source_key)),
            category=data.get("category") or (source.category if source else "general"),
            score=float(data.get("score") or 0.0),
            published_at=data.get("published_at") or data.get("publishedAt"),
            cluster_size=int(data.get("cluster_size") or data.get("clusterSize") or 1),
        )
        if data.get("score") is None:
            candidate = candidate.model_copy(update={"score": score_candidate(candidate, source, now)})
        repository.add_item(
            candidate,
            source_key=source_key,
            is_representative=bool(data.get("is_cluster_representative", True)),
        )
        added += 1

    logger.info("seed_trends sources=%s added=%s skipped=%s", len(sources), added, skipped)
    return {"sources": len(sources), "added": added, "skipped": skipped}
