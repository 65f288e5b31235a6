"""Host grouping and title-similarity clustering of trend candidates."""

from __future__ import annotations

import logging
from typing import Dict, FrozenSet, List, Sequence

from core.contracts import TrendCandidate
from trends.text import jaccard, normalize_hostname, tokenize_title


logger = logging.getLogger(__name__)

DEFAULT_SIMILARITY_THRESHOLD = 0.6
DEFAULT_MAX_CLUSTERS = 60


def _better(left: TrendCandidate, right: TrendCandidate) -> bool:
    """True when ``left`` should represent a group over ``right``."""
    if left.score != right.score:
        return left.score > right.score
    return (left.published_at or "") > (right.published_at or "")


def _rank(items: Sequence[TrendCandidate]) -> List[TrendCandidate]:
    by_recency = sorted(items, key=lambda item: item.published_at or "", reverse=True)
    return sorted(by_recency, key=lambda item: -item.score)


def group_by_host(items: Sequence[TrendCandidate]) -> List[TrendCandidate]:
    """Keep the best item per normalized hostname, preserving first-seen host order."""
    best: Dict[str, TrendCandidate] = {}
    for item in items:
        host = normalize_hostname(item.url, item.source)
        current = best.get(host)
        if current is None or _better(item, current):
            best[host] = item
    return list(best.values())


def cluster_trend_items(
    items: Sequence[TrendCandidate],
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    max_clusters: int = DEFAULT_MAX_CLUSTERS,
) -> List[TrendCandidate]:
    """Collapse near-duplicate stories into one representative each."""
    threshold = max(0.0, min(1.0, float(similarity_threshold)))
    representatives: List[TrendCandidate] = []
    tokens: List[FrozenSet[str]] = []

    for item in _rank(group_by_host(items)):
        item_tokens = tokenize_title(item.title)
        match = -1
        if item_tokens:
            for idx, existing in enumerate(tokens):
                if jaccard(item_tokens, existing) >= threshold:
                    match = idx
                    break

        if match < 0:
            representatives.append(item)
            tokens.append(item_tokens)
            continue

        current = representatives[match]
        merged_size = current.cluster_size + item.cluster_size
        if _better(item, current):
            representatives[match] = item.model_copy(update={"cluster_size": merged_size})
            tokens[match] = item_tokens
        else:
            representatives[match] = current.model_copy(update={"cluster_size": merged_size})

    limit = max(1, int(max_clusters))
    clustered = _rank(representatives)[:limit]
    logger.debug("trend_cluster input=%s clusters=%s", len(items), len(clustered))
    return clustered
