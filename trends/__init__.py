"""Trend normalization, digest filtering, clustering, scoring and topic selection."""

from .categories import (
    REQUIRED_ENTERTAINMENT_CATEGORIES,
    classify_tone,
    is_entertainment_category,
    is_hard_category,
    normalize_trend_category,
    resolve_source_reliability_bonus,
)
from .clustering import cluster_trend_items
from .digest import (
    TrendDigestConfig,
    TrendDigestSourceItem,
    build_trend_digest,
    resolve_digest_config,
    screen_digest_items,
)
from .selection import SelectionConfig, select_trend_items_for_plan

__all__ = [
    "REQUIRED_ENTERTAINMENT_CATEGORIES",
    "classify_tone",
    "is_entertainment_category",
    "is_hard_category",
    "normalize_trend_category",
    "resolve_source_reliability_bonus",
    "cluster_trend_items",
    "TrendDigestConfig",
    "TrendDigestSourceItem",
    "build_trend_digest",
    "screen_digest_items",
    "resolve_digest_config",
    "SelectionConfig",
    "select_trend_items_for_plan",
]
