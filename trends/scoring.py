"""Trend scoring: freshness decay, weighted source quality, bonuses and penalties."""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, Mapping, Optional

from pydantic import BaseModel


FRESHNESS_HALF_LIFE_HOURS = 20.0
MAX_FRESHNESS_WINDOW_HOURS = 72.0
HARD_NEWS_PENALTY = 0.28
HARD_KEYWORD_PENALTY = 0.65
OVERHEATED_PENALTY = 0.32
CLICKBAIT_PENALTY = 1.1

_HARD_NEWS_RAW_CATEGORIES = frozenset(
    {"news", "politics", "policy", "government", "election", "world", "economy", "business"}
)

DEFAULT_TREND_CATEGORY_WEIGHTS: Dict[str, float] = {
    "general": 1.0,
    "tech": 1.04,
    "ai": 1.05,
    "startup": 1.02,
    "science": 0.98,
    "news": 0.92,
    "politics": 0.85,
    "policy": 0.9,
    "world": 0.9,
    "economy": 0.9,
    "business": 0.93,
    "entertainment": 1.26,
    "culture": 1.18,
    "gadgets": 1.24,
    "lifestyle": 1.16,
    "food": 1.12,
    "travel": 1.12,
    "books": 1.14,
    "sports": 1.08,
    "music": 1.26,
    "movie": 1.24,
    "anime": 1.3,
    "game": 1.28,
    "gaming": 1.28,
    "video": 1.2,
    "youtube": 1.2,
    "streaming": 1.18,
    "celebrity": 1.14,
}

DEFAULT_CLICKBAIT_KEYWORDS = (
    "衝撃",
    "ヤバい",
    "絶対",
    "今すぐ",
    "必見",
    "知らないと損",
    "worst",
    "shocking",
    "you won't believe",
    "must read",
    "must-see",
    "break the internet",
    "click here",
)


def parse_category_weights(raw: Optional[str]) -> Dict[str, float]:
    """Merge a JSON weight map over the defaults; invalid input yields the defaults."""
    weights = dict(DEFAULT_TREND_CATEGORY_WEIGHTS)
    if not raw:
        return weights
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return weights
    if not isinstance(parsed, dict):
        return weights
    for key, value in parsed.items():
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
            continue
        token = str(key).strip().lower()
        if token:
            weights[token] = max(0.2, min(3.0, float(value)))
    return weights


def resolve_category_weight(category: str, weights: Mapping[str, float]) -> float:
    token = str(category or "").strip().lower()
    if token and token in weights:
        return float(weights[token])
    return float(weights.get("general", 1.0))


def contains_keyword(text: str, keywords: Iterable[str]) -> bool:
    haystack = str(text or "").lower()
    return any(keyword and keyword.lower() in haystack for keyword in keywords)


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def freshness_score(published_at: Optional[str], now: Optional[datetime] = None) -> float:
    baseline = _parse_timestamp(published_at)
    if baseline is None:
        return 0.0
    current = now or datetime.now(timezone.utc)
    age_hours = max(0.0, (current - baseline).total_seconds() / 3600.0)
    age_hours = min(age_hours, MAX_FRESHNESS_WINDOW_HOURS)
    return math.exp(-math.log(2) * age_hours / FRESHNESS_HALF_LIFE_HOURS) * 2.0


@dataclass
class TrendScoreInput:
    published_at: Optional[str]
    source_weight: float = 1.0
    source_category: str = "general"
    cluster_size: int = 1
    diversity_bonus: float = 0.0
    entertainment_floor_bonus: float = 0.0
    source_reliability_bonus: float = 0.0
    duplicate_penalty: float = 0.0
    has_clickbait_keyword: bool = False
    has_sensitive_hard_keyword: bool = False
    has_overheated_keyword: bool = False
    entertainment_bonus_value: float = 0.0
    category_weights: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_TREND_CATEGORY_WEIGHTS))


class TrendScoreBreakdown(BaseModel):
    score: float
    score_freshness: float
    score_source: float
    score_bonus: float
    score_penalty: float
    category_weight: float
    hard_news_penalty: float
    hard_keyword_penalty: float
    overheated_penalty: float
    duplicate_penalty: float


def calculate_trend_score(params: TrendScoreInput, now: Optional[datetime] = None) -> TrendScoreBreakdown:
    freshness = freshness_score(params.published_at, now)
    category_weight = resolve_category_weight(params.source_category, params.category_weights)
    weighted_source = max(params.source_weight, 0.0) * category_weight
    cluster_bonus = math.log2(max(params.cluster_size, 1))
    weight_bonus = max(category_weight - 1.0, 0.0)
    weight_penalty = max(1.0 - category_weight, 0.0) * 0.6

    raw_category = str(params.source_category or "").strip().lower()
    hard_news_penalty = (
        HARD_NEWS_PENALTY if raw_category in _HARD_NEWS_RAW_CATEGORIES and category_weight <= 1.0 else 0.0
    )
    clickbait_penalty = CLICKBAIT_PENALTY if params.has_clickbait_keyword else 0.0
    hard_keyword_penalty = HARD_KEYWORD_PENALTY if params.has_sensitive_hard_keyword else 0.0
    overheated_penalty = OVERHEATED_PENALTY if params.has_overheated_keyword else 0.0
    duplicate_penalty = max(params.duplicate_penalty, 0.0)

    bonus = (
        cluster_bonus
        + params.diversity_bonus
        + params.entertainment_floor_bonus
        + params.source_reliability_bonus
        + params.entertainment_bonus_value
        + weight_bonus
    )
    penalty = (
        clickbait_penalty
        + weight_penalty
        + hard_news_penalty
        + hard_keyword_penalty
        + overheated_penalty
        + duplicate_penalty
    )

    return TrendScoreBreakdown(
        score=round(freshness + weighted_source + bonus - penalty, 6),
        score_freshness=round(freshness, 6),
        score_source=round(weighted_source, 6),
        score_bonus=round(bonus, 6),
        score_penalty=round(penalty, 6),
        category_weight=round(category_weight, 6),
        hard_news_penalty=round(hard_news_penalty, 6),
        hard_keyword_penalty=round(hard_keyword_penalty, 6),
        overheated_penalty=round(overheated_penalty, 6),
        duplicate_penalty=round(duplicate_penalty, 6),
    )
