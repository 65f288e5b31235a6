"""Canonical trend categories, tone tags and source reliability bonuses."""

from __future__ import annotations

import re
import unicodedata
from typing import Any, Dict, Literal, Optional

from core.contracts import CanonicalCategory


ToneTag = Literal["fun", "neutral", "serious"]

_CATEGORY_ALIAS: Dict[str, CanonicalCategory] = {
    "entertainment": CanonicalCategory.ENTERTAINMENT,
    "streaming": CanonicalCategory.ENTERTAINMENT,
    "celebrity": CanonicalCategory.ENTERTAINMENT,
    "music": CanonicalCategory.ENTERTAINMENT,
    "video": CanonicalCategory.ENTERTAINMENT,
    "youtube": CanonicalCategory.ENTERTAINMENT,
    "sports": CanonicalCategory.ENTERTAINMENT,
    "game": CanonicalCategory.GAME,
    "gaming": CanonicalCategory.GAME,
    "esports": CanonicalCategory.GAME,
    "movie": CanonicalCategory.MOVIE,
    "film": CanonicalCategory.MOVIE,
    "cinema": CanonicalCategory.MOVIE,
    "hollywood": CanonicalCategory.MOVIE,
    "anime": CanonicalCategory.ANIME,
    "manga": CanonicalCategory.ANIME,
    "culture": CanonicalCategory.CULTURE,
    "lifestyle": CanonicalCategory.CULTURE,
    "books": CanonicalCategory.CULTURE,
    "book": CanonicalCategory.CULTURE,
    "travel": CanonicalCategory.CULTURE,
    "food": CanonicalCategory.CULTURE,
    "tech": CanonicalCategory.TECH,
    "ai": CanonicalCategory.TECH,
    "startup": CanonicalCategory.TECH,
    "science": CanonicalCategory.TECH,
    "gadgets": CanonicalCategory.TECH,
    "policy": CanonicalCategory.POLICY,
    "politics": CanonicalCategory.POLICY,
    "government": CanonicalCategory.POLICY,
    "election": CanonicalCategory.POLICY,
    "world": CanonicalCategory.POLICY,
    "news": CanonicalCategory.POLICY,
    "crime": CanonicalCategory.POLICY,
    "accident": CanonicalCategory.POLICY,
    "disaster": CanonicalCategory.POLICY,
    "war": CanonicalCategory.POLICY,
    "business": CanonicalCategory.BUSINESS,
    "economy": CanonicalCategory.BUSINESS,
    "finance": CanonicalCategory.BUSINESS,
    "investment": CanonicalCategory.BUSINESS,
    "stocks": CanonicalCategory.BUSINESS,
    "stock": CanonicalCategory.BUSINESS,
    "crypto": CanonicalCategory.BUSINESS,
    "cryptocurrency": CanonicalCategory.BUSINESS,
    "general": CanonicalCategory.GENERAL,
}

ENTERTAINMENT_CATEGORIES = frozenset(
    {
        CanonicalCategory.ENTERTAINMENT,
        CanonicalCategory.GAME,
        CanonicalCategory.MOVIE,
        CanonicalCategory.ANIME,
        CanonicalCategory.CULTURE,
    }
)
HARD_CATEGORIES = frozenset({CanonicalCategory.POLICY})

REQUIRED_ENTERTAINMENT_CATEGORIES = (
    CanonicalCategory.ENTERTAINMENT,
    CanonicalCategory.GAME,
    CanonicalCategory.MOVIE,
)

_RELIABLE_SOURCE_BONUS_BY_KEY: Dict[str, float] = {
    "animenewsnetwork": 0.2,
    "ignall": 0.18,
    "gamespotall": 0.18,
    "variety": 0.16,
    "hollywoodreporter": 0.16,
    "gamer4gamer": 0.2,
    "famitsu": 0.16,
    "gamewatch": 0.16,
    "oriconnews": 0.14,
    "natalieall": 0.14,
    "nataliemusic": 0.14,
    "nataliecomic": 0.14,
    "techcrunch": 0.08,
}

_RELIABLE_SOURCE_BONUS_BY_NAME: Dict[str, float] = {
    "animenewsnetwork": 0.2,
    "ign": 0.18,
    "gamespot": 0.18,
    "variety": 0.16,
    "thehollywoodreporter": 0.16,
    "4gamer": 0.2,
    "famitsu": 0.16,
    "gamewatch": 0.16,
    "oriconnews": 0.14,
    "ナタリー総合": 0.14,
    "ナタリー音楽": 0.14,
    "ナタリーコミック": 0.14,
}

_NON_ALNUM_RE = re.compile(r"[\W_]+", flags=re.UNICODE)


def _source_key(value: Optional[str]) -> str:
    text = unicodedata.normalize("NFKC", str(value or "")).lower()
    return _NON_ALNUM_RE.sub("", text)


def normalize_trend_category(value: Any) -> CanonicalCategory:
    """Map any raw category string onto the canonical set; unknown -> general."""
    if isinstance(value, CanonicalCategory):
        return value
    token = str(value or "").strip().lower()
    if not token:
        return CanonicalCategory.GENERAL
    return _CATEGORY_ALIAS.get(token, CanonicalCategory.GENERAL)


def is_entertainment_category(value: Any) -> bool:
    return normalize_trend_category(value) in ENTERTAINMENT_CATEGORIES


def is_hard_category(value: Any) -> bool:
    return normalize_trend_category(value) in HARD_CATEGORIES


def classify_tone(value: Any) -> ToneTag:
    category = normalize_trend_category(value)
    if category in ENTERTAINMENT_CATEGORIES:
        return "fun"
    if category in HARD_CATEGORIES:
        return "serious"
    return "neutral"


def resolve_source_reliability_bonus(source_key: Optional[str], source_name: Optional[str] = None) -> float:
    """Fixed score bonus for sources with a good editorial track record."""
    by_key = _RELIABLE_SOURCE_BONUS_BY_KEY.get(_source_key(source_key))
    if by_key is not None:
        return by_key
    by_name = _RELIABLE_SOURCE_BONUS_BY_NAME.get(_source_key(source_name))
    if by_name is not None:
        return by_name
    return 0.0
