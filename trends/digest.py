"""Trend digest filter: clean, reject, dedupe and compose the daily digest."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from config.settings import DigestSettings, split_csv
from core.contracts import CanonicalCategory
from trends.categories import (
    ToneTag,
    classify_tone,
    is_entertainment_category,
    is_hard_category,
    normalize_trend_category,
)
from trends.text import clean_text, compact_text, dedupe_key


logger = logging.getLogger(__name__)

DEFAULT_MAX_HARD_NEWS = 1
DEFAULT_MAX_ITEMS = 12

DEFAULT_TREND_DENY_KEYWORDS: Tuple[str, ...] = (
    "porn",
    "pornography",
    "sexual",
    "explicit sex",
    "nude",
    "self-harm",
    "suicide",
    "kill yourself",
    "illegal drug",
    "cocaine",
    "meth",
    "fentanyl",
    "覚醒剤",
    "麻薬",
    "違法薬物",
    "自殺",
    "リストカット",
    "性的",
)

DEFAULT_EXCLUDED_SOURCE_CATEGORIES: Tuple[str, ...] = (
    "investment",
    "stocks",
    "fx",
    "crypto",
    "cryptocurrency",
    "finance",
)

DEFAULT_EXCLUDED_KEYWORDS: Tuple[str, ...] = (
    "投資",
    "株",
    "株式",
    "fx",
    "為替",
    "暗号資産",
    "仮想通貨",
    "crypto",
    "bitcoin",
    "btc",
    "eth",
)

_WHY_IT_MATTERS: Dict[CanonicalCategory, str] = {
    CanonicalCategory.ENTERTAINMENT: "話題の温度感が高く、リスナーの日常に直結するためです。",
    CanonicalCategory.ANIME: "作品・配信・イベントの動きが早く、追い方の判断材料になるためです。",
    CanonicalCategory.GAME: "発売・運営・ユーザー行動の変化が読み取れるためです。",
    CanonicalCategory.MOVIE: "配信と興行の両面で、次の消費トレンドを先読みしやすいためです。",
    CanonicalCategory.CULTURE: "暮らしの選択肢や楽しみ方の変化が見えるためです。",
    CanonicalCategory.POLICY: "制度変更や議論の前提を確認しないと誤読しやすいためです。",
    CanonicalCategory.BUSINESS: "市場や企業行動の変化が、実務判断に波及するためです。",
    CanonicalCategory.TECH: "プロダクト実装と利用体験の両方に影響するためです。",
}

_SENTENCE_SPLIT_RE = re.compile(r"(?<=[。.!?！？])\s+")
_SENTENCE_END_RE = re.compile(r"[。.!?！？]$")


@dataclass(frozen=True)
class TrendDigestConfig:
    deny_keywords: Tuple[str, ...] = DEFAULT_TREND_DENY_KEYWORDS
    allow_categories: Tuple[CanonicalCategory, ...] = ()
    max_hard_news: int = DEFAULT_MAX_HARD_NEWS
    max_items: int = DEFAULT_MAX_ITEMS
    excluded_source_categories: Tuple[str, ...] = DEFAULT_EXCLUDED_SOURCE_CATEGORIES
    excluded_keywords: Tuple[str, ...] = DEFAULT_EXCLUDED_KEYWORDS

    @classmethod
    def from_settings(cls, settings: DigestSettings) -> "TrendDigestConfig":
        return resolve_digest_config(
            deny_keywords=settings.deny_keywords,
            allow_categories=settings.allow_categories,
            max_hard_news=settings.max_hard_news,
            max_items=settings.max_items,
            excluded_source_categories=settings.excluded_source_categories,
            excluded_keywords=settings.excluded_keywords,
        )


def _positive_int(value: object, fallback: int) -> int:
    try:
        parsed = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return fallback
    return parsed if parsed > 0 else fallback


def resolve_digest_config(
    deny_keywords: Optional[str] = None,
    allow_categories: Optional[str] = None,
    max_hard_news: object = None,
    max_items: object = None,
    excluded_source_categories: Optional[str] = None,
    excluded_keywords: Optional[str] = None,
) -> TrendDigestConfig:
    """Build a digest config from raw CSV / integer values."""
    deny = tuple(token.lower() for token in split_csv(deny_keywords))
    excluded_categories = tuple(token.lower() for token in split_csv(excluded_source_categories))
    excluded = tuple(token.lower() for token in split_csv(excluded_keywords))
    allow: List[CanonicalCategory] = []
    for token in split_csv(allow_categories):
        category = normalize_trend_category(token)
        if category not in allow:
            allow.append(category)
    return TrendDigestConfig(
        deny_keywords=deny or DEFAULT_TREND_DENY_KEYWORDS,
        allow_categories=tuple(allow),
        max_hard_news=_positive_int(max_hard_news, DEFAULT_MAX_HARD_NEWS),
        max_items=_positive_int(max_items, DEFAULT_MAX_ITEMS),
        excluded_source_categories=excluded_categories or DEFAULT_EXCLUDED_SOURCE_CATEGORIES,
        excluded_keywords=excluded or DEFAULT_EXCLUDED_KEYWORDS,
    )


class TrendDigestSourceItem(BaseModel):
    """Raw trend row with unescaped feed text."""

    id: str
    title: str = ""
    summary: str = ""
    source: str = ""
    url: str = ""
    category: str = ""
    source_category: str = ""
    score: float = 0.0
    published_at: Optional[str] = None
    cluster_size: int = 1


class TrendDigestItem(BaseModel):
    id: str
    cleaned_title: str
    what_happened: str
    why_it_matters: str
    tone_tag: ToneTag
    category: CanonicalCategory
    source: str
    url: str
    score: float
    published_at: Optional[str] = None
    cluster_size: int = 1


class TrendDigestResult(BaseModel):
    items: List[TrendDigestItem] = Field(default_factory=list)
    used_count: int = 0
    filtered_count: int = 0
    category_distribution: Dict[str, int] = Field(default_factory=dict)


def summarize_sentences(text: str, max_sentences: int = 2) -> str:
    sentences = [part.strip() for part in _SENTENCE_SPLIT_RE.split(text or "") if part.strip()]
    return " ".join(sentences[:max_sentences])


def ensure_sentence(text: str, fallback: str) -> str:
    compacted = compact_text(text) or fallback
    if _SENTENCE_END_RE.search(compacted):
        return compacted
    return f"{compacted}。"


def why_it_matters(category: CanonicalCategory, cleaned_title: str) -> str:
    template = _WHY_IT_MATTERS.get(category)
    if template:
        return ensure_sentence(template, "番組の視点整理に役立つためです。")
    return ensure_sentence(
        f"{cleaned_title}の背景を押さえることで、見出しだけでは見えない文脈を補えるためです。",
        "背景を押さえることで文脈を誤読しにくくなるためです。",
    )


def build_digest_item(item: TrendDigestSourceItem) -> Optional[TrendDigestItem]:
    """Clean one raw item; ``None`` when nothing is left of the title."""
    cleaned_title = clean_text(item.title)
    if not cleaned_title:
        return None
    cleaned_summary = clean_text(item.summary)
    category = normalize_trend_category(item.category)
    templated = f"{cleaned_title}が話題になっており、主要な更新点が確認されています。"

    return TrendDigestItem(
        id=item.id,
        cleaned_title=cleaned_title,
        what_happened=ensure_sentence(summarize_sentences(cleaned_summary, 2) or templated, templated),
        why_it_matters=why_it_matters(category, cleaned_title),
        tone_tag=classify_tone(category),
        category=category,
        source=clean_text(item.source) or "unknown",
        url=compact_text(item.url),
        score=float(item.score or 0.0),
        published_at=item.published_at,
        cluster_size=max(1, int(item.cluster_size or 1)),
    )


def _keyword_pattern(keyword: str) -> re.Pattern:
    # ascii tokens match on word boundaries so "eth" stays out of "together"
    if keyword.isascii():
        return re.compile(rf"(?<![a-z0-9]){re.escape(keyword)}(?![a-z0-9])")
    return re.compile(re.escape(keyword))


def matches_excluded_keyword(text: str, keywords: Sequence[str]) -> Optional[str]:
    lowered = (text or "").lower()
    for keyword in keywords:
        if keyword and _keyword_pattern(keyword).search(lowered):
            return keyword
    return None


def is_excluded_source_category(source_category: str, excluded: Sequence[str]) -> bool:
    token = (source_category or "").strip().lower()
    return bool(token) and token in excluded


def _sort_key(item: TrendDigestItem):
    return (-item.score, -item.cluster_size)


def _sort_items(items: Sequence[TrendDigestItem]) -> List[TrendDigestItem]:
    # published_at desc first, then the stable primary sort on score / cluster size
    by_recency = sorted(items, key=lambda item: item.published_at or "", reverse=True)
    return sorted(by_recency, key=_sort_key)


def screen_digest_items(
    source_items: Sequence[TrendDigestSourceItem],
    config: Optional[TrendDigestConfig] = None,
) -> Tuple[List[TrendDigestItem], int]:
    """Clean, reject and dedupe without composing.

    Returns the surviving items in digest order and the number of rejected
    rows. No hard-news or item-count cap is applied here.
    """
    config = config or TrendDigestConfig()
    allow = set(config.allow_categories)
    rejected = 0
    seen_keys = set()
    kept: List[TrendDigestItem] = []

    for raw in source_items:
        item = build_digest_item(raw)
        if item is None:
            rejected += 1
            continue
        if is_excluded_source_category(raw.source_category, config.excluded_source_categories):
            rejected += 1
            continue
        if allow and item.category not in allow:
            rejected += 1
            continue
        haystack = f"{item.cleaned_title} {item.what_happened} {item.why_it_matters}".lower()
        if any(keyword and keyword in haystack for keyword in config.deny_keywords):
            rejected += 1
            continue
        if matches_excluded_keyword(f"{raw.title} {raw.summary}", config.excluded_keywords):
            rejected += 1
            continue
        key = dedupe_key(item.cleaned_title, item.url)
        if key in seen_keys:
            rejected += 1
            continue
        seen_keys.add(key)
        kept.append(item)

    return _sort_items(kept), rejected


def build_trend_digest(
    source_items: Sequence[TrendDigestSourceItem],
    config: Optional[TrendDigestConfig] = None,
) -> TrendDigestResult:
    """Filter and compose the digest. Deterministic; invalid items are filtered, never raised."""
    config = config or TrendDigestConfig()
    ordered, filtered_count = screen_digest_items(source_items, config)
    selected: List[TrendDigestItem] = []
    selected_ids = set()
    hard_count = 0

    anchor = next((item for item in ordered if is_entertainment_category(item.category)), None)
    if anchor is not None:
        selected.append(anchor)
        selected_ids.add(anchor.id)

    skipped_hard = 0
    for item in ordered:
        if len(selected) >= config.max_items:
            break
        if item.id in selected_ids:
            continue
        hard = is_hard_category(item.category)
        if hard and hard_count >= config.max_hard_news:
            skipped_hard += 1
            continue
        selected.append(item)
        selected_ids.add(item.id)
        if hard:
            hard_count += 1

    distribution: Dict[str, int] = {}
    for item in selected:
        distribution[item.category.value] = distribution.get(item.category.value, 0) + 1

    total_filtered = filtered_count + max(0, len(ordered) - len(selected))
    logger.debug(
        "trend_digest built used=%s filtered=%s hard_skipped=%s",
        len(selected),
        total_filtered,
        skipped_hard,
    )
    return TrendDigestResult(
        items=selected,
        used_count=len(selected),
        filtered_count=total_filtered,
        category_distribution=distribution,
    )
