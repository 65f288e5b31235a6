"""Hand-authored fallback topics used when live trends cannot fill the plan."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Tuple

from core.contracts import CanonicalCategory, ProgramTopic, TrendCandidate


@dataclass(frozen=True)
class FallbackEntry:
    key: str
    title: str
    url: str
    summary: str
    category: CanonicalCategory
    source: str = "example.com"


FALLBACK_CATALOGUE: Tuple[FallbackEntry, ...] = (
    FallbackEntry(
        key="fallback-streaming-picks",
        title="Fallback: Weekend streaming picks",
        url="https://example.com/fallback/streaming-picks",
        summary="New series and returning seasons are lining up on streaming services.",
        category=CanonicalCategory.ENTERTAINMENT,
    ),
    FallbackEntry(
        key="fallback-game-release",
        title="Fallback: Upcoming game releases",
        url="https://example.com/fallback/game-release",
        summary="Several anticipated titles announced release windows and updates.",
        category=CanonicalCategory.GAME,
    ),
    FallbackEntry(
        key="fallback-box-office",
        title="Fallback: Box office and new films",
        url="https://example.com/fallback/box-office",
        summary="Theatrical releases and streaming premieres shaped this week's film talk.",
        category=CanonicalCategory.MOVIE,
    ),
    FallbackEntry(
        key="fallback-anime-season",
        title="Fallback: Anime season highlights",
        url="https://example.com/fallback/anime-season",
        summary="This season's anime line-up and event announcements drew attention.",
        category=CanonicalCategory.ANIME,
    ),
    FallbackEntry(
        key="fallback-product-update",
        title="Fallback: Product update cadence",
        url="https://example.com/fallback/product-update",
        summary="Product roadmap updates were shared in public channels.",
        category=CanonicalCategory.TECH,
    ),
    FallbackEntry(
        key="fallback-culture-trend",
        title="Fallback: Lifestyle and culture trends",
        url="https://example.com/fallback/culture-trend",
        summary="Food, travel and books trends kept showing up in everyday conversation.",
        category=CanonicalCategory.CULTURE,
    ),
    FallbackEntry(
        key="fallback-reliability",
        title="Fallback: Reliability improvements",
        url="https://example.com/fallback/reliability",
        summary="Reliability and operations improvements were highlighted.",
        category=CanonicalCategory.BUSINESS,
    ),
    FallbackEntry(
        key="fallback-policy-brief",
        title="Fallback: Policy brief",
        url="https://example.com/fallback/policy-brief",
        summary="Recent policy discussions were summarized for background.",
        category=CanonicalCategory.POLICY,
    ),
    FallbackEntry(
        key="fallback-user-feedback",
        title="Fallback: User feedback highlights",
        url="https://example.com/fallback/user-feedback",
        summary="Recent user feedback showed recurring product requests.",
        category=CanonicalCategory.GENERAL,
    ),
)


def build_fallback_candidate(entry: FallbackEntry, sequence: int, round_no: int) -> TrendCandidate:
    """Materialize one injection; later rounds get distinct title/url so dedup hashes stay unique."""
    title = entry.title if round_no <= 1 else f"{entry.title} ({round_no})"
    url = entry.url if round_no <= 1 else f"{entry.url}#r{round_no}"
    return TrendCandidate(
        id=f"{entry.key}-{sequence}",
        title=title,
        url=url,
        summary=entry.summary,
        source=entry.source,
        category=entry.category,
        score=0.0,
        cluster_size=1,
        is_fallback=True,
    )


def fallback_topic(episode_date: str) -> ProgramTopic:
    return ProgramTopic(
        title=f"Daily Topic {episode_date}",
        bullets=[
            "トレンド要約1: 公開情報の更新を確認中です。",
            "トレンド要約2: 継続観測が必要な論点を整理します。",
            "トレンド要約3: 主要トピックの背景を短く振り返ります。",
            "お便りコーナー: リスナーのお便りを紹介します。",
            "次回予告: 次回の深掘り候補を案内します。",
        ],
    )


def fallback_trend_items(limit: int) -> List[TrendCandidate]:
    """First ``limit`` catalogue entries, one round, used when the trend store is unreadable."""
    return [
        build_fallback_candidate(entry, index + 1, 1)
        for index, entry in enumerate(FALLBACK_CATALOGUE[: max(0, limit)])
    ]
