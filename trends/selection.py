"""Editorial topic selection: greedy passes under composition constraints plus fallback padding."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from config.settings import SelectionSettings
from core.contracts import CanonicalCategory, SelectedTopicSet, SelectionAudit, TrendCandidate
from trends.categories import (
    REQUIRED_ENTERTAINMENT_CATEGORIES,
    is_entertainment_category,
    is_hard_category,
    normalize_trend_category,
    resolve_source_reliability_bonus,
)
from trends.fallback import FALLBACK_CATALOGUE, FallbackEntry, build_fallback_candidate
from trends.text import dedupe_hash, normalize_hostname
from utils.exceptions import ConfigurationError


logger = logging.getLogger(__name__)

MIN_LOOKBACK_HOURS = 24
MAX_LOOKBACK_HOURS = 48


@dataclass(frozen=True)
class SelectionConfig:
    target_total: int = 10
    target_deep_dive: int = 3
    target_quick_news: int = 6
    max_hard_topics: int = 2
    min_entertainment: int = 3
    source_diversity_window: int = 2
    lookback_hours: int = 36
    candidate_pool_size: int = 200
    category_caps: Mapping[CanonicalCategory, int] = field(default_factory=dict)
    max_clusters: int = 60

    def __post_init__(self) -> None:
        if self.target_total <= 0:
            raise ConfigurationError("target_total must be positive", {"target_total": self.target_total})
        if self.target_deep_dive < 0 or self.target_quick_news < 0:
            raise ConfigurationError("deep dive and quick news targets must not be negative")
        if self.target_deep_dive + self.target_quick_news > self.target_total:
            raise ConfigurationError(
                "target_deep_dive + target_quick_news exceeds target_total",
                {
                    "target_deep_dive": self.target_deep_dive,
                    "target_quick_news": self.target_quick_news,
                    "target_total": self.target_total,
                },
            )
        if self.min_entertainment < 0 or self.min_entertainment > self.target_total:
            raise ConfigurationError(
                "min_entertainment must be between 0 and target_total",
                {"min_entertainment": self.min_entertainment},
            )
        if self.max_hard_topics < 0:
            raise ConfigurationError("max_hard_topics must not be negative")

    @classmethod
    def from_settings(cls, settings: SelectionSettings) -> "SelectionConfig":
        caps: Dict[CanonicalCategory, int] = {}
        for raw_category, raw_cap in dict(settings.category_caps or {}).items():
            caps[normalize_trend_category(raw_category)] = max(0, int(raw_cap))
        return cls(
            target_total=settings.target_total,
            target_deep_dive=settings.target_deep_dive,
            target_quick_news=settings.target_quick_news,
            max_hard_topics=settings.max_hard_topics,
            min_entertainment=settings.min_entertainment,
            source_diversity_window=max(0, settings.source_diversity_window),
            lookback_hours=max(MIN_LOOKBACK_HOURS, min(MAX_LOOKBACK_HOURS, settings.lookback_hours)),
            candidate_pool_size=max(1, settings.candidate_pool_size),
            category_caps=caps,
            max_clusters=max(1, settings.max_clusters),
        )


def candidate_hash(item: TrendCandidate) -> str:
    return dedupe_hash(item.title, item.url)


def candidate_domain(item: TrendCandidate) -> str:
    return normalize_hostname(item.url, item.source)


def order_candidates(items: Sequence[TrendCandidate]) -> List[TrendCandidate]:
    """Score desc, cluster size desc, recency desc, id asc."""
    by_id = sorted(items, key=lambda item: item.id)
    by_recency = sorted(by_id, key=lambda item: item.published_at or "", reverse=True)
    return sorted(by_recency, key=lambda item: (-item.score, -item.cluster_size))


def prepare_pool(candidates: Sequence[TrendCandidate], pool_size: int) -> List[TrendCandidate]:
    """Apply the reliability bonus on copies, order, drop repeated dedup hashes and trim."""
    boosted = []
    for item in candidates:
        bonus = resolve_source_reliability_bonus(item.source, item.source)
        boosted.append(item.model_copy(update={"score": item.score + bonus}) if bonus else item.model_copy())

    pool: List[TrendCandidate] = []
    seen = set()
    for item in order_candidates(boosted):
        key = candidate_hash(item)
        if key in seen:
            continue
        seen.add(key)
        pool.append(item)
    return pool[: max(1, pool_size)]


class _SelectionState:
    def __init__(self, config: SelectionConfig) -> None:
        self.config = config
        self.selected: List[TrendCandidate] = []
        self.domains: List[str] = []
        self.hashes = set()
        self.ids = set()
        self.category_counts: Dict[CanonicalCategory, int] = {}
        self.hard_count = 0
        self.entertainment_count = 0
        self.fallback_count = 0
        self.pass_counts: Dict[str, int] = {}
        self.fallback_sequence = 0
        self.fallback_rounds: Dict[str, int] = {}

    @property
    def full(self) -> bool:
        return len(self.selected) >= self.config.target_total

    @property
    def needs_entertainment(self) -> bool:
        return self.entertainment_count < self.config.min_entertainment

    def allows(self, item: TrendCandidate, diversity: bool = True, caps: bool = True) -> bool:
        if self.full or item.id in self.ids or candidate_hash(item) in self.hashes:
            return False
        if is_hard_category(item.category) and self.hard_count >= self.config.max_hard_topics:
            return False
        if caps:
            cap = self.config.category_caps.get(item.category)
            if cap is not None and self.category_counts.get(item.category, 0) >= cap:
                return False
        if diversity and self.config.source_diversity_window > 0:
            recent = self.domains[-self.config.source_diversity_window :]
            if candidate_domain(item) in recent:
                return False
        return True

    def add(self, item: TrendCandidate, pass_name: str) -> None:
        self.selected.append(item)
        self.domains.append(candidate_domain(item))
        self.hashes.add(candidate_hash(item))
        self.ids.add(item.id)
        self.category_counts[item.category] = self.category_counts.get(item.category, 0) + 1
        if is_hard_category(item.category):
            self.hard_count += 1
        if is_entertainment_category(item.category):
            self.entertainment_count += 1
        if item.is_fallback:
            self.fallback_count += 1
        self.pass_counts[pass_name] = self.pass_counts.get(pass_name, 0) + 1


_LEVELS = (("strict", True, True), ("no_diversity", False, True))


def _required_pass(state: _SelectionState, pool: Sequence[TrendCandidate]) -> None:
    for category in REQUIRED_ENTERTAINMENT_CATEGORIES:
        if state.full:
            return
        for _, diversity, caps in _LEVELS:
            pick = next(
                (item for item in pool if item.category == category and state.allows(item, diversity, caps)),
                None,
            )
            if pick is not None:
                state.add(pick, "required")
                break


def _fill_pass(
    state: _SelectionState,
    pool: Sequence[TrendCandidate],
    pass_name: str,
    accept: Callable[[TrendCandidate], bool],
    keep_going: Callable[[], bool],
    diversity: bool,
    caps: bool,
) -> None:
    for item in pool:
        if state.full or not keep_going():
            return
        if accept(item) and state.allows(item, diversity, caps):
            state.add(item, pass_name)


def _inject_fallbacks(
    state: _SelectionState,
    pass_name: str,
    accept: Callable[[FallbackEntry], bool],
    keep_going: Callable[[], bool],
    caps: bool,
) -> None:
    entries = [entry for entry in FALLBACK_CATALOGUE if accept(entry)]
    if not entries:
        return
    while not state.full and keep_going():
        injected = False
        for entry in entries:
            if state.full or not keep_going():
                return
            round_no = state.fallback_rounds.get(entry.key, 0) + 1
            candidate = build_fallback_candidate(entry, state.fallback_sequence + 1, round_no)
            if not state.allows(candidate, diversity=False, caps=caps):
                continue
            state.fallback_sequence += 1
            state.fallback_rounds[entry.key] = round_no
            state.add(candidate, pass_name)
            injected = True
        if not injected:
            return


def select_trend_items_for_plan(
    candidates: Sequence[TrendCandidate],
    config: Optional[SelectionConfig] = None,
) -> SelectedTopicSet:
    """Turn a scored candidate pool into the episode's topic set. Pure and deterministic."""
    config = config or SelectionConfig()
    pool = prepare_pool(candidates, config.candidate_pool_size)
    state = _SelectionState(config)

    def entertainment(item) -> bool:
        return is_entertainment_category(item.category)

    def anything(_item) -> bool:
        return True

    def always() -> bool:
        return True

    _required_pass(state, pool)

    for level, diversity, caps in _LEVELS:
        _fill_pass(state, pool, f"entertainment_{level}", entertainment, lambda: state.needs_entertainment, diversity, caps)
    _inject_fallbacks(state, "fallback_entertainment", entertainment, lambda: state.needs_entertainment, caps=True)

    for level, diversity, caps in _LEVELS:
        _fill_pass(state, pool, f"fill_{level}", anything, always, diversity, caps)
    _inject_fallbacks(state, "fallback_fill", anything, always, caps=True)

    # category caps are only lifted when capped fallbacks alone cannot reach target_total
    _fill_pass(state, pool, "fill_no_cap", anything, always, diversity=False, caps=False)
    _inject_fallbacks(state, "fallback_no_cap", anything, always, caps=False)

    category_distribution: Dict[str, int] = {}
    domain_distribution: Dict[str, int] = {}
    for item in state.selected:
        category_distribution[item.category.value] = category_distribution.get(item.category.value, 0) + 1
        domain = candidate_domain(item) or "unknown"
        domain_distribution[domain] = domain_distribution.get(domain, 0) + 1

    audit = SelectionAudit(
        category_distribution=category_distribution,
        domain_distribution=domain_distribution,
        hard_count=state.hard_count,
        entertainment_count=state.entertainment_count,
        fallback_count=state.fallback_count,
        pool_size=len(pool),
        pass_counts=state.pass_counts,
    )
    logger.info(
        "trend_selection selected=%s pool=%s hard=%s entertainment=%s fallback=%s",
        len(state.selected),
        len(pool),
        state.hard_count,
        state.entertainment_count,
        state.fallback_count,
    )
    return SelectedTopicSet(
        items=state.selected,
        audit=audit,
        target_deep_dive=config.target_deep_dive,
        target_quick_news=config.target_quick_news,
    )
