from __future__ import annotations

from collections import Counter

import pytest

from config.settings import SelectionSettings
from core.contracts import CanonicalCategory, TrendCandidate
from trends.categories import is_entertainment_category, is_hard_category
from trends.selection import SelectionConfig, candidate_hash, select_trend_items_for_plan
from utils.exceptions import ConfigurationError


def _item(item_id: str, category: str, host: str, score: float, **kwargs) -> TrendCandidate:
    return TrendCandidate(
        id=item_id,
        title=kwargs.pop("title", f"Story {item_id}"),
        url=kwargs.pop("url", f"https://{host}.example.com/{item_id}"),
        source="feed",
        category=category,
        score=score,
        published_at="2024-01-01T00:00:00+00:00",
        **kwargs,
    )


def _mixed_pool():
    return [
        _item("e1", "entertainment", "a", 10.0),
        _item("e2", "entertainment", "a", 9.0),
        _item("g1", "game", "b", 8.0),
        _item("m1", "movie", "c", 7.0),
        _item("t1", "tech", "a", 6.0),
        _item("t2", "tech", "d", 5.0),
        _item("b1", "business", "e", 4.0),
        _item("p1", "politics", "f", 3.0),
        _item("p2", "politics", "g", 2.9),
        _item("p3", "politics", "h", 2.8),
        _item("c1", "culture", "i", 2.0),
        _item("n1", "general", "j", 1.0),
    ]


def test_selection_passes_follow_required_then_fill_order() -> None:
    result = select_trend_items_for_plan(_mixed_pool(), SelectionConfig())

    assert [item.id for item in result.items] == ["e1", "g1", "m1", "e2", "t2", "b1", "p1", "p2", "c1", "n1"]
    assert result.audit.pass_counts == {"required": 3, "fill_strict": 7}
    assert result.audit.hard_count == 2
    assert result.audit.entertainment_count == 5
    assert result.audit.fallback_count == 0
    assert result.audit.category_distribution["policy"] == 2
    assert [item.id for item in result.deep_dive] == ["e1", "g1", "m1"]
    assert len(result.quick_news) == 6
    assert [item.id for item in result.small_talk] == ["n1"]


def test_selection_is_deterministic() -> None:
    pool = _mixed_pool()
    config = SelectionConfig()

    first = select_trend_items_for_plan(pool, config)
    second = select_trend_items_for_plan(list(reversed(pool)), config)

    assert [item.id for item in first.items] == [item.id for item in second.items]
    assert first.audit == second.audit


def test_empty_pool_is_filled_from_fallback_catalogue() -> None:
    result = select_trend_items_for_plan([], SelectionConfig())

    assert len(result.items) == 10
    assert all(item.is_fallback for item in result.items)
    assert result.audit.fallback_count == 10
    assert result.audit.pass_counts == {"fallback_entertainment": 3, "fallback_fill": 7}
    assert result.items[0].id == "fallback-streaming-picks-1"
    assert result.items[3].title.endswith("(2)")
    assert len({candidate_hash(item) for item in result.items}) == 10
    assert result.audit.entertainment_count >= 3
    assert result.audit.hard_count == 0


def test_category_cap_holds_even_when_fallbacks_are_needed() -> None:
    pool = [_item(f"t{index}", "tech", f"host{index}", 10.0 - index) for index in range(8)]
    pool += [_item("e1", "entertainment", "ent1", 1.0), _item("e2", "entertainment", "ent2", 0.5)]
    config = SelectionConfig(category_caps={CanonicalCategory.TECH: 1})

    result = select_trend_items_for_plan(pool, config)

    counts = Counter(item.category for item in result.items)
    assert len(result.items) == 10
    assert counts[CanonicalCategory.TECH] == 1
    assert result.audit.entertainment_count >= 3
    assert result.audit.fallback_count > 0
    assert "fill_no_cap" not in result.audit.pass_counts


def test_hard_topic_cap_is_never_lifted() -> None:
    pool = [_item(f"p{index}", "politics", f"gov{index}", 10.0 - index) for index in range(6)]

    result = select_trend_items_for_plan(pool, SelectionConfig(max_hard_topics=2))

    assert len(result.items) == 10
    assert sum(1 for item in result.items if is_hard_category(item.category)) == 2
    assert result.audit.hard_count == 2


def test_entertainment_minimum_is_met_from_live_pool() -> None:
    pool = [_item(f"t{index}", "tech", f"tech{index}", 20.0 - index) for index in range(10)]
    pool += [
        _item("a1", "anime", "anime1", 1.0),
        _item("c1", "culture", "culture1", 0.9),
        _item("g1", "game", "game1", 0.8),
    ]

    result = select_trend_items_for_plan(pool, SelectionConfig(min_entertainment=3))

    entertainment = [item.id for item in result.items if is_entertainment_category(item.category)]
    assert set(entertainment) >= {"a1", "c1", "g1"}
    assert result.audit.fallback_count == 0


def test_duplicate_title_and_url_are_selected_once() -> None:
    pool = [
        _item("x1", "tech", "dup", 5.0, title="Same story", url="https://dup.example.com/s"),
        _item("x2", "tech", "dup", 4.0, title="same story ", url="https://DUP.example.com/s"),
    ]

    result = select_trend_items_for_plan(pool, SelectionConfig())

    ids = [item.id for item in result.items]
    assert "x1" in ids and "x2" not in ids
    assert len({candidate_hash(item) for item in result.items}) == len(result.items)


def test_selection_config_rejects_inconsistent_targets() -> None:
    with pytest.raises(ConfigurationError):
        SelectionConfig(target_total=0)
    with pytest.raises(ConfigurationError):
        SelectionConfig(target_total=5, target_deep_dive=3, target_quick_news=3)
    with pytest.raises(ConfigurationError):
        SelectionConfig(target_total=5, target_deep_dive=1, target_quick_news=1, min_entertainment=6)


def test_selection_config_from_settings_clamps_and_normalizes() -> None:
    settings = SelectionSettings(lookback_hours=100, category_caps={"Gaming": 2}, candidate_pool_size=0)

    config = SelectionConfig.from_settings(settings)

    assert config.lookback_hours == 48
    assert config.category_caps == {CanonicalCategory.GAME: 2}
    assert config.candidate_pool_size == 1
