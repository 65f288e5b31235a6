from __future__ import annotations

from core.contracts import CanonicalCategory
from trends.digest import (
    DEFAULT_EXCLUDED_KEYWORDS,
    DEFAULT_EXCLUDED_SOURCE_CATEGORIES,
    DEFAULT_TREND_DENY_KEYWORDS,
    TrendDigestConfig,
    TrendDigestSourceItem,
    build_trend_digest,
    matches_excluded_keyword,
    resolve_digest_config,
    screen_digest_items,
)


def _item(item_id: str, title: str, category: str = "entertainment", score: float = 1.0, **kwargs) -> TrendDigestSourceItem:
    return TrendDigestSourceItem(
        id=item_id,
        title=title,
        summary=kwargs.pop("summary", "First sentence. Second sentence. Third sentence."),
        source=kwargs.pop("source", "Feed"),
        url=kwargs.pop("url", f"https://news.example.com/{item_id}"),
        category=category,
        score=score,
        published_at=kwargs.pop("published_at", "2024-01-01T00:00:00+00:00"),
        **kwargs,
    )


def test_digest_cleans_markup_from_titles() -> None:
    result = build_trend_digest([_item("a", "<a href='https://x.com'>Big Game &#8217;</a>")])

    assert result.used_count == 1
    title = result.items[0].cleaned_title
    assert "Big Game" in title
    for token in ("<a", "http", "&#", "<", ">"):
        assert token not in title


def test_digest_item_fields_are_filled() -> None:
    item = build_trend_digest([_item("a", "Concert tour announced", summary="")]).items[0]

    assert item.what_happened.endswith("。")
    assert "Concert tour announced" in item.what_happened
    assert item.why_it_matters.endswith("。")
    assert item.tone_tag == "fun"
    assert item.category is CanonicalCategory.ENTERTAINMENT


def test_digest_summarizes_to_two_sentences() -> None:
    item = build_trend_digest([_item("a", "Festival lineup")]).items[0]
    assert item.what_happened == "First sentence. Second sentence."


def test_digest_rejects_empty_denied_disallowed_and_duplicate_items() -> None:
    items = [
        _item("empty", "<b></b>"),
        _item("denied", "Cocaine bust at the harbor", category="culture"),
        _item("keep", "New season trailer", url="https://a.example.com/x"),
        _item("dup", "new season trailer ", url="https://a.example.com/x"),
        _item("tech", "Chip launch", category="tech"),
    ]
    config = resolve_digest_config(allow_categories="entertainment,culture")

    result = build_trend_digest(items, config)

    assert [item.id for item in result.items] == ["keep"]
    assert result.filtered_count == 4


def test_digest_anchors_entertainment_and_caps_hard_news() -> None:
    items = [
        _item("p1", "Budget vote", category="politics", score=9.0),
        _item("p2", "Cabinet reshuffle", category="politics", score=8.0),
        _item("t1", "Chip launch", category="tech", score=7.0),
        _item("e1", "Drama finale", category="entertainment", score=1.0),
    ]

    result = build_trend_digest(items, TrendDigestConfig(max_hard_news=1, max_items=3))

    assert [item.id for item in result.items] == ["e1", "p1", "t1"]
    assert result.category_distribution == {"entertainment": 1, "policy": 1, "tech": 1}
    assert result.filtered_count == 1


def test_digest_order_is_deterministic() -> None:
    items = [
        _item("old", "Older story", category="tech", score=2.0, published_at="2024-01-01T00:00:00+00:00"),
        _item("new", "Newer story", category="tech", score=2.0, published_at="2024-01-02T00:00:00+00:00"),
        _item("big", "Bigger cluster", category="tech", score=2.0, cluster_size=5),
    ]

    first = build_trend_digest(items)
    second = build_trend_digest(list(items))

    assert [item.id for item in first.items] == ["big", "new", "old"]
    assert [item.id for item in first.items] == [item.id for item in second.items]


def test_resolve_digest_config_defaults() -> None:
    config = resolve_digest_config(deny_keywords="", allow_categories="Gaming, film", max_hard_news="0", max_items="x")

    assert config.deny_keywords == DEFAULT_TREND_DENY_KEYWORDS
    assert config.allow_categories == (CanonicalCategory.GAME, CanonicalCategory.MOVIE)
    assert config.max_hard_news == 1
    assert config.max_items == 12
    assert config.excluded_source_categories == DEFAULT_EXCLUDED_SOURCE_CATEGORIES
    assert config.excluded_keywords == DEFAULT_EXCLUDED_KEYWORDS


def test_digest_excludes_finance_by_source_category_and_keyword() -> None:
    items = [
        _item("stocks", "Market wrap", category="business", source_category=" Stocks "),
        _item("fx", "Yen weakens overnight", category="business", summary="FX desks were busy."),
        _item("jp", "新しい投資信託が登場", category="culture", summary=""),
        _item("coin", "Ethereum upgrade", category="tech", summary="ETH fees drop."),
        _item("business", "Retail chain opens flagship", category="business"),
        _item("together", "Bands play together again", category="entertainment", summary="Fans gather."),
    ]

    result = build_trend_digest(items)

    assert {item.id for item in result.items} == {"business", "together"}
    assert result.filtered_count == 4


def test_excluded_keywords_are_configurable() -> None:
    config = resolve_digest_config(excluded_source_categories="gossip", excluded_keywords="rumor")
    items = [
        _item("g", "Celebrity sighting", source_category="gossip"),
        _item("r", "Rumor mill spins", category="culture"),
        _item("c", "Crypto art show opens", category="culture"),
    ]

    assert [item.id for item in build_trend_digest(items, config).items] == ["c"]
    assert matches_excluded_keyword("Together at last", DEFAULT_EXCLUDED_KEYWORDS) is None
    assert matches_excluded_keyword("今日の為替", DEFAULT_EXCLUDED_KEYWORDS) == "為替"


def test_screen_keeps_every_survivor_without_composition() -> None:
    items = [_item(f"p{index}", f"Vote round {name}", category="politics", score=5.0 - index) for index, name in enumerate("abc")]
    items += [_item(f"t{index}", f"Chip story {name}", category="tech", score=3.0) for index, name in enumerate("defghijklmnop")]

    screened, rejected = screen_digest_items(items)

    assert len(screened) == 16
    assert rejected == 0
    assert [item.id for item in screened[:3]] == ["p0", "p1", "p2"]
    assert len(build_trend_digest(items).items) == 12
