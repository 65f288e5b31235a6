from __future__ import annotations

from core.contracts import TrendCandidate
from trends.clustering import cluster_trend_items, group_by_host


def _item(item_id: str, title: str, url: str, score: float = 1.0, **kwargs) -> TrendCandidate:
    return TrendCandidate(id=item_id, title=title, url=url, score=score, source=kwargs.pop("source", "feed"), **kwargs)


def test_near_duplicate_titles_from_different_hosts_cluster_together() -> None:
    items = [
        _item("a", "Apple announces new iPhone", "https://a.example.com/1", score=2.0),
        _item("b", "Apple Announces NEW IPHONE!!", "https://b.example.org/2", score=1.0),
        _item("c", "Senate passes new budget bill", "https://c.example.net/3", score=1.5),
    ]

    clustered = cluster_trend_items(items)

    assert [item.id for item in clustered] == ["a", "c"]
    assert clustered[0].cluster_size == 2
    assert clustered[1].cluster_size == 1


def test_higher_scored_member_becomes_representative() -> None:
    items = [
        _item("low", "Apple announces new iPhone", "https://a.example.com/1", score=1.0, cluster_size=3),
        _item("high", "Apple Announces NEW IPHONE!!", "https://b.example.org/2", score=5.0),
    ]

    clustered = cluster_trend_items(items)

    assert len(clustered) == 1
    assert clustered[0].id == "high"
    assert clustered[0].cluster_size == 4


def test_group_by_host_keeps_best_item_per_host() -> None:
    items = [
        _item("first", "Story one", "https://www.same.example.com/1", score=1.0),
        _item("second", "Story two", "https://same.example.com/2", score=3.0),
        _item("other", "Story three", "https://other.example.com/3", score=0.5),
    ]

    kept = group_by_host(items)

    assert [item.id for item in kept] == ["second", "other"]


def test_empty_titles_never_merge_and_clusters_are_capped() -> None:
    items = [
        _item("x", "", "https://x.example.com/1", score=3.0),
        _item("y", "!!!", "https://y.example.com/1", score=2.0),
        _item("z", "Unrelated headline here", "https://z.example.com/1", score=1.0),
    ]

    assert [item.id for item in cluster_trend_items(items)] == ["x", "y", "z"]
    assert [item.id for item in cluster_trend_items(items, max_clusters=2)] == ["x", "y"]


def test_clustering_does_not_mutate_input() -> None:
    items = [
        _item("a", "Apple announces new iPhone", "https://a.example.com/1", score=2.0),
        _item("b", "Apple announces new iPhone", "https://b.example.com/1", score=1.0),
    ]

    cluster_trend_items(items)

    assert items[0].cluster_size == 1
