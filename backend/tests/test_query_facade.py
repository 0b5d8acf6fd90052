from datetime import date, timedelta

import pytest

from searchpulse.services import query_facade
from searchpulse.services.detection import detect_opportunities

TODAY = date(2026, 10, 19)


def test_dashboard_totals(db_session, seed_keyword) -> None:
    seed_keyword("seo tools", position=4, impressions=1000, ctr=0.1)
    seed_keyword("rank tracker", position=8, impressions=200, ctr=0.05)

    totals = query_facade.get_dashboard_totals(db_session, 28, today=TODAY)

    assert totals["total_impressions"] == 1200
    assert totals["total_clicks"] == 110
    assert totals["avg_position"] == pytest.approx(6.0)
    assert totals["avg_ctr"] == pytest.approx(0.075)


def test_totals_on_empty_store(db_session) -> None:
    totals = query_facade.get_dashboard_totals(db_session, 7, today=TODAY)
    assert totals == {"total_clicks": 0, "total_impressions": 0, "avg_ctr": None, "avg_position": None}


def test_top_queries_ordered_by_clicks(db_session, seed_keyword) -> None:
    seed_keyword("few clicks", position=4, impressions=100, ctr=0.1)
    seed_keyword("many clicks", position=9, impressions=2000, ctr=0.1)

    top = query_facade.get_top_queries(db_session, 28, limit=1, today=TODAY)

    assert [row["keyword"] for row in top] == ["many clicks"]
    assert top[0]["clicks"] == 200


def test_top_pages_include_content_id(db_session, seed_page) -> None:
    seed_page("https://example.com/a", TODAY - timedelta(days=2), content_id="1", clicks=5)
    seed_page("https://example.com/b", TODAY - timedelta(days=2), clicks=50)

    top = query_facade.get_top_pages(db_session, 28, today=TODAY)

    assert [(row["url"], row["content_id"]) for row in top] == [
        ("https://example.com/b", None),
        ("https://example.com/a", "1"),
    ]


@pytest.mark.parametrize("days", [0, -1])
def test_non_positive_days_are_rejected(db_session, days: int) -> None:
    with pytest.raises(ValueError):
        query_facade.get_top_queries(db_session, days, today=TODAY)


def test_opportunity_listing_filters_and_orders(db_session, seed_keyword) -> None:
    seed_keyword("x", position=15, impressions=500)
    seed_keyword("x2", position=12, impressions=900)
    seed_keyword("w", position=35, impressions=300)
    detect_opportunities(db_session, as_of=TODAY)
    db_session.commit()

    quick_wins = query_facade.get_opportunities(db_session, "quick_win")
    assert [row.keyword for row in quick_wins] == ["x2", "x"]
    assert query_facade.get_opportunity_counts(db_session) == {
        "quick_win": 2,
        "low_ctr": 0,
        "declining": 0,
        "content_gap": 1,
    }
    assert len(query_facade.get_opportunities(db_session, limit=1, offset=1)) == 1

    with pytest.raises(ValueError):
        query_facade.get_opportunities(db_session, "unknown")


def test_classify_trend() -> None:
    assert query_facade.classify_trend(4.0, 10.0) == "rising"
    assert query_facade.classify_trend(10.0, 4.0) == "declining"
    assert query_facade.classify_trend(5.0, 6.5) == "stable"
    assert query_facade.classify_trend(None, 6.5) == "stable"


def test_content_trend_compares_recent_and_older_windows(db_session, seed_page) -> None:
    for offset in range(1, 6):
        seed_page("https://example.com/guide", TODAY - timedelta(days=offset), content_id="55", position=4.0)
    for offset in range(10, 21):
        seed_page("https://example.com/guide", TODAY - timedelta(days=offset), content_id="55", position=10.0)

    trend = query_facade.get_content_trend(db_session, "55", today=TODAY)

    assert trend is not None
    assert trend["page"]["url"] == "https://example.com/guide"
    assert trend["recent_position"] == pytest.approx(4.0)
    assert trend["older_position"] == pytest.approx(10.0)
    assert trend["trend"] == "rising"


def test_content_trend_missing_content(db_session) -> None:
    assert query_facade.get_content_trend(db_session, "404", today=TODAY) is None


def test_content_rankings_sorted_by_average_position(db_session, seed_page) -> None:
    seed_page("https://example.com/a", TODAY - timedelta(days=1), content_id="a", position=12.0)
    seed_page("https://example.com/b", TODAY - timedelta(days=1), content_id="b", position=2.333)
    seed_page("https://example.com/untracked", TODAY - timedelta(days=1), position=1.0)
    seed_page("https://example.com/c", TODAY - timedelta(days=45), content_id="c", position=1.0)

    rankings = query_facade.get_content_rankings(db_session, today=TODAY)

    assert [row["content_id"] for row in rankings] == ["b", "a"]
    assert rankings[0]["avg_position"] == 2.33


def test_build_dashboard_combines_sections(db_session, seed_keyword) -> None:
    seed_keyword("x", position=15, impressions=500)
    detect_opportunities(db_session, as_of=TODAY)
    db_session.commit()

    dashboard = query_facade.build_dashboard(db_session, 28, "sc-domain:example.com", today=TODAY)

    assert dashboard["totals"]["total_impressions"] == 500
    assert dashboard["top_queries"][0]["keyword"] == "x"
    assert dashboard["opportunity_counts"]["quick_win"] == 1
    assert dashboard["last_sync"] is None
    assert dashboard["last_status"] is None


def test_build_dashboard_serves_cached_payload(db_session, monkeypatch) -> None:
    class _FakeRedis:
        def __init__(self) -> None:
            self.store: dict[str, str] = {}

        def get(self, key: str):
            return self.store.get(key)

        def setex(self, key: str, _ttl: int, value: str) -> None:
            self.store[key] = value

    fake = _FakeRedis()
    monkeypatch.setattr("searchpulse.services.query_facade.get_redis_client", lambda: fake)

    first = query_facade.build_dashboard(db_session, 28, "sc-domain:example.com", today=TODAY)
    [cache_key] = fake.store
    assert cache_key == "searchpulse:dashboard:sc-domain:example.com:28:never"

    fake.store[cache_key] = '{"totals": "cached"}'
    second = query_facade.build_dashboard(db_session, 28, "sc-domain:example.com", today=TODAY)

    assert first["totals"]["total_clicks"] == 0
    assert second == {"totals": "cached"}
