"""Source collectors against canned API responses (httpx.MockTransport)."""
import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from trendscout.collectors.errors import CollectorAborted
from trendscout.collectors.registry import CollectorRegistry, load_collector_configs, rate_limits_from_configs
from trendscout.collectors.sources.github import GitHubCollector
from trendscout.collectors.sources.google_trends import (
    FixtureBackend,
    GoogleTrendsCollector,
    SerpApiBackend,
    make_backend,
)
from trendscout.collectors.sources.product_hunt import ProductHuntCollector, topic_slug
from trendscout.collectors.sources.reddit import RedditCollector
from trendscout.collectors.sources.twitter import TwitterCollector

NOW = datetime(2024, 6, 15, 12, 30, tzinfo=timezone.utc)
BUCKET = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


def iso(delta: timedelta) -> str:
    return (NOW - delta).isoformat().replace("+00:00", "Z")


def build(cls, handler, governor, classifier, **config):
    return cls(
        {"id": cls.source_id, **config},
        governor,
        classifier,
        transport=httpx.MockTransport(handler),
        clock=lambda: NOW,
    )


# ---------------------------------------------------------------------------
# GitHub
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_github_collects_repositories(credentials, governor, classifier):
    seen_auth = []
    paths = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen_auth.append(request.headers.get("authorization"))
        path = request.url.path
        paths.append(path)
        if path == "/search/repositories":
            q = request.url.params["q"]
            if "created:>" in q:
                items = [
                    {"id": 2, "created_at": iso(timedelta(days=40)), "language": "Python",
                     "owner": {"login": "bob", "type": "User"}},
                    {"id": 3, "created_at": iso(timedelta(days=10)), "language": "Go",
                     "owner": {"login": "acme", "type": "Organization"}},
                ]
            else:
                items = [
                    {"id": 1, "created_at": iso(timedelta(days=5)), "language": "Python",
                     "owner": {"login": "alice", "type": "User"}},
                    {"id": 2, "created_at": iso(timedelta(days=40)), "language": "Python",
                     "owner": {"login": "bob", "type": "User"}},
                ]
            return httpx.Response(200, json={"total_count": 2, "items": items})
        return httpx.Response(404, json={"message": "Not Found"})

    collector = build(GitHubCollector, handler, governor, classifier, page_size=50, max_pages=2)
    [obs] = await collector.collect(["habit tracker"])

    assert obs.source == "github"
    assert obs.search_volume == 3
    assert obs.growth_rate == 100.0
    assert obs.demographic_data == {"Python": 0.6667, "Go": 0.3333}
    assert obs.geographic_data == {"User": 0.6667, "Organization": 0.3333}
    assert obs.timestamp == BUCKET
    assert obs.theme_title == "habit tracker"
    assert set(seen_auth) == {"token gh-token"}
    # owner data comes from the search payload, no per-user lookups
    assert set(paths) == {"/search/repositories"}
    assert governor.remaining("github") == 5000 - 2


def test_github_requires_token(no_credentials, governor, classifier):
    collector = GitHubCollector({"id": "github"}, governor, classifier)
    assert not collector.is_configured


@pytest.mark.asyncio
async def test_github_rejected_token_aborts_run(credentials, governor, classifier):
    def handler(request):
        return httpx.Response(401, json={"message": "Bad credentials"})

    collector = build(GitHubCollector, handler, governor, classifier)
    with pytest.raises(CollectorAborted):
        await collector.collect(["a", "b"])
    assert classifier.error_summary()["by_severity"]["critical"] == 1


# ---------------------------------------------------------------------------
# Reddit
# ---------------------------------------------------------------------------

def reddit_post(post_id, days_ago):
    created = (NOW - timedelta(days=days_ago)).timestamp()
    return {"data": {"id": post_id, "created_utc": created}}


@pytest.mark.asyncio
async def test_reddit_searches_subreddits_with_paging(credentials, governor, classifier):
    token_calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "www.reddit.com":
            token_calls.append(request.headers.get("authorization"))
            return httpx.Response(200, json={"access_token": "tok", "expires_in": 3600})
        assert request.headers["authorization"] == "Bearer tok"
        path = request.url.path
        if path == "/subreddits/search":
            children = [{"data": {"display_name": "productivity"}}, {"data": {"display_name": "getdisciplined"}}]
            return httpx.Response(200, json={"data": {"children": children}})
        if path == "/r/productivity/search":
            if request.url.params.get("after") == "t3_b":
                return httpx.Response(200, json={"data": {"children": [reddit_post("c", 10)], "after": None}})
            return httpx.Response(
                200,
                json={"data": {"children": [reddit_post("a", 1), reddit_post("b", 2)], "after": "t3_b"}},
            )
        if path == "/r/getdisciplined/search":
            return httpx.Response(
                200, json={"data": {"children": [reddit_post("a", 1), reddit_post("d", 3)], "after": None}}
            )
        return httpx.Response(404)

    collector = build(RedditCollector, handler, governor, classifier, page_size=25, max_pages=2)
    [obs] = await collector.collect(["habit tracker"])

    assert obs.search_volume == 4
    assert obs.growth_rate == 200.0
    assert obs.geographic_data == {"productivity": 0.75, "getdisciplined": 0.25}
    assert sum(obs.demographic_data.values()) == pytest.approx(1.0, abs=0.001)
    assert all(k.startswith("hour_") for k in obs.demographic_data)
    assert len(token_calls) == 1
    assert token_calls[0].startswith("Basic ")


@pytest.mark.asyncio
async def test_reddit_refreshes_expired_token(credentials, governor, classifier):
    tokens = iter(["stale", "fresh"])

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "www.reddit.com":
            return httpx.Response(200, json={"access_token": next(tokens), "expires_in": 3600})
        if request.headers["authorization"] == "Bearer stale":
            return httpx.Response(401)
        if request.url.path == "/subreddits/search":
            return httpx.Response(200, json={"data": {"children": [{"data": {"display_name": "apps"}}]}})
        return httpx.Response(200, json={"data": {"children": [reddit_post("x", 1)], "after": None}})

    collector = build(RedditCollector, handler, governor, classifier)
    [obs] = await collector.collect(["habit tracker"])
    assert obs.search_volume == 1
    assert obs.geographic_data == {"apps": 1.0}


# ---------------------------------------------------------------------------
# Twitter
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_twitter_pages_recent_search(credentials, governor, classifier):
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if "next_token" not in request.url.params:
            return httpx.Response(
                200,
                json={
                    "data": [
                        {"id": "1", "author_id": "u1", "lang": "en", "created_at": iso(timedelta(hours=2))},
                        {"id": "2", "author_id": "u1", "lang": "en", "created_at": iso(timedelta(hours=5))},
                    ],
                    "includes": {"users": [{"id": "u1", "location": "London"}, {"id": "u2"}]},
                    "meta": {"next_token": "n1"},
                },
            )
        return httpx.Response(
            200,
            json={
                "data": [{"id": "3", "author_id": "u2", "lang": "es", "created_at": iso(timedelta(hours=30))}],
                "meta": {},
            },
        )

    collector = build(TwitterCollector, handler, governor, classifier, page_size=500, max_pages=3)
    [obs] = await collector.collect(["habit tracker"])

    assert len(requests) == 2
    assert requests[0].url.params["max_results"] == "100"
    assert requests[0].url.params["query"] == "habit tracker -is:retweet"
    assert requests[0].headers["authorization"] == "Bearer tw-token"
    assert obs.search_volume == 3
    assert obs.growth_rate == 100.0
    assert obs.geographic_data == {"London": 1.0}
    assert obs.demographic_data == {"en": 0.6667, "es": 0.3333}


def test_twitter_page_size_is_clamped(governor, classifier):
    assert TwitterCollector({"page_size": 5}, governor, classifier).page_size == 10
    assert TwitterCollector({"page_size": 500}, governor, classifier).page_size == 100


# ---------------------------------------------------------------------------
# Product Hunt
# ---------------------------------------------------------------------------

def ph_post(post_id, days_ago, topics):
    return {
        "node": {
            "id": post_id,
            "name": f"Post {post_id}",
            "votesCount": 10,
            "createdAt": iso(timedelta(days=days_ago)),
            "topics": {"edges": [{"node": {"slug": s}} for s in topics]},
        }
    }


@pytest.mark.asyncio
async def test_product_hunt_cursor_paging(credentials, governor, classifier):
    variables = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        variables.append(body["variables"])
        if body["variables"]["after"] is None:
            posts = {
                "pageInfo": {"hasNextPage": True, "endCursor": "c1"},
                "edges": [ph_post("1", 3, ["productivity", "habits"])],
            }
        else:
            posts = {
                "pageInfo": {"hasNextPage": False, "endCursor": "c2"},
                "edges": [ph_post("2", 40, ["productivity"])],
            }
        return httpx.Response(200, json={"data": {"posts": posts}})

    collector = build(ProductHuntCollector, handler, governor, classifier)
    [obs] = await collector.collect(["Habit Tracker"])

    assert [v["after"] for v in variables] == [None, "c1"]
    assert variables[0]["topic"] == "habit-tracker"
    assert obs.search_volume == 2
    assert obs.growth_rate == 0.0
    assert obs.geographic_data == {}
    assert obs.demographic_data == {"productivity": 0.6667, "habits": 0.3333}


@pytest.mark.asyncio
async def test_product_hunt_graphql_errors_skip_theme(credentials, governor, classifier):
    def handler(request):
        return httpx.Response(200, json={"errors": [{"message": "topic not found"}]})

    collector = build(ProductHuntCollector, handler, governor, classifier)
    assert await collector.collect(["habit tracker"]) == []
    assert classifier.error_summary()["by_source"]["product-hunt"] >= 1


def test_topic_slug():
    assert topic_slug("  AI Meeting-Notes!! ") == "ai-meeting-notes"


# ---------------------------------------------------------------------------
# Search interest
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_fixture_backend_is_deterministic(governor, classifier):
    collector = GoogleTrendsCollector(
        {"id": "google-trends"}, governor, classifier, backend=FixtureBackend(), clock=lambda: NOW
    )
    [first] = await collector.collect(["habit tracker"], region="US")
    [second] = await collector.collect(["habit tracker"], region="US")

    assert first.search_volume == second.search_volume
    assert first.growth_rate == second.growth_rate
    assert first.search_volume > 0
    assert all(k.startswith("US-") for k in first.geographic_data)
    assert first.demographic_data == {}


@pytest.mark.asyncio
async def test_serpapi_backend_reads_timeseries_and_regions(credentials, governor, classifier):
    data_types = []

    def handler(request: httpx.Request) -> httpx.Response:
        params = request.url.params
        assert params["engine"] == "google_trends"
        assert params["api_key"] == "serp-key"
        data_types.append(params["data_type"])
        if params["data_type"] == "TIMESERIES":
            timeline = [
                {"timestamp": str(int((NOW - timedelta(days=d)).timestamp())), "values": [{"extracted_value": v}]}
                for d, v in ((45, 40), (20, 30), (5, 50))
            ]
            return httpx.Response(200, json={"interest_over_time": {"timeline_data": timeline}})
        return httpx.Response(
            200,
            json={"interest_by_region": [
                {"location": "California", "extracted_value": 100},
                {"location": "Texas", "extracted_value": 50},
            ]},
        )

    collector = GoogleTrendsCollector(
        {"id": "google-trends"},
        governor,
        classifier,
        backend=SerpApiBackend(),
        transport=httpx.MockTransport(handler),
        clock=lambda: NOW,
    )
    [obs] = await collector.collect(["habit tracker"])

    assert data_types == ["TIMESERIES", "GEO_MAP_0"]
    assert obs.search_volume == 120
    assert obs.growth_rate == 100.0
    assert obs.geographic_data == {"California": 0.6667, "Texas": 0.3333}


def test_backend_selection(no_credentials, monkeypatch, governor, classifier):
    assert isinstance(make_backend("fixture"), FixtureBackend)
    with pytest.raises(ValueError):
        make_backend("scraper")

    from trendscout.config import settings

    monkeypatch.setattr(settings, "TRENDS_BACKEND", "serpapi")
    collector = GoogleTrendsCollector({"id": "google-trends"}, governor, classifier)
    assert isinstance(collector.backend, SerpApiBackend)
    assert not collector.is_configured


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

def test_registry_builds_every_source(governor, classifier):
    configs = load_collector_configs()
    assert set(configs) == set(CollectorRegistry.list_sources())
    for source_id in CollectorRegistry.list_sources():
        collector = CollectorRegistry.create_collector(
            source_id, governor, classifier, config=configs.get(source_id)
        )
        assert collector.source_id == source_id

    with pytest.raises(ValueError):
        CollectorRegistry.create_collector("myspace", governor, classifier)


def test_rate_limits_follow_config():
    limits = rate_limits_from_configs({"reddit": {"request_limit": 10, "window_seconds": 5}})
    assert limits["reddit"].request_limit == 10
    assert limits["reddit"].window_seconds == 5
    assert limits["github"].request_limit == 5000
