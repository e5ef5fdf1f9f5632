"""Product Hunt collector: launches posted under a theme's topic (GraphQL v2)."""
from __future__ import annotations

import logging
import re
from collections import Counter
from datetime import timedelta
from typing import Any

from trendscout.collectors.base import BaseCollector, growth_rate, split_windows, weights
from trendscout.collectors.errors import SourceError
from trendscout.config import settings
from trendscout.models import Observation
from trendscout.models.entities import parse_ts

logger = logging.getLogger(__name__)

_GRAPHQL_URL = "https://api.producthunt.com/v2/api/graphql"
_WINDOW = timedelta(days=30)

POSTS_QUERY = """
query ThemePosts($first: Int!, $after: String, $topic: String, $postedAfter: DateTime) {
    posts(first: $first, after: $after, order: NEWEST, topic: $topic, postedAfter: $postedAfter) {
        pageInfo {
            hasNextPage
            endCursor
        }
        edges {
            node {
                id
                name
                votesCount
                createdAt
                topics {
                    edges {
                        node {
                            slug
                        }
                    }
                }
            }
        }
    }
}
"""


def topic_slug(theme: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", theme.lower()).strip("-")


class ProductHuntCollector(BaseCollector):
    """
    Config fields:
      - page_size: posts per GraphQL page (default 20)
      - max_pages: cursor pages per theme (default 3)
    """

    source_id = "product-hunt"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.page_size = int(self.config.get("page_size", 20))
        self.max_pages = int(self.config.get("max_pages", 3))

    @property
    def is_configured(self) -> bool:
        return bool(settings.PRODUCT_HUNT_TOKEN)

    async def _graphql(self, variables: dict[str, Any]) -> dict[str, Any]:
        payload = await self.post_json(
            _GRAPHQL_URL,
            json={"query": POSTS_QUERY, "variables": variables},
            headers={"Authorization": f"Bearer {settings.PRODUCT_HUNT_TOKEN}"},
        )
        if payload.get("errors"):
            raise SourceError(f"GraphQL errors: {payload['errors']}")
        return payload.get("data") or {}

    async def fetch_theme(self, theme: str, region: str) -> Observation | None:
        now = self.now()
        posts: list[dict[str, Any]] = []
        cursor: str | None = None
        variables: dict[str, Any] = {
            "first": self.page_size,
            "topic": topic_slug(theme),
            "postedAfter": (now - 2 * _WINDOW).isoformat(),
        }

        for _ in range(self.max_pages):
            variables["after"] = cursor
            connection = (await self._graphql(variables)).get("posts") or {}
            posts.extend(e["node"] for e in connection.get("edges", []) if e.get("node"))
            page_info = connection.get("pageInfo") or {}
            cursor = page_info.get("endCursor")
            if not page_info.get("hasNextPage") or not cursor:
                break

        created = [ts for p in posts if (ts := parse_ts(p.get("createdAt"))) is not None]
        recent, older = split_windows(created, now, _WINDOW)

        topics: Counter = Counter()
        for post in posts:
            for edge in (post.get("topics") or {}).get("edges", []):
                if slug := (edge.get("node") or {}).get("slug"):
                    topics[slug] += 1

        return Observation(
            source=self.source_id,
            search_volume=len(posts),
            growth_rate=growth_rate(recent, older),
            # launches carry no maker location
            geographic_data={},
            demographic_data=weights(topics),
            timestamp=self.observed_at(),
        )
