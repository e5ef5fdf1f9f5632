"""Twitter/X collector: recent-search tweet volume for a theme (API v2)."""
from __future__ import annotations

import logging
from collections import Counter
from datetime import timedelta
from typing import Any

from trendscout.collectors.base import BaseCollector, growth_rate, split_windows, weights
from trendscout.config import settings
from trendscout.models import Observation
from trendscout.models.entities import parse_ts

logger = logging.getLogger(__name__)

_SEARCH_URL = "https://api.twitter.com/2/tweets/search/recent"
_WINDOW = timedelta(days=1)


class TwitterCollector(BaseCollector):
    """
    Config fields:
      - page_size: max_results per page, 10..100 (default 100)
      - max_pages: next_token pages per theme (default 2)
      - lang: optional language restriction added to the query
    """

    source_id = "twitter"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.page_size = min(100, max(10, int(self.config.get("page_size", 100))))

    @property
    def is_configured(self) -> bool:
        return bool(settings.TWITTER_BEARER_TOKEN)

    def _query(self, theme: str) -> str:
        query = f"{theme} -is:retweet"
        if lang := self.config.get("lang"):
            query += f" lang:{lang}"
        return query

    async def fetch_theme(self, theme: str, region: str) -> Observation | None:
        now = self.now()
        tweets: list[dict[str, Any]] = []
        users: dict[str, dict[str, Any]] = {}
        next_token: str | None = None

        for _ in range(self.max_pages):
            params = {
                "query": self._query(theme),
                "max_results": str(self.page_size),
                "tweet.fields": "created_at,author_id,lang",
                "expansions": "author_id",
                "user.fields": "location",
            }
            if next_token:
                params["next_token"] = next_token
            data = await self.get_json(
                _SEARCH_URL,
                params=params,
                headers={"Authorization": f"Bearer {settings.TWITTER_BEARER_TOKEN}"},
            )
            tweets.extend(data.get("data") or [])
            for user in (data.get("includes") or {}).get("users", []):
                users[user.get("id")] = user
            next_token = (data.get("meta") or {}).get("next_token")
            if not next_token:
                break

        created = [ts for t in tweets if (ts := parse_ts(t.get("created_at"))) is not None]
        recent, older = split_windows(created, now, _WINDOW)

        locations: Counter = Counter()
        for tweet in tweets:
            location = (users.get(tweet.get("author_id")) or {}).get("location")
            if location:
                locations[location.strip()] += 1
        languages = Counter(t["lang"] for t in tweets if t.get("lang"))

        return Observation(
            source=self.source_id,
            search_volume=len(tweets),
            growth_rate=growth_rate(recent, older),
            geographic_data=weights(locations),
            demographic_data=weights(languages),
            timestamp=self.observed_at(),
        )
