"""Reddit collector: post activity around a theme in related subreddits."""
from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from trendscout.collectors.base import BaseCollector, growth_rate, split_windows, weights
from trendscout.collectors.errors import SourceError
from trendscout.config import settings
from trendscout.models import Observation

logger = logging.getLogger(__name__)

_TOKEN_URL = "https://www.reddit.com/api/v1/access_token"
_API_URL = "https://oauth.reddit.com"
_WINDOW = timedelta(days=7)
_FALLBACK_SUBREDDITS = ["programming", "entrepreneur", "startups", "technology", "webdev"]


class RedditCollector(BaseCollector):
    """
    Config fields:
      - page_size: posts per subreddit search page (default 25)
      - max_pages: pages per subreddit (default 2)
      - max_subreddits: subreddits searched per theme (default 5)
    """

    source_id = "reddit"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.page_size = int(self.config.get("page_size", 25))
        self._token: str | None = None
        self._token_expiry: datetime | None = None

    @property
    def is_configured(self) -> bool:
        return bool(settings.REDDIT_CLIENT_ID and settings.REDDIT_CLIENT_SECRET)

    async def _ensure_token(self) -> str:
        if self._token and self._token_expiry and self.now() < self._token_expiry:
            return self._token
        data = await self.post_json(
            _TOKEN_URL,
            data={"grant_type": "client_credentials"},
            auth=httpx.BasicAuth(settings.REDDIT_CLIENT_ID, settings.REDDIT_CLIENT_SECRET),
        )
        self._token = data["access_token"]
        # refresh a minute early
        expires_in = int(data.get("expires_in", 3600))
        self._token_expiry = self.now() + timedelta(seconds=max(0, expires_in - 60))
        return self._token

    async def _api(self, path: str, params: dict[str, str]) -> dict[str, Any]:
        token = await self._ensure_token()
        return await self.get_json(
            f"{_API_URL}{path}",
            params=params,
            headers={"Authorization": f"Bearer {token}"},
        )

    async def _find_subreddits(self, theme: str) -> list[str]:
        limit = int(self.config.get("max_subreddits", 5))
        try:
            data = await self._api("/subreddits/search", {"q": theme, "limit": "10"})
        except SourceError as e:
            if e.status in (401, 403, 429):
                raise
            logger.debug("Subreddit search failed for %r, using fallback: %s", theme, e)
            return _FALLBACK_SUBREDDITS[:limit]
        names = [
            c["data"]["display_name"]
            for c in (data.get("data") or {}).get("children", [])
            if (c.get("data") or {}).get("display_name")
        ]
        return names[:limit] or _FALLBACK_SUBREDDITS[:limit]

    async def _subreddit_posts(self, subreddit: str, theme: str) -> list[dict[str, Any]]:
        posts: list[dict[str, Any]] = []
        after: str | None = None
        for _ in range(self.max_pages):
            params = {
                "q": theme,
                "restrict_sr": "1",
                "sort": "new",
                "t": "month",
                "limit": str(self.page_size),
            }
            if after:
                params["after"] = after
            listing = (await self._api(f"/r/{subreddit}/search", params)).get("data") or {}
            posts.extend(c["data"] for c in listing.get("children", []) if c.get("data"))
            after = listing.get("after")
            if not after:
                break
        return posts

    async def fetch_theme(self, theme: str, region: str) -> Observation | None:
        try:
            return await self._fetch(theme)
        except SourceError as e:
            if e.status != 401:
                raise
            # expired token: refresh once and retry immediately
            self._token = None
            return await self._fetch(theme)

    async def _fetch(self, theme: str) -> Observation:
        now = self.now()
        per_subreddit: Counter = Counter()
        hours: Counter = Counter()
        created: list[datetime] = []
        seen: set[str] = set()

        for subreddit in await self._find_subreddits(theme):
            for post in await self._subreddit_posts(subreddit, theme):
                post_id = post.get("id") or post.get("name") or post.get("permalink")
                if post_id in seen:
                    continue
                seen.add(post_id)
                per_subreddit[subreddit] += 1
                if (utc := post.get("created_utc")) is not None:
                    ts = datetime.fromtimestamp(float(utc), tz=timezone.utc)
                    created.append(ts)
                    hours[f"hour_{ts.hour:02d}"] += 1

        recent, older = split_windows(created, now, _WINDOW)
        return Observation(
            source=self.source_id,
            search_volume=len(seen),
            growth_rate=growth_rate(recent, older),
            geographic_data=weights(per_subreddit),
            demographic_data=weights(hours, top=24),
            timestamp=self.observed_at(),
        )
