"""GitHub collector: repository activity around a theme.

Volume is the number of distinct matching repositories seen across the
search pages; growth compares repositories created in the last 30 days with
the 30 days before. Search results carry no owner location, so the
geographic weights hold the owner-type split (User vs Organization);
repository languages feed the demographic weights.
"""
from __future__ import annotations

from collections import Counter
from datetime import timedelta
from typing import Any

from trendscout.collectors.base import BaseCollector, growth_rate, split_windows, weights
from trendscout.config import settings
from trendscout.models import Observation
from trendscout.models.entities import parse_ts

_API_URL = "https://api.github.com"
_WINDOW = timedelta(days=30)


class GitHubCollector(BaseCollector):
    """
    Config fields:
      - page_size: repositories per search page (default 50)
      - max_pages: search pages per theme (default 2)
    """

    source_id = "github"

    @property
    def is_configured(self) -> bool:
        return bool(settings.GITHUB_TOKEN)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"token {settings.GITHUB_TOKEN}",
            "Accept": "application/vnd.github.v3+json",
        }

    async def _search(self, query: str) -> list[dict[str, Any]]:
        repos: list[dict[str, Any]] = []
        for page in range(1, self.max_pages + 1):
            data = await self.get_json(
                f"{_API_URL}/search/repositories",
                params={
                    "q": query,
                    "sort": "stars",
                    "order": "desc",
                    "per_page": str(self.page_size),
                    "page": str(page),
                },
                headers=self._headers(),
            )
            items = data.get("items") or []
            repos.extend(items)
            if len(items) < self.page_size or len(repos) >= int(data.get("total_count", 0)):
                break
        return repos

    async def fetch_theme(self, theme: str, region: str) -> Observation | None:
        now = self.now()
        since = (now - _WINDOW).date().isoformat()

        repos = await self._search(f"{theme} in:name,description,readme")
        repos += await self._search(f"{theme} created:>{since}")

        unique: dict[Any, dict[str, Any]] = {}
        for repo in repos:
            unique.setdefault(repo.get("id"), repo)
        repos = list(unique.values())

        created = [ts for r in repos if (ts := parse_ts(r.get("created_at"))) is not None]
        recent, older = split_windows(created, now, _WINDOW)
        languages = Counter(r["language"] for r in repos if r.get("language"))
        owner_types = Counter(
            owner_type for r in repos if (owner_type := (r.get("owner") or {}).get("type"))
        )

        return Observation(
            source=self.source_id,
            search_volume=len(repos),
            growth_rate=growth_rate(recent, older),
            geographic_data=weights(owner_types),
            demographic_data=weights(languages),
            timestamp=self.observed_at(),
        )
