"""Storage interface over the theme/trend relations.

`SupabaseStore` talks to the hosted Postgres through supabase-py (its calls
block, so each one runs in a worker thread). `MemoryStore` keeps the same
relations in process for local runs without Supabase and for tests.

Conflict targets:
  - trend_data: (theme_id, source, timestamp)
  - theme_insights: (theme_id, type)

trend_data.timestamp is the bucketed observation time; trend_data.created_at
is the write time, refreshed on every upsert, and is what change polling reads.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from trendscout.models import AlertRule, Insight, Observation, Theme
from trendscout.models.entities import format_ts, parse_ts

logger = logging.getLogger(__name__)

OBSERVATION_CONFLICT = "theme_id,source,timestamp"
INSIGHT_CONFLICT = "theme_id,type"


class StoreError(Exception):
    """A storage read or write failed."""


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so a title matches only itself (case-insensitively)."""
    return value.replace("\\", "\\\\").replace("%", r"\%").replace("_", r"\_")


class TrendStore(ABC):
    # -- themes ---------------------------------------------------------------

    @abstractmethod
    async def find_theme_by_title(self, title: str) -> Theme | None: ...

    @abstractmethod
    async def create_theme(self, theme: Theme) -> Theme: ...

    @abstractmethod
    async def get_theme(self, theme_id: str) -> Theme | None: ...

    @abstractmethod
    async def update_theme(self, theme_id: str, fields: dict[str, Any]) -> None: ...

    @abstractmethod
    async def list_stale_themes(
        self, *, limit: int, offset: int = 0, updated_before: datetime | None = None
    ) -> list[Theme]:
        """Themes ordered by updated_at ascending (least recently updated first)."""

    @abstractmethod
    async def list_themes_created_since(self, since: datetime) -> list[Theme]: ...

    @abstractmethod
    async def list_themes_updated_since(self, since: datetime) -> list[Theme]: ...

    # -- observations ---------------------------------------------------------

    @abstractmethod
    async def upsert_observations(self, observations: list[Observation]) -> int: ...

    @abstractmethod
    async def list_observations(
        self, theme_id: str, *, since: datetime | None = None
    ) -> list[Observation]: ...

    @abstractmethod
    async def list_observations_since(self, since: datetime, *, limit: int) -> list[Observation]:
        """Observations written (created or re-upserted) at or after `since`, newest first."""

    @abstractmethod
    async def observed_theme_ids(self, source: str, timestamp: datetime) -> set[str]:
        """Theme ids that already have an observation from `source` at `timestamp`."""

    @abstractmethod
    async def delete_observations_before(self, cutoff: datetime) -> int: ...

    # -- insights -------------------------------------------------------------

    @abstractmethod
    async def upsert_insights(self, insights: list[Insight]) -> int: ...

    @abstractmethod
    async def list_insights(self, theme_id: str) -> list[Insight]: ...

    @abstractmethod
    async def delete_insights(self, theme_id: str, types: list[str]) -> int: ...

    # -- alerts, users, notifications, runs -----------------------------------

    @abstractmethod
    async def list_active_alerts(self, theme_id: str | None = None) -> list[AlertRule]: ...

    @abstractmethod
    async def list_paid_user_ids(self, *, limit: int) -> list[str]: ...

    @abstractmethod
    async def insert_notifications(self, rows: list[dict[str, Any]]) -> int: ...

    @abstractmethod
    async def insert_collection_run(self, row: dict[str, Any]) -> dict[str, Any]: ...


# ---------------------------------------------------------------------------
# Supabase
# ---------------------------------------------------------------------------


class SupabaseStore(TrendStore):
    def __init__(self, client) -> None:
        self.sb = client

    async def _execute(self, query, action: str):
        try:
            return await asyncio.to_thread(query.execute)
        except Exception as e:
            raise StoreError(f"{action} failed: {e}") from e

    async def find_theme_by_title(self, title: str) -> Theme | None:
        result = await self._execute(
            self.sb.table("themes").select("*").ilike("title", escape_like(title)).limit(1),
            "find theme",
        )
        rows = result.data or []
        return Theme.from_row(rows[0]) if rows else None

    async def create_theme(self, theme: Theme) -> Theme:
        row = theme.to_row()
        row.pop("id", None)
        result = await self._execute(self.sb.table("themes").insert(row), "create theme")
        return Theme.from_row((result.data or [row])[0])

    async def get_theme(self, theme_id: str) -> Theme | None:
        result = await self._execute(
            self.sb.table("themes").select("*").eq("id", theme_id).limit(1), "get theme"
        )
        rows = result.data or []
        return Theme.from_row(rows[0]) if rows else None

    async def update_theme(self, theme_id: str, fields: dict[str, Any]) -> None:
        await self._execute(
            self.sb.table("themes").update(_serialize(fields)).eq("id", theme_id),
            f"update theme {theme_id}",
        )

    async def list_stale_themes(
        self, *, limit: int, offset: int = 0, updated_before: datetime | None = None
    ) -> list[Theme]:
        query = self.sb.table("themes").select("*")
        if updated_before is not None:
            query = query.lt("updated_at", format_ts(updated_before))
        query = query.order("updated_at", desc=False).range(offset, offset + limit - 1)
        result = await self._execute(query, "list stale themes")
        return [Theme.from_row(r) for r in result.data or []]

    async def list_themes_created_since(self, since: datetime) -> list[Theme]:
        result = await self._execute(
            self.sb.table("themes").select("*").gte("created_at", format_ts(since)),
            "list new themes",
        )
        return [Theme.from_row(r) for r in result.data or []]

    async def list_themes_updated_since(self, since: datetime) -> list[Theme]:
        result = await self._execute(
            self.sb.table("themes")
            .select("*")
            .gte("updated_at", format_ts(since))
            .order("updated_at", desc=False),
            "list updated themes",
        )
        return [Theme.from_row(r) for r in result.data or []]

    async def upsert_observations(self, observations: list[Observation]) -> int:
        if not observations:
            return 0
        rows = [o.to_row() for o in observations]
        await self._execute(
            self.sb.table("trend_data").upsert(rows, on_conflict=OBSERVATION_CONFLICT),
            "upsert trend_data",
        )
        return len(rows)

    async def list_observations(
        self, theme_id: str, *, since: datetime | None = None
    ) -> list[Observation]:
        query = self.sb.table("trend_data").select("*").eq("theme_id", theme_id)
        if since is not None:
            query = query.gte("timestamp", format_ts(since))
        result = await self._execute(query.order("timestamp", desc=True), "list trend_data")
        return [Observation.from_row(r) for r in result.data or []]

    async def list_observations_since(self, since: datetime, *, limit: int) -> list[Observation]:
        result = await self._execute(
            self.sb.table("trend_data")
            .select("*")
            .gte("created_at", format_ts(since))
            .order("created_at", desc=True)
            .limit(limit),
            "list recent trend_data",
        )
        return [Observation.from_row(r) for r in result.data or []]

    async def observed_theme_ids(self, source: str, timestamp: datetime) -> set[str]:
        result = await self._execute(
            self.sb.table("trend_data")
            .select("theme_id")
            .eq("source", source)
            .eq("timestamp", format_ts(timestamp)),
            "check observed themes",
        )
        return {r["theme_id"] for r in result.data or []}

    async def delete_observations_before(self, cutoff: datetime) -> int:
        result = await self._execute(
            self.sb.table("trend_data").delete().lt("timestamp", format_ts(cutoff)),
            "purge trend_data",
        )
        return len(result.data or [])

    async def upsert_insights(self, insights: list[Insight]) -> int:
        if not insights:
            return 0
        await self._execute(
            self.sb.table("theme_insights").upsert(
                [i.to_row() for i in insights], on_conflict=INSIGHT_CONFLICT
            ),
            "upsert theme_insights",
        )
        return len(insights)

    async def list_insights(self, theme_id: str) -> list[Insight]:
        result = await self._execute(
            self.sb.table("theme_insights").select("*").eq("theme_id", theme_id),
            "list theme_insights",
        )
        return [Insight.from_row(r) for r in result.data or []]

    async def delete_insights(self, theme_id: str, types: list[str]) -> int:
        if not types:
            return 0
        result = await self._execute(
            self.sb.table("theme_insights").delete().eq("theme_id", theme_id).in_("type", types),
            "retract theme_insights",
        )
        return len(result.data or [])

    async def list_active_alerts(self, theme_id: str | None = None) -> list[AlertRule]:
        query = self.sb.table("user_alerts").select("*").eq("is_active", True)
        if theme_id is not None:
            query = query.eq("theme_id", theme_id)
        result = await self._execute(query, "list user_alerts")
        return [AlertRule.from_row(r) for r in result.data or []]

    async def list_paid_user_ids(self, *, limit: int) -> list[str]:
        result = await self._execute(
            self.sb.table("users").select("id").neq("subscription_tier", "free").limit(limit),
            "list paid users",
        )
        return [str(r["id"]) for r in result.data or []]

    async def insert_notifications(self, rows: list[dict[str, Any]]) -> int:
        if not rows:
            return 0
        await self._execute(
            self.sb.table("user_notifications").insert(rows), "insert user_notifications"
        )
        return len(rows)

    async def insert_collection_run(self, row: dict[str, Any]) -> dict[str, Any]:
        result = await self._execute(
            self.sb.table("collection_runs").insert(row), "insert collection_runs"
        )
        return (result.data or [row])[0]


def _serialize(fields: dict[str, Any]) -> dict[str, Any]:
    return {k: format_ts(v) if isinstance(v, datetime) else v for k, v in fields.items()}


# ---------------------------------------------------------------------------
# In-process
# ---------------------------------------------------------------------------


class MemoryStore(TrendStore):
    """Dict-backed store with the same upsert keys as the hosted schema."""

    def __init__(self) -> None:
        self.themes: dict[str, dict[str, Any]] = {}
        self.trend_data: dict[tuple[str, str, str], dict[str, Any]] = {}
        self.insights: dict[tuple[str, str], dict[str, Any]] = {}
        self.user_alerts: list[dict[str, Any]] = []
        self.users: list[dict[str, Any]] = []
        self.notifications: list[dict[str, Any]] = []
        self.collection_runs: list[dict[str, Any]] = []
        self._ids = itertools.count(1)

    def _themes(self) -> list[Theme]:
        return [Theme.from_row(r) for r in self.themes.values()]

    async def find_theme_by_title(self, title: str) -> Theme | None:
        wanted = title.strip().lower()
        for theme in self._themes():
            if theme.title.strip().lower() == wanted:
                return theme
        return None

    async def create_theme(self, theme: Theme) -> Theme:
        row = theme.to_row()
        row["id"] = row.get("id") or str(uuid.uuid4())
        self.themes[row["id"]] = row
        return Theme.from_row(row)

    async def get_theme(self, theme_id: str) -> Theme | None:
        row = self.themes.get(theme_id)
        return Theme.from_row(row) if row else None

    async def update_theme(self, theme_id: str, fields: dict[str, Any]) -> None:
        if theme_id not in self.themes:
            raise StoreError(f"theme {theme_id} not found")
        self.themes[theme_id].update(_serialize(fields))

    async def list_stale_themes(
        self, *, limit: int, offset: int = 0, updated_before: datetime | None = None
    ) -> list[Theme]:
        themes = sorted(self._themes(), key=lambda t: t.updated_at)
        if updated_before is not None:
            themes = [t for t in themes if t.updated_at < updated_before]
        return themes[offset : offset + limit]

    async def list_themes_created_since(self, since: datetime) -> list[Theme]:
        return [t for t in self._themes() if t.created_at >= since]

    async def list_themes_updated_since(self, since: datetime) -> list[Theme]:
        return sorted(
            (t for t in self._themes() if t.updated_at >= since), key=lambda t: t.updated_at
        )

    async def upsert_observations(self, observations: list[Observation]) -> int:
        for obs in observations:
            row = obs.to_row()
            key = (row["theme_id"], row["source"], row["timestamp"])
            existing = self.trend_data.get(key)
            row["id"] = existing["id"] if existing else str(next(self._ids))
            self.trend_data[key] = row
        return len(observations)

    async def list_observations(
        self, theme_id: str, *, since: datetime | None = None
    ) -> list[Observation]:
        obs = [Observation.from_row(r) for r in self.trend_data.values() if r["theme_id"] == theme_id]
        if since is not None:
            obs = [o for o in obs if o.timestamp >= since]
        return sorted(obs, key=lambda o: o.timestamp, reverse=True)

    async def list_observations_since(self, since: datetime, *, limit: int) -> list[Observation]:
        obs = [Observation.from_row(r) for r in self.trend_data.values()]
        obs = [o for o in obs if o.created_at >= since]
        return sorted(obs, key=lambda o: o.created_at, reverse=True)[:limit]

    async def observed_theme_ids(self, source: str, timestamp: datetime) -> set[str]:
        ts = format_ts(timestamp)
        return {k[0] for k in self.trend_data if k[1] == source and k[2] == ts}

    async def delete_observations_before(self, cutoff: datetime) -> int:
        stale = [k for k, r in self.trend_data.items() if parse_ts(r["timestamp"]) < cutoff]
        for key in stale:
            del self.trend_data[key]
        return len(stale)

    async def upsert_insights(self, insights: list[Insight]) -> int:
        for insight in insights:
            self.insights[(insight.theme_id, insight.type)] = insight.to_row()
        return len(insights)

    async def list_insights(self, theme_id: str) -> list[Insight]:
        return [Insight.from_row(r) for (tid, _), r in self.insights.items() if tid == theme_id]

    async def delete_insights(self, theme_id: str, types: list[str]) -> int:
        removed = 0
        for t in types:
            if self.insights.pop((theme_id, t), None) is not None:
                removed += 1
        return removed

    async def list_active_alerts(self, theme_id: str | None = None) -> list[AlertRule]:
        rules = [AlertRule.from_row(r) for r in self.user_alerts if r.get("is_active", True)]
        if theme_id is not None:
            rules = [r for r in rules if r.theme_id == theme_id]
        return rules

    async def list_paid_user_ids(self, *, limit: int) -> list[str]:
        return [
            str(u["id"]) for u in self.users if u.get("subscription_tier", "free") != "free"
        ][:limit]

    async def insert_notifications(self, rows: list[dict[str, Any]]) -> int:
        self.notifications.extend(rows)
        return len(rows)

    async def insert_collection_run(self, row: dict[str, Any]) -> dict[str, Any]:
        stored = {"id": str(next(self._ids)), **row}
        self.collection_runs.append(stored)
        return stored
