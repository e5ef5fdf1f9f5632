"""Fan-out of recent theme/trend changes to live subscribers and alert rules.

Each sync looks back over a short trailing window, classifies changed rows as
new_theme, theme_update or trend_data, and for each change:

  1. publishes it on the "theme-updates" topic,
  2. writes a notification row for every interested user,
  3. evaluates active alert rules and notifies matching users.

A change id is remembered before its first delivery attempt, so overlapping
sync windows never deliver the same change twice. Notification rows are the
durable part: insert failures are counted as errors. Live broadcasts are
best-effort: failures are logged and counted but never undo the rows.
"""
from __future__ import annotations

import logging
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from trendscout.config import settings
from trendscout.models import AlertRule, Notification, Observation, Theme
from trendscout.models.entities import format_ts, utcnow
from trendscout.services.broadcast import Broadcaster, BroadcastError
from trendscout.services.store import StoreError, TrendStore

logger = logging.getLogger(__name__)

THEME_TOPIC = "theme-updates"
TREND_LIMIT = 50
PAID_USER_LIMIT = 100
NOTIFICATION_BATCH = 50
REMEMBERED_CHANGES = 10_000

NOTIFICATION_TITLES = {
    "new_theme": "New Theme Discovered",
    "theme_update": "Theme Updated",
    "trend_data": "New Trend Data Available",
}


def user_topic(user_id: str) -> str:
    return f"user-{user_id}"


@dataclass
class Change:
    id: str
    type: str  # new_theme | theme_update | trend_data
    theme_id: str
    data: dict[str, Any]
    timestamp: datetime

    def payload(self) -> dict[str, Any]:
        return {**self.data, "timestamp": format_ts(self.timestamp), "change_id": self.id}


def theme_change(theme: Theme, since: datetime) -> Change:
    is_new = theme.created_at >= since
    kind = "new_theme" if is_new else "theme_update"
    return Change(
        id=f"{kind}:{theme.id}:{format_ts(theme.updated_at)}",
        type=kind,
        theme_id=theme.id,
        data={
            "id": theme.id,
            "title": theme.title,
            "monetization_score": theme.monetization_score,
            "market_size": theme.market_size,
            "is_new": is_new,
        },
        timestamp=theme.updated_at,
    )


def trend_changes(observations: list[Observation], titles: dict[str, str]) -> list[Change]:
    grouped: dict[str, list[Observation]] = {}
    for obs in observations:
        grouped.setdefault(obs.theme_id, []).append(obs)

    changes = []
    for theme_id, trends in grouped.items():
        trends.sort(key=lambda o: (o.created_at, o.timestamp), reverse=True)
        sources = sorted({o.source for o in trends})
        latest = trends[0].created_at
        changes.append(
            Change(
                id=f"trend_data:{theme_id}:{format_ts(latest)}:{','.join(sources)}",
                type="trend_data",
                theme_id=theme_id,
                data={
                    "theme_id": theme_id,
                    "theme_title": titles.get(theme_id),
                    "trend_count": len(trends),
                    "latest_trends": [
                        {
                            "source": o.source,
                            "search_volume": o.search_volume,
                            "growth_rate": o.growth_rate,
                            "timestamp": format_ts(o.timestamp),
                        }
                        for o in trends[:3]
                    ],
                    "sources": sources,
                },
                timestamp=latest,
            )
        )
    return changes


def notification_message(change: Change) -> str:
    data = change.data
    if change.type == "new_theme":
        return (
            f'A new theme "{data["title"]}" has been discovered with a monetization '
            f'score of {data["monetization_score"]}'
        )
    if change.type == "theme_update":
        return f'Theme "{data["title"]}" has been updated'
    return (
        f'New trend data is available for "{data.get("theme_title")}" '
        f'from {", ".join(data["sources"])}'
    )


def alert_matches(rule: AlertRule, change: Change) -> bool:
    """Per-alert-type trigger predicate. Theme-scoped rules only see their theme."""
    if rule.theme_id is not None and rule.theme_id != change.theme_id:
        return False
    score = change.data.get("monetization_score")

    if rule.alert_type == "new_theme":
        return change.type == "new_theme"
    if rule.alert_type == "score_change":
        threshold = rule.threshold_value if rule.threshold_value is not None else 0
        return change.type == "theme_update" and score is not None and score >= threshold
    if rule.alert_type == "market_opportunity":
        if score is None:
            return False
        threshold = rule.threshold_value if rule.threshold_value is not None else 70
        return score >= threshold and change.data.get("market_size", 0) > 1000
    return False


def alert_message(rule: AlertRule, change: Change) -> str:
    data = change.data
    if rule.alert_type == "new_theme":
        return (
            f'New theme discovered: "{data.get("title")}" with monetization score '
            f'{data.get("monetization_score")}'
        )
    if rule.alert_type == "score_change":
        return (
            f'Theme "{data.get("title")}" now has a monetization score of '
            f'{data.get("monetization_score")}'
        )
    if rule.alert_type == "market_opportunity":
        return (
            f'High-potential opportunity: "{data.get("title")}" '
            f'(Score: {data.get("monetization_score")}, Market: {data.get("market_size")})'
        )
    return f"Alert triggered for {rule.alert_type}"


@dataclass
class SyncResult:
    changes: int = 0
    updates_sent: int = 0
    notifications_sent: int = 0
    alerts_triggered: int = 0
    skipped_duplicates: int = 0
    broadcast_failures: int = 0
    errors: int = 0
    details: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "changes": self.changes,
            "updates_sent": self.updates_sent,
            "notifications_sent": self.notifications_sent,
            "alerts_triggered": self.alerts_triggered,
            "skipped_duplicates": self.skipped_duplicates,
            "broadcast_failures": self.broadcast_failures,
            "errors": self.errors,
            "details": self.details,
        }


class ChangeBroadcaster:
    def __init__(
        self,
        store: TrendStore,
        broadcaster: Broadcaster,
        *,
        window_minutes: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.broadcaster = broadcaster
        self.window = timedelta(minutes=window_minutes or settings.REALTIME_WINDOW_MINUTES)
        self._clock = clock
        self._delivered: OrderedDict[str, None] = OrderedDict()

    def _remember(self, change_id: str) -> bool:
        """Record a change id; False if it was already attempted."""
        if change_id in self._delivered:
            return False
        self._delivered[change_id] = None
        while len(self._delivered) > REMEMBERED_CHANGES:
            self._delivered.popitem(last=False)
        return True

    async def recent_changes(self, now: datetime) -> list[Change]:
        since = now - self.window
        themes = await self.store.list_themes_updated_since(since)
        changes = [theme_change(t, since) for t in themes]

        observations = await self.store.list_observations_since(since, limit=TREND_LIMIT)
        titles = {t.id: t.title for t in themes}
        for theme_id in {o.theme_id for o in observations} - set(titles):
            theme = await self.store.get_theme(theme_id)
            if theme is not None:
                titles[theme_id] = theme.title
        changes.extend(trend_changes(observations, titles))
        return changes

    async def interested_users(self, theme_id: str) -> list[str]:
        alert_users = [r.user_id for r in await self.store.list_active_alerts(theme_id)]
        paid_users = await self.store.list_paid_user_ids(limit=PAID_USER_LIMIT)
        return list(dict.fromkeys(alert_users + paid_users))

    async def _publish(self, topic: str, event: str, payload: dict[str, Any], result: SyncResult) -> bool:
        try:
            await self.broadcaster.publish(topic, event, payload)
            return True
        except BroadcastError as e:
            result.broadcast_failures += 1
            logger.warning("Broadcast of %s to %s failed: %s", event, topic, e)
            return False

    async def sync(
        self,
        *,
        notify_users: bool = True,
        broadcast_changes: bool = True,
        trigger_alerts: bool = True,
    ) -> SyncResult:
        result = SyncResult()
        now = self._clock()
        changes = await self.recent_changes(now)
        rules = await self.store.list_active_alerts() if trigger_alerts else []

        for change in changes:
            if not self._remember(change.id):
                result.skipped_duplicates += 1
                continue
            result.changes += 1
            status = "processed"

            if broadcast_changes and await self._publish(
                THEME_TOPIC, change.type, change.payload(), result
            ):
                result.updates_sent += 1

            if notify_users:
                try:
                    users = await self.interested_users(change.theme_id)
                except StoreError as e:
                    result.errors += 1
                    status = "error"
                    logger.error("Resolving users for %s failed: %s", change.id, e)
                    users = []
                await self._notify(change, users, result)

            for rule in rules:
                if alert_matches(rule, change):
                    await self._trigger_alert(rule, change, result)

            result.details.append({"change_id": change.id, "type": change.type, "status": status})

        logger.info(
            "Realtime sync: %d changes, %d broadcasts, %d notifications, %d alerts, "
            "%d broadcast failures, %d errors",
            result.changes, result.updates_sent, result.notifications_sent,
            result.alerts_triggered, result.broadcast_failures, result.errors,
        )
        return result

    async def _notify(self, change: Change, users: list[str], result: SyncResult) -> None:
        if not users:
            return
        title = NOTIFICATION_TITLES[change.type]
        message = notification_message(change)
        rows = [
            Notification(user_id=u, type=change.type, title=title, message=message, data=change.data).to_row()
            for u in users
        ]
        delivered: list[str] = []
        for start in range(0, len(rows), NOTIFICATION_BATCH):
            batch = rows[start : start + NOTIFICATION_BATCH]
            try:
                result.notifications_sent += await self.store.insert_notifications(batch)
                delivered.extend(r["user_id"] for r in batch)
            except StoreError as e:
                result.errors += len(batch)
                logger.error("Notification batch insert failed: %s", e)

        payload = {
            "type": change.type,
            "title": title,
            "message": message,
            "data": change.data,
            "timestamp": format_ts(change.timestamp),
        }
        for user_id in delivered:
            await self._publish(user_topic(user_id), "notification", payload, result)

    async def _trigger_alert(self, rule: AlertRule, change: Change, result: SyncResult) -> None:
        title = f"Alert: {rule.alert_type}"
        message = alert_message(rule, change)
        notification = Notification(
            user_id=rule.user_id,
            type="alert",
            title=title,
            message=message,
            data={"alert_id": rule.id, "alert_type": rule.alert_type, "change_data": change.data},
        )
        try:
            await self.store.insert_notifications([notification.to_row()])
        except StoreError as e:
            result.errors += 1
            logger.error("Alert %s notification failed: %s", rule.id, e)
            return
        result.alerts_triggered += 1
        await self._publish(
            user_topic(rule.user_id),
            "alert",
            {
                "alert_id": rule.id,
                "alert_type": rule.alert_type,
                "title": title,
                "message": message,
                "data": change.data,
                "timestamp": format_ts(self._clock()),
            },
            result,
        )
