from datetime import datetime, timezone

import pytest

from trendscout.collectors.base import BaseCollector
from trendscout.collectors.failure_classifier import FailureClassifier
from trendscout.collectors.rate_governor import RateGovernor
from trendscout.config import settings
from trendscout.models import Observation
from trendscout.services.store import MemoryStore

NOW = datetime(2024, 6, 15, 12, 30, tzinfo=timezone.utc)


class FakeSleep:
    """Records requested delays instead of sleeping."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class ScriptedCollector(BaseCollector):
    """Collector whose per-theme outcomes are given up front.

    `outcomes[theme]` is a list consumed one item per attempt; an exception
    item is raised, anything else is returned. Themes without a script get a
    fixed observation.
    """

    source_id = "reddit"

    def __init__(self, governor, classifier, *, source_id=None, outcomes=None, configured=True, volume=100, clock=lambda: NOW):
        if source_id:
            self.source_id = source_id
        super().__init__({"id": self.source_id}, governor, classifier, clock=clock)
        self.outcomes = outcomes or {}
        self.configured = configured
        self.volume = volume
        self.calls: list[str] = []

    @property
    def is_configured(self) -> bool:
        return self.configured

    async def fetch_theme(self, theme, region):
        self.calls.append(theme)
        script = self.outcomes.get(theme)
        if script:
            outcome = script.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        return Observation(
            source=self.source_id,
            search_volume=self.volume,
            growth_rate=10.0,
            timestamp=self.observed_at(),
        )


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def fake_sleep():
    return FakeSleep()


@pytest.fixture
def governor(fake_sleep):
    return RateGovernor(sleep=fake_sleep, rng=lambda: 0.0)


@pytest.fixture
def classifier():
    return FailureClassifier()


@pytest.fixture
def scripted_collector():
    return ScriptedCollector


@pytest.fixture
def credentials(monkeypatch):
    for name, value in {
        "REDDIT_CLIENT_ID": "reddit-id",
        "REDDIT_CLIENT_SECRET": "reddit-secret",
        "TWITTER_BEARER_TOKEN": "tw-token",
        "PRODUCT_HUNT_TOKEN": "ph-token",
        "GITHUB_TOKEN": "gh-token",
        "SERPAPI_KEY": "serp-key",
    }.items():
        monkeypatch.setattr(settings, name, value)


@pytest.fixture
def no_credentials(monkeypatch):
    for name in (
        "REDDIT_CLIENT_ID",
        "REDDIT_CLIENT_SECRET",
        "TWITTER_BEARER_TOKEN",
        "PRODUCT_HUNT_TOKEN",
        "GITHUB_TOKEN",
        "SERPAPI_KEY",
        "API_KEY",
    ):
        monkeypatch.setattr(settings, name, "")
    monkeypatch.setattr(settings, "TRENDS_BACKEND", "fixture")
