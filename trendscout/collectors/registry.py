from __future__ import annotations

import importlib
import logging
from typing import Any

import yaml

from trendscout.collectors.base import BaseCollector
from trendscout.collectors.failure_classifier import FailureClassifier
from trendscout.collectors.rate_governor import DEFAULT_LIMITS, RateGovernor, RateLimit
from trendscout.config import settings

logger = logging.getLogger(__name__)

# Source id -> collector class (loaded lazily)
_COLLECTOR_MAP: dict[str, str] = {
    "google-trends": "trendscout.collectors.sources.google_trends.GoogleTrendsCollector",
    "reddit": "trendscout.collectors.sources.reddit.RedditCollector",
    "twitter": "trendscout.collectors.sources.twitter.TwitterCollector",
    "product-hunt": "trendscout.collectors.sources.product_hunt.ProductHuntCollector",
    "github": "trendscout.collectors.sources.github.GitHubCollector",
}


def _import_class(dotted_path: str) -> type[BaseCollector]:
    """Import a class from a dotted module path."""
    module_path, class_name = dotted_path.rsplit(".", 1)
    module = importlib.import_module(module_path)
    return getattr(module, class_name)


def load_collector_configs() -> dict[str, dict[str, Any]]:
    """Load per-source settings from SOURCES_DIR/collectors.yaml, keyed by source id."""
    path = settings.SOURCES_DIR / "collectors.yaml"
    if not path.exists():
        logger.warning("Collector config not found: %s (using defaults)", path)
        return {}
    with open(path) as f:
        data = yaml.safe_load(f) or {}

    configs: dict[str, dict[str, Any]] = {}
    for source in data.get("sources", []):
        source_id = source.get("id")
        if source_id not in _COLLECTOR_MAP:
            logger.warning("Ignoring unknown source in %s: %s", path.name, source_id)
            continue
        configs[source_id] = source
    logger.info("Loaded %d collector configs from %s", len(configs), path)
    return configs


def rate_limits_from_configs(configs: dict[str, dict[str, Any]]) -> dict[str, RateLimit]:
    limits = dict(DEFAULT_LIMITS)
    for source_id, cfg in configs.items():
        default = limits.get(source_id, RateLimit(60, 60))
        limits[source_id] = RateLimit(
            request_limit=int(cfg.get("request_limit", default.request_limit)),
            window_seconds=float(cfg.get("window_seconds", default.window_seconds)),
        )
    return limits


class CollectorRegistry:
    """Resolves source ids to instantiated collectors sharing one governor/classifier."""

    @staticmethod
    def create_collector(
        source_id: str,
        governor: RateGovernor,
        classifier: FailureClassifier,
        *,
        config: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> BaseCollector:
        dotted_path = _COLLECTOR_MAP.get(source_id)
        if dotted_path is None:
            raise ValueError(f"Unknown source: {source_id}")
        cls = _import_class(dotted_path)
        return cls({"id": source_id, **(config or {})}, governor, classifier, **kwargs)

    @staticmethod
    def list_sources() -> list[str]:
        return list(_COLLECTOR_MAP.keys())
