"""
Data sources for the metrics aggregation service.

Usage:
    from services.sources import build_sources

    sources = build_sources(config, MemoryCache())
    service = MetricsAggregationService(sources)
"""

import logging

from core.cache import MemoryCache
from core.config import Config

from .base import DataSource, ProgressCallback
from .cached import CachedDataSource
from .github import GitHubClient, GitHubDataSource
from .sheets import SheetsClient, SheetsDataSource

logger = logging.getLogger(__name__)


def build_sources(config: Config, cache: MemoryCache) -> list[DataSource]:
    """Create the configured data sources, each behind the shared cache."""
    sources: list[DataSource] = []

    if config.sheets.enabled:
        sheets = config.sheets
        client = SheetsClient(api_key=sheets.api_key, token=sheets.token, api_base=sheets.api_base)
        sources.append(
            CachedDataSource(
                SheetsDataSource(client, sheets.spreadsheet_id, sheets.range),
                cache,
                key_builder=lambda days: f"googlesheets-{sheets.spreadsheet_id}",
                ttl=config.cache.ttl,
            )
        )

    if config.github.enabled:
        github = config.github
        client = GitHubClient(token=github.token, api_url=github.api_url)
        sources.append(
            CachedDataSource(
                GitHubDataSource(client, github.owner, github.repo, max_pages=github.max_pages),
                cache,
                key_builder=lambda days: f"github-{github.owner}-{github.repo}-{days}",
                ttl=config.cache.ttl,
            )
        )

    logger.info(f"Configured data sources: {[source.name for source in sources] or 'none'}")
    return sources


async def close_sources(sources: list[DataSource]):
    """Close the HTTP clients behind `sources`."""
    for source in sources:
        inner = source.source if isinstance(source, CachedDataSource) else source
        client = getattr(inner, "client", None)
        if client is not None:
            await client.close()


__all__ = [
    "CachedDataSource",
    "DataSource",
    "GitHubClient",
    "GitHubDataSource",
    "ProgressCallback",
    "SheetsClient",
    "SheetsDataSource",
    "build_sources",
    "close_sources",
]
