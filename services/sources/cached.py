"""
Caching wrapper for data sources.

Composed around a source at the composition root:

    source = CachedDataSource(
        GitHubDataSource(client),
        cache,
        key_builder=lambda days: f"github-{owner}-{repo}-{days}",
        ttl=3600,
    )
"""

import logging
from typing import Callable, Optional

from core.cache import MemoryCache
from services.metrics.models import SourceFetchResult

from .base import DataSource, ProgressCallback

logger = logging.getLogger(__name__)


class CachedDataSource(DataSource):
    """
    Caches successful fetch results of a wrapped data source.

    Results carrying errors are never cached, so a failing upstream is
    retried on the next run.
    """

    def __init__(
        self,
        source: DataSource,
        cache: MemoryCache,
        key_builder: Callable[[int], str],
        ttl: float,
    ):
        self.source = source
        self.cache = cache
        self.key_builder = key_builder
        self.ttl = ttl

    @property
    def name(self) -> str:
        return self.source.name

    async def fetch(
        self,
        progress_callback: Optional[ProgressCallback] = None,
        time_window: int = 90,
    ) -> SourceFetchResult:
        key = self.key_builder(time_window)
        cached = await self.cache.get(key)
        if cached is not None:
            logger.debug(f"Cache hit for {key}")
            if progress_callback:
                progress_callback(100, 100, "Loaded from cache")
            return cached

        result = await self.source.fetch(progress_callback, time_window)
        if not result.errors:
            await self.cache.set(key, result, self.ttl)
        return result
