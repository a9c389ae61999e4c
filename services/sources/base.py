"""
Data source contract.

A data source fetches metrics from one upstream system and reports its own
local progress through a callback. Caching, retries and backoff are the
source's own business.
"""

from abc import ABC, abstractmethod
from typing import Callable, Optional

from services.metrics.models import SourceFetchResult

# progress_callback(current, total, message)
ProgressCallback = Callable[[float, float, str], None]


class DataSource(ABC):
    """Base class for anything the aggregation service can fetch from."""

    name: str = "unknown"

    @abstractmethod
    async def fetch(
        self,
        progress_callback: Optional[ProgressCallback] = None,
        time_window: int = 90,
    ) -> SourceFetchResult:
        """
        Fetch metrics for the last `time_window` days.

        May raise; the aggregation service records the failure and moves on.
        """

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
