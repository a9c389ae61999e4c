"""
Google Sheets data source

Reads manually tracked metrics from a spreadsheet. Expected layout, one
metric per row after a header row:

    timestamp | category | name | value | unit (optional) | additional info (optional)
"""

import logging
import math
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import quote

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from core.circuit_breaker import CircuitBreaker, get_source_breaker
from services.metrics.models import Metric, SourceFetchResult

from .base import DataSource, ProgressCallback
from .github import is_retryable

logger = logging.getLogger(__name__)

SHEETS_API_BASE = "https://sheets.googleapis.com/v4"
SOURCE_NAME = "Google Sheets"

_TIMESTAMP_FORMATS = (
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y",
    "%Y-%m-%d %H:%M",
    "%d.%m.%Y",
)


def parse_timestamp(raw: str) -> Optional[datetime]:
    """Parse a spreadsheet timestamp; naive values are taken as UTC."""
    raw = raw.strip()
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        parsed = None
        for fmt in _TIMESTAMP_FORMATS:
            try:
                parsed = datetime.strptime(raw, fmt)
                break
            except ValueError:
                continue
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class SheetsClient:
    """Read-only client for the Google Sheets values API."""

    def __init__(
        self,
        api_key: str = "",
        token: str = "",
        api_base: str = SHEETS_API_BASE,
        breaker: Optional[CircuitBreaker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 15.0,
    ):
        self.api_key = api_key
        self.token = token
        self.api_base = api_base.rstrip("/")
        self.breaker = breaker or get_source_breaker("sheets")
        self._transport = transport
        self._timeout = timeout
        self._http_client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
            self._http_client = httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
                headers=headers,
            )
        return self._http_client

    async def close(self):
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    @retry(
        retry=retry_if_exception(is_retryable),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _get(self, spreadsheet_id: str, cell_range: str) -> dict:
        client = await self._get_client()
        url = f"{self.api_base}/spreadsheets/{spreadsheet_id}/values/{quote(cell_range)}"
        params = {"key": self.api_key} if self.api_key and not self.token else None
        response = await client.get(url, params=params)
        response.raise_for_status()
        return response.json()

    async def get_values(self, spreadsheet_id: str, cell_range: str) -> list[list[str]]:
        """Return the rows of `cell_range` (empty list for an empty sheet)."""
        payload = await self.breaker.call(self._get, spreadsheet_id, cell_range)
        return payload.get("values") or []


class SheetsDataSource(DataSource):
    """Manually tracked metrics from one spreadsheet range."""

    name = SOURCE_NAME

    def __init__(self, client: SheetsClient, spreadsheet_id: str, cell_range: str = "A:F"):
        self.client = client
        self.spreadsheet_id = spreadsheet_id
        self.cell_range = cell_range

    async def fetch(
        self,
        progress_callback: Optional[ProgressCallback] = None,
        time_window: int = 90,
    ) -> SourceFetchResult:
        # The sheet is small and curated by hand; time_window is not applied
        if progress_callback:
            progress_callback(0, 100, "Starting to fetch data from Google Sheets")

        rows = await self.client.get_values(self.spreadsheet_id, self.cell_range)

        if progress_callback:
            progress_callback(50, 100, "Data fetched from Google Sheets, processing rows")

        data_rows = rows[1:]
        metrics = []
        for index, row in enumerate(data_rows):
            metric = self.parse_row(index, row)
            if metric is not None:
                metrics.append(metric)

        if progress_callback:
            message = "Finished processing Google Sheets data" if data_rows else "No data found in Google Sheets"
            progress_callback(100, 100, message)

        logger.info(f"Google Sheets: {len(metrics)} of {len(data_rows)} rows processed")
        return SourceFetchResult(
            metrics=metrics,
            stats={"totalRows": len(data_rows), "processedRows": len(metrics)},
        )

    @staticmethod
    def parse_row(index: int, row: list) -> Optional[Metric]:
        """Build a Metric from one row, or None (with a warning) if unusable."""
        if len(row) < 4:
            logger.warning(f"Skipping row with insufficient data: {row}")
            return None

        cells = [str(cell).strip() for cell in row] + ["", ""]
        timestamp, category, name, value, unit, additional_info = cells[:6]
        if not (timestamp and category and name and value):
            logger.warning(f"Skipping row with missing essential data: {row}")
            return None

        try:
            numeric = float(value)
        except ValueError:
            logger.warning(f"Skipping row with non-numeric value: {row}")
            return None
        if not math.isfinite(numeric):
            logger.warning(f"Skipping row with non-numeric value: {row}")
            return None

        parsed = parse_timestamp(timestamp)
        if parsed is None:
            logger.warning(f"Skipping row with unparseable timestamp: {row}")
            return None

        return Metric(
            id=f"sheet-{index}",
            category=category,
            name=name,
            value=numeric,
            timestamp=parsed,
            unit=unit,
            additional_info=additional_info,
            source=SOURCE_NAME,
        )
