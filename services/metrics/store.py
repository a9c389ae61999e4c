"""
Metrics persistence (PostgreSQL via asyncpg).

Keeps the latest value of every metric id so dashboards can show the last
known numbers without waiting for a full stream.
"""

import logging
from typing import Optional

import asyncpg

from .models import Metric

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS metrics (
    id TEXT PRIMARY KEY,
    category TEXT NOT NULL,
    name TEXT NOT NULL,
    value DOUBLE PRECISION NOT NULL,
    timestamp TIMESTAMPTZ NOT NULL,
    unit TEXT NOT NULL DEFAULT '',
    additional_info TEXT NOT NULL DEFAULT '',
    source TEXT NOT NULL DEFAULT '',
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
)
"""

UPSERT = """
INSERT INTO metrics (id, category, name, value, timestamp, unit, additional_info, source)
VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
ON CONFLICT (id) DO UPDATE SET
    category = EXCLUDED.category,
    name = EXCLUDED.name,
    value = EXCLUDED.value,
    timestamp = EXCLUDED.timestamp,
    unit = EXCLUDED.unit,
    additional_info = EXCLUDED.additional_info,
    source = EXCLUDED.source,
    updated_at = NOW()
WHERE metrics.timestamp <= EXCLUDED.timestamp
"""


class MetricsStore:
    """Upserts metrics by id; an older timestamp never overwrites a newer one."""

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    @classmethod
    async def connect(cls, url: str, min_size: int = 1, max_size: int = 5) -> "MetricsStore":
        db_pool = await asyncpg.create_pool(url, min_size=min_size, max_size=max_size)
        return cls(db_pool)

    async def ensure_schema(self):
        async with self.db_pool.acquire() as conn:
            await conn.execute(SCHEMA)

    async def save_metrics(self, metrics: list[Metric]) -> int:
        """Persist `metrics`; returns how many rows were submitted."""
        if not metrics:
            return 0

        rows = [
            (
                metric.id,
                metric.category,
                metric.name,
                metric.value,
                metric.timestamp,
                metric.unit,
                metric.additional_info,
                metric.source,
            )
            for metric in metrics
        ]
        async with self.db_pool.acquire() as conn:
            async with conn.transaction():
                await conn.executemany(UPSERT, rows)

        logger.info(f"Saved {len(rows)} metrics")
        return len(rows)

    async def latest(self, source: Optional[str] = None) -> list[Metric]:
        """Load stored metrics, optionally for one source."""
        async with self.db_pool.acquire() as conn:
            if source:
                records = await conn.fetch(
                    "SELECT * FROM metrics WHERE source = $1 ORDER BY timestamp DESC", source
                )
            else:
                records = await conn.fetch("SELECT * FROM metrics ORDER BY timestamp DESC")

        return [
            Metric(
                id=record["id"],
                category=record["category"],
                name=record["name"],
                value=record["value"],
                timestamp=record["timestamp"],
                unit=record["unit"],
                additional_info=record["additional_info"],
                source=record["source"],
            )
            for record in records
        ]

    async def close(self):
        await self.db_pool.close()
