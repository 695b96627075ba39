"""
Local telemetry collection for codeindex.

Collects and stores metrics and error events locally for diagnosis.
No data is sent externally.
"""

from __future__ import annotations

import asyncio
import json
import sqlite3
import traceback
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from codeindex.config import Config

logger = structlog.get_logger(__name__)

CODE_INDEX_ERROR = "code_index_error"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MetricType(str, Enum):
    """Types of metrics collected."""

    INDEXING = "indexing"
    ERROR = "error"


@dataclass
class Metric:
    """A single metric data point."""

    metric_type: MetricType
    name: str
    value: float
    timestamp: datetime = field(default_factory=_utcnow)
    tags: dict[str, str] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)


class TelemetryCollector:
    """
    Local telemetry collector and storage.

    Features:
    - SQLite-based local storage
    - Buffered writes
    - Retention management
    """

    SCHEMA = """
    CREATE TABLE IF NOT EXISTS metrics (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        metric_type TEXT NOT NULL,
        name TEXT NOT NULL,
        value REAL NOT NULL,
        timestamp TEXT NOT NULL,
        tags TEXT DEFAULT '{}',
        metadata TEXT DEFAULT '{}'
    );

    CREATE INDEX IF NOT EXISTS idx_metrics_type ON metrics(metric_type);
    CREATE INDEX IF NOT EXISTS idx_metrics_name ON metrics(name);
    CREATE INDEX IF NOT EXISTS idx_metrics_timestamp ON metrics(timestamp);
    """

    def __init__(self, config: "Config", buffer_size: int = 50) -> None:
        """
        Initialize the telemetry collector.

        Args:
            config: codeindex configuration.
            buffer_size: Metrics buffered before a write.
        """
        self.config = config
        self.enabled = config.telemetry.enabled
        self.db_path = config.metrics_path
        self.retention_days = config.telemetry.retention_days

        self._conn: sqlite3.Connection | None = None
        self._buffer: list[Metric] = []
        self._buffer_size = buffer_size
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Initialize the telemetry storage."""
        if not self.enabled or self._conn is not None:
            return

        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(
            str(self.db_path),
            check_same_thread=False,
        )
        self._conn.executescript(self.SCHEMA)

        logger.info("Telemetry collector initialized", db_path=str(self.db_path))

    async def close(self) -> None:
        """Flush and close the telemetry storage."""
        if self._buffer:
            await self.flush()

        if self._conn:
            self._conn.close()
            self._conn = None

    async def record(
        self,
        metric_type: MetricType,
        name: str,
        value: float,
        tags: dict[str, str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """
        Record a metric.

        Args:
            metric_type: Type of metric.
            name: Metric name.
            value: Metric value.
            tags: Optional tags.
            metadata: Optional metadata.
        """
        if not self.enabled:
            return

        metric = Metric(
            metric_type=metric_type,
            name=name,
            value=value,
            tags=tags or {},
            metadata=metadata or {},
        )

        async with self._lock:
            self._buffer.append(metric)

            if len(self._buffer) >= self._buffer_size:
                self._flush_locked()

    async def record_error(
        self,
        error: BaseException | str,
        location: str,
    ) -> None:
        """
        Record an indexing error event.

        Args:
            error: The exception, or a failure message.
            location: Where the error was observed (e.g. "start_indexing").
        """
        if isinstance(error, BaseException):
            message = str(error) or type(error).__name__
            stack = "".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            )
        else:
            message = error
            stack = None

        await self.record(
            metric_type=MetricType.ERROR,
            name=CODE_INDEX_ERROR,
            value=1.0,
            tags={"location": location},
            metadata={"error": message, "stack": stack},
        )

    async def flush(self) -> None:
        """Flush buffered metrics to storage."""
        async with self._lock:
            self._flush_locked()

    def _flush_locked(self) -> None:
        if not self._conn or not self._buffer:
            return

        self._conn.executemany(
            """
            INSERT INTO metrics (metric_type, name, value, timestamp, tags, metadata)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    metric.metric_type.value,
                    metric.name,
                    metric.value,
                    metric.timestamp.isoformat(),
                    json.dumps(metric.tags),
                    json.dumps(metric.metadata),
                )
                for metric in self._buffer
            ],
        )
        self._conn.commit()
        self._buffer.clear()

    async def query(
        self,
        name: str | None = None,
        metric_type: MetricType | None = None,
        start_time: datetime | None = None,
        limit: int = 1000,
    ) -> list[Metric]:
        """
        Query metrics, newest first.

        Args:
            name: Filter by metric name.
            metric_type: Filter by metric type.
            start_time: Filter by start time.
            limit: Maximum results.
        """
        if not self._conn:
            return []

        await self.flush()

        conditions = []
        params: list[Any] = []

        if name:
            conditions.append("name = ?")
            params.append(name)

        if metric_type:
            conditions.append("metric_type = ?")
            params.append(metric_type.value)

        if start_time:
            conditions.append("timestamp >= ?")
            params.append(start_time.isoformat())

        where_clause = " AND ".join(conditions) if conditions else "1=1"
        params.append(limit)

        cursor = self._conn.execute(
            f"""
            SELECT metric_type, name, value, timestamp, tags, metadata
            FROM metrics
            WHERE {where_clause}
            ORDER BY id DESC
            LIMIT ?
            """,
            params,
        )

        return [
            Metric(
                metric_type=MetricType(row[0]),
                name=row[1],
                value=row[2],
                timestamp=datetime.fromisoformat(row[3]),
                tags=json.loads(row[4]),
                metadata=json.loads(row[5]),
            )
            for row in cursor.fetchall()
        ]

    async def get_recent_errors(self, limit: int = 20) -> list[Metric]:
        """Most recent indexing error events."""
        return await self.query(
            name=CODE_INDEX_ERROR,
            metric_type=MetricType.ERROR,
            limit=limit,
        )

    async def prune(self) -> int:
        """
        Delete metrics older than the retention period.

        Returns:
            Number of rows removed.
        """
        if not self._conn:
            return 0

        await self.flush()

        cutoff = _utcnow() - timedelta(days=self.retention_days)
        cursor = self._conn.execute(
            "DELETE FROM metrics WHERE timestamp < ?",
            (cutoff.isoformat(),),
        )
        self._conn.commit()

        logger.info("Telemetry pruned", removed=cursor.rowcount)
        return cursor.rowcount


async def record_indexing_run(
    collector: TelemetryCollector,
    blocks_found: int,
    blocks_indexed: int,
    duration_ms: float,
) -> None:
    """Record the result of a completed full scan."""
    await collector.record(
        metric_type=MetricType.INDEXING,
        name="scan_blocks_indexed",
        value=float(blocks_indexed),
        tags={"blocks_found": str(blocks_found)},
    )
    await collector.record(
        metric_type=MetricType.INDEXING,
        name="scan_duration_ms",
        value=duration_ms,
    )
