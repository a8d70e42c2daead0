"""
Time-range queries over stored readings and alerts.

Read-only: no sensor locks are taken, so queries run alongside ingestion and see
whatever the store had committed when the query's transaction began.
"""

from collections.abc import Sequence
from datetime import datetime, timedelta

import structlog

from pressure_monitor.config import EngineConfig
from pressure_monitor.domain.errors import InvalidBucketWidth, InvalidRange, ValidationError
from pressure_monitor.domain.models import Alert, Reading, TimeRange, as_utc
from pressure_monitor.services.store import PressureStore, TransactionRunner

logger = structlog.get_logger(__name__)


def downsample(
    readings: Sequence[Reading], start: datetime, bucket_width: timedelta
) -> list[Reading]:
    """
    Keep one reading per bucket: the one with the highest peak pressure.

    Buckets are anchored at ``start``. Spikes must survive downsampling, so the
    extremum is kept rather than an average; ties go to the earliest reading.
    ``readings`` must already be in ascending timestamp order.
    """
    chosen: dict[int, Reading] = {}
    for reading in readings:
        bucket = int((reading.timestamp - start) // bucket_width)
        current = chosen.get(bucket)
        if current is None or reading.peak_pressure > current.peak_pressure:
            chosen[bucket] = reading
    return [chosen[bucket] for bucket in sorted(chosen)]


class TimeRangeQueryEngine:
    """Serves readings and alerts for one sensor or one session over [start, end)."""

    def __init__(self, store: PressureStore, config: EngineConfig | None = None) -> None:
        self._transactions = TransactionRunner(store, config)
        self.logger = logger.bind(component="query_engine")

    @staticmethod
    def _scope(sensor_id: str | None, session_id: int | None) -> None:
        if (sensor_id is None) == (session_id is None):
            raise ValidationError(
                "exactly one of sensor_id or session_id is required",
                sensor_id=sensor_id,
                session_id=session_id,
            )

    @staticmethod
    def _range(start: datetime, end: datetime) -> TimeRange:
        window = TimeRange(start=as_utc(start), end=as_utc(end))
        if window.start >= window.end:
            raise InvalidRange(
                "range start must be before end",
                start=window.start.isoformat(),
                end=window.end.isoformat(),
            )
        return window

    async def query_readings(
        self,
        start: datetime,
        end: datetime,
        *,
        sensor_id: str | None = None,
        session_id: int | None = None,
        bucket_width: timedelta | None = None,
    ) -> list[Reading]:
        """
        Readings in ascending timestamp order (insertion order for ties).

        Raises:
            InvalidRange: ``start >= end``.
            InvalidBucketWidth: non-positive bucket width.
        """
        self._scope(sensor_id, session_id)
        window = self._range(start, end)
        if bucket_width is not None and bucket_width <= timedelta(0):
            raise InvalidBucketWidth(
                "bucket width must be positive", bucket_seconds=bucket_width.total_seconds()
            )

        readings = await self._transactions.run(
            lambda tx: tx.readings_in_range(
                start=window.start, end=window.end, sensor_id=sensor_id, session_id=session_id
            ),
            "query_readings",
        )
        if bucket_width is not None:
            readings = downsample(readings, window.start, bucket_width)

        self.logger.debug(
            "readings_queried",
            sensor_id=sensor_id,
            session_id=session_id,
            count=len(readings),
            downsampled=bucket_width is not None,
        )
        return readings

    async def query_alerts(
        self,
        start: datetime,
        end: datetime,
        *,
        sensor_id: str | None = None,
        session_id: int | None = None,
        acknowledged: bool | None = None,
    ) -> list[Alert]:
        """Alerts in ascending timestamp order, optionally filtered by acknowledgment."""
        self._scope(sensor_id, session_id)
        window = self._range(start, end)

        alerts = await self._transactions.run(
            lambda tx: tx.alerts_in_range(
                start=window.start,
                end=window.end,
                sensor_id=sensor_id,
                session_id=session_id,
                acknowledged=acknowledged,
            ),
            "query_alerts",
        )
        self.logger.debug(
            "alerts_queried", sensor_id=sensor_id, session_id=session_id, count=len(alerts)
        )
        return alerts
