"""Hourly aggregation of raw readings into per-battery series."""

from datetime import datetime
from typing import Any

from batteryview.core.logger import get_logger
from batteryview.models.reading import (
    AVERAGED_FIELDS,
    LATEST_WINS_FIELDS,
    AveragedDataPoint,
    BatterySeries,
    RawDataPoint,
)

logger = get_logger(__name__)


def hour_key(timestamp: datetime) -> datetime:
    """Truncate a timestamp to the start of its hour."""
    return timestamp.replace(minute=0, second=0, microsecond=0)


def merge_into_bucket(
    bucket: AveragedDataPoint, point: RawDataPoint
) -> AveragedDataPoint:
    """Fold a raw point into an existing hourly bucket.

    Averaged fields use the incremental mean
    ``(old * count + new) / (count + 1)``; the other fields keep their
    previous value unless the new one is not None. The bucket keeps its
    original timestamp.

    Args:
        bucket: Existing hourly bucket
        point: New raw point in the same hour

    Returns:
        New bucket with ``upload_count`` incremented
    """
    count = bucket.upload_count
    new_count = count + 1
    updates: dict[str, Any] = {"upload_count": new_count}

    for field in AVERAGED_FIELDS:
        old_value = getattr(bucket, field)
        new_value = getattr(point, field)
        updates[field] = (old_value * count + new_value) / new_count

    for field in LATEST_WINS_FIELDS:
        new_value = getattr(point, field)
        if new_value is not None:
            updates[field] = new_value

    return bucket.model_copy(update=updates)


def add_reading(series: BatterySeries, point: RawDataPoint) -> BatterySeries:
    """Add a raw point to a battery series.

    Args:
        series: Current series of the point's battery
        point: New raw point

    Returns:
        New series: the raw point appended, and either merged into the
        bucket of its hour or opening a new bucket
    """
    raw = tuple(sorted((*series.raw, point), key=lambda p: p.timestamp))

    key = hour_key(point.timestamp)
    averaged = list(series.averaged)
    index = next(
        (i for i, bucket in enumerate(averaged) if hour_key(bucket.timestamp) == key),
        None,
    )

    if index is not None:
        merged = merge_into_bucket(averaged[index], point)
        averaged[index] = merged
        logger.debug(
            "reading_merged_into_bucket",
            battery_id=point.battery_id,
            hour=key.isoformat(),
            upload_count=merged.upload_count,
        )
    else:
        averaged.append(AveragedDataPoint.from_raw(point))
        averaged.sort(key=lambda p: p.timestamp)
        logger.debug(
            "hourly_bucket_created",
            battery_id=point.battery_id,
            hour=key.isoformat(),
        )

    return BatterySeries(raw=raw, averaged=tuple(averaged))
