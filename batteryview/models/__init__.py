"""Data models."""

from batteryview.models.reading import (
    AdvisoryPayload,
    AlertSummary,
    AveragedDataPoint,
    BatterySeries,
    Insight,
    RawDataPoint,
    Reading,
)

__all__ = [
    "Reading",
    "RawDataPoint",
    "AveragedDataPoint",
    "BatterySeries",
    "AdvisoryPayload",
    "AlertSummary",
    "Insight",
]
