"""Actions accepted by the state reducer."""

from dataclasses import dataclass

from batteryview.models.reading import AlertSummary, BatterySeries, Insight, RawDataPoint


@dataclass(frozen=True)
class StartLoading:
    """An upload batch starts."""

    total_files: int


@dataclass(frozen=True)
class UpdateUploadProgress:
    """Files handled so far (merged or failed) out of the current total."""

    processed: int
    total: int


@dataclass(frozen=True)
class ResetUploadState:
    """Back to idle after a batch settles."""


@dataclass(frozen=True)
class AddDataBatch:
    """Resolved raw points, in original file order."""

    points: tuple[RawDataPoint, ...]


@dataclass(frozen=True)
class SetCurrentBattery:
    battery_id: str


@dataclass(frozen=True)
class ClearBatteryData:
    battery_id: str


@dataclass(frozen=True)
class RestoreBatterySeries:
    """Replace one battery's series, e.g. from a backup file."""

    battery_id: str
    series: BatterySeries


@dataclass(frozen=True)
class AdvisoryStarted:
    pass


@dataclass(frozen=True)
class AdvisoryFinished:
    pass


@dataclass(frozen=True)
class InsightsStarted:
    pass


@dataclass(frozen=True)
class InsightsFinished:
    pass


@dataclass(frozen=True)
class SetAlerts:
    alerts: tuple[str, ...]


@dataclass(frozen=True)
class SetHealthSummary:
    summary: str


@dataclass(frozen=True)
class SetAlertSummary:
    summary: AlertSummary | None


@dataclass(frozen=True)
class SetInsights:
    insights: tuple[Insight, ...]


@dataclass(frozen=True)
class SetPowerRecommendation:
    """One actionable sentence for the selected battery."""

    recommendation: str


Action = (
    StartLoading
    | UpdateUploadProgress
    | ResetUploadState
    | AddDataBatch
    | SetCurrentBattery
    | ClearBatteryData
    | RestoreBatterySeries
    | AdvisoryStarted
    | AdvisoryFinished
    | InsightsStarted
    | InsightsFinished
    | SetAlerts
    | SetHealthSummary
    | SetAlertSummary
    | SetInsights
    | SetPowerRecommendation
)
