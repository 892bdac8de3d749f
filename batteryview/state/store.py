"""Session state and its reducer.

The :class:`StateStore` is the only mutation surface of the dashboard: the
upload queue, the advisory orchestrator and the session facade all change
state by dispatching actions from :mod:`batteryview.state.actions`. The
reducer itself is a pure function over an immutable :class:`State`.
"""

from collections.abc import Callable
from dataclasses import dataclass, field, replace

from batteryview.core.logger import get_logger
from batteryview.ingest.aggregator import add_reading
from batteryview.models.reading import (
    AlertSummary,
    AveragedDataPoint,
    BatterySeries,
    Insight,
    RawDataPoint,
)
from batteryview.state.actions import (
    Action,
    AddDataBatch,
    AdvisoryFinished,
    AdvisoryStarted,
    ClearBatteryData,
    InsightsFinished,
    InsightsStarted,
    ResetUploadState,
    RestoreBatterySeries,
    SetAlerts,
    SetAlertSummary,
    SetCurrentBattery,
    SetHealthSummary,
    SetInsights,
    SetPowerRecommendation,
    StartLoading,
    UpdateUploadProgress,
)

logger = get_logger(__name__)

Listener = Callable[["State", "State"], None]


@dataclass(frozen=True)
class State:
    """Immutable snapshot of the dashboard session."""

    batteries: dict[str, BatterySeries] = field(default_factory=dict)
    current_battery_id: str | None = None
    is_loading: bool = False
    upload_progress: float | None = None
    processed_file_count: int = 0
    total_file_count: int = 0
    is_advising: bool = False
    is_loading_insights: bool = False
    alerts: tuple[str, ...] = ()
    health_summary: str = ""
    alert_summary: AlertSummary | None = None
    insights: tuple[Insight, ...] = ()
    power_recommendation: str = ""

    @property
    def battery_ids(self) -> list[str]:
        """Known battery identifiers, in first-seen order."""
        return list(self.batteries)

    def series(self, battery_id: str | None = None) -> BatterySeries:
        """Series of a battery (default: the selected one), empty if unknown."""
        battery_id = battery_id or self.current_battery_id
        if battery_id is None:
            return BatterySeries()
        return self.batteries.get(battery_id, BatterySeries())

    @property
    def current_averaged(self) -> tuple[AveragedDataPoint, ...]:
        return self.series().averaged

    @property
    def current_raw(self) -> tuple[RawDataPoint, ...]:
        return self.series().raw

    @property
    def latest_point(self) -> AveragedDataPoint | None:
        """Latest hourly bucket of the selected battery."""
        return self.series().latest


_NO_ADVISORY = {
    "alerts": (),
    "health_summary": "",
    "alert_summary": None,
    "insights": (),
    "power_recommendation": "",
}


def _start_loading(state: State, action: StartLoading) -> State:
    return replace(
        state,
        is_loading=True,
        total_file_count=action.total_files,
        processed_file_count=0,
        upload_progress=0.0,
    )


def _update_progress(state: State, action: UpdateUploadProgress) -> State:
    progress = (action.processed / action.total) * 100 if action.total else 0.0
    return replace(
        state,
        processed_file_count=action.processed,
        total_file_count=action.total,
        upload_progress=progress,
    )


def _reset_upload(state: State, action: ResetUploadState) -> State:
    return replace(
        state,
        is_loading=False,
        total_file_count=0,
        processed_file_count=0,
        upload_progress=None,
    )


def _add_data_batch(state: State, action: AddDataBatch) -> State:
    if not action.points:
        return state

    batteries = dict(state.batteries)
    current_battery_id = state.current_battery_id

    for point in action.points:
        series = batteries.get(point.battery_id, BatterySeries())
        batteries[point.battery_id] = add_reading(series, point)

        # First upload wins: the earliest file of the batch selects
        if current_battery_id is None:
            current_battery_id = point.battery_id
            logger.info("battery_auto_selected", battery_id=current_battery_id)

    return replace(
        state,
        batteries=batteries,
        current_battery_id=current_battery_id,
        insights=(),
    )


def _set_current_battery(state: State, action: SetCurrentBattery) -> State:
    return replace(state, current_battery_id=action.battery_id, **_NO_ADVISORY)


def _clear_battery(state: State, action: ClearBatteryData) -> State:
    if action.battery_id not in state.batteries:
        return state

    batteries = {k: v for k, v in state.batteries.items() if k != action.battery_id}
    if state.current_battery_id == action.battery_id:
        current_battery_id = next(iter(batteries), None)
    else:
        current_battery_id = state.current_battery_id

    return replace(
        state,
        batteries=batteries,
        current_battery_id=current_battery_id,
        **_NO_ADVISORY,
    )


def _restore_series(state: State, action: RestoreBatterySeries) -> State:
    batteries = {**state.batteries, action.battery_id: action.series}
    return replace(
        state,
        batteries=batteries,
        current_battery_id=state.current_battery_id or action.battery_id,
    )


def _advisory_started(state: State, action: AdvisoryStarted) -> State:
    return replace(state, is_advising=True)


def _advisory_finished(state: State, action: AdvisoryFinished) -> State:
    return replace(state, is_advising=False)


def _insights_started(state: State, action: InsightsStarted) -> State:
    return replace(state, is_loading_insights=True)


def _insights_finished(state: State, action: InsightsFinished) -> State:
    return replace(state, is_loading_insights=False)


def _set_alerts(state: State, action: SetAlerts) -> State:
    # A new alert list invalidates the condensed summary of the previous one
    return replace(state, alerts=tuple(action.alerts), alert_summary=None)


def _set_health_summary(state: State, action: SetHealthSummary) -> State:
    return replace(state, health_summary=action.summary)


def _set_alert_summary(state: State, action: SetAlertSummary) -> State:
    return replace(state, alert_summary=action.summary)


def _set_insights(state: State, action: SetInsights) -> State:
    return replace(state, insights=tuple(action.insights))


def _set_power_recommendation(
    state: State, action: SetPowerRecommendation
) -> State:
    return replace(state, power_recommendation=action.recommendation)


_HANDLERS: dict[type, Callable[[State, Action], State]] = {
    StartLoading: _start_loading,
    UpdateUploadProgress: _update_progress,
    ResetUploadState: _reset_upload,
    AddDataBatch: _add_data_batch,
    SetCurrentBattery: _set_current_battery,
    ClearBatteryData: _clear_battery,
    RestoreBatterySeries: _restore_series,
    AdvisoryStarted: _advisory_started,
    AdvisoryFinished: _advisory_finished,
    InsightsStarted: _insights_started,
    InsightsFinished: _insights_finished,
    SetAlerts: _set_alerts,
    SetHealthSummary: _set_health_summary,
    SetAlertSummary: _set_alert_summary,
    SetInsights: _set_insights,
    SetPowerRecommendation: _set_power_recommendation,
}


def reduce(state: State, action: Action) -> State:
    """Apply one action to a state.

    Args:
        state: Current state
        action: Action to apply

    Returns:
        The new state (the same object when the action changes nothing)

    Raises:
        TypeError: If the action type is unknown
    """
    handler = _HANDLERS.get(type(action))
    if handler is None:
        raise TypeError(f"Unknown action: {type(action).__name__}")
    return handler(state, action)


class StateStore:
    """Holds the session state and notifies listeners of every transition."""

    def __init__(self, initial_state: State | None = None) -> None:
        """Initialize the store.

        Args:
            initial_state: Starting state (default: empty session)
        """
        self._state = initial_state or State()
        self._listeners: list[Listener] = []

    @property
    def state(self) -> State:
        return self._state

    def dispatch(self, action: Action) -> State:
        """Apply an action and notify listeners if the state changed.

        Args:
            action: Action to apply

        Returns:
            The new state
        """
        logger.debug(
            "action_dispatched",
            action=type(action).__name__,
            payload=repr(action)[:300],
        )

        previous = self._state
        self._state = reduce(previous, action)

        if self._state is not previous:
            for listener in list(self._listeners):
                try:
                    listener(previous, self._state)
                except Exception as e:
                    logger.error(
                        "state_listener_failed",
                        action=type(action).__name__,
                        error=str(e),
                        exc_info=True,
                    )

        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener called with ``(previous, current)`` states.

        Returns:
            Function removing the listener
        """
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe
