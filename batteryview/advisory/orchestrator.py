"""Debounced orchestration of the advisory calls.

Whenever the latest hourly point of the selected battery changes, a cycle is
scheduled after a quiet period. A cycle always refreshes the health summary
and only asks for deviation alerts when SOC or cell imbalance moved enough
since the previously evaluated point. Fresh data also gets a best-effort
power recommendation.
"""

import asyncio
from collections.abc import Coroutine
from datetime import datetime, timedelta
from typing import Any

from batteryview.api.gemini_client import GeminiAPIError, GeminiClient, is_transient
from batteryview.core.config import AdvisoryConfig
from batteryview.core.logger import get_logger
from batteryview.models.reading import AdvisoryPayload, AveragedDataPoint, Insight
from batteryview.services.notifier import Notifier
from batteryview.state.actions import (
    AdvisoryFinished,
    AdvisoryStarted,
    InsightsFinished,
    InsightsStarted,
    SetAlerts,
    SetAlertSummary,
    SetHealthSummary,
    SetInsights,
    SetPowerRecommendation,
)
from batteryview.state.store import State, StateStore

logger = get_logger(__name__)


def cell_difference(point: AveragedDataPoint) -> float | None:
    """Cell imbalance of a point: the reported difference, else max - min."""
    if point.cell_voltage_difference is not None:
        return point.cell_voltage_difference
    if point.max_cell_voltage is not None and point.min_cell_voltage is not None:
        return point.max_cell_voltage - point.min_cell_voltage
    return None


def should_request_alerts(
    previous: AveragedDataPoint | None,
    current: AveragedDataPoint,
    soc_threshold: float,
    cell_diff_threshold: float,
) -> bool:
    """Decide whether the change since the last evaluation deserves new alerts.

    Args:
        previous: Previously evaluated point (None on the first cycle)
        current: Point being evaluated
        soc_threshold: SOC change above which alerts are requested [%]
        cell_diff_threshold: Cell imbalance change above which alerts are
            requested [V]

    Returns:
        True if the alert service should be called
    """
    if previous is None or previous.battery_id != current.battery_id:
        return True

    if abs(current.soc - previous.soc) > soc_threshold:
        return True

    previous_diff = cell_difference(previous)
    current_diff = cell_difference(current)
    if previous_diff is None and current_diff is None:
        return False
    if previous_diff is None or current_diff is None:
        return True
    return abs(current_diff - previous_diff) > cell_diff_threshold


class AdvisoryOrchestrator:
    """Orchestre les appels de conseil (santé, alertes, résumé, insights).

    Un seul cycle à la fois; un changement survenu pendant un cycle est
    repris par le cycle suivant.
    """

    def __init__(
        self,
        store: StateStore,
        advisory: GeminiClient,
        notifier: Notifier,
        config: AdvisoryConfig | None = None,
    ) -> None:
        """Initialize advisory orchestrator.

        Args:
            store: State store to observe and update
            advisory: Advisory service
            notifier: User-visible notifications
            config: Advisory configuration (debounce, thresholds)
        """
        self.store = store
        self.advisory = advisory
        self.notifier = notifier
        self.config = config or AdvisoryConfig()
        self.previous_point: AveragedDataPoint | None = None
        self._timer: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[Any]] = set()
        self._in_flight = False
        self._rerun_requested = False
        self._unsubscribe = None

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def has_pending_timer(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def start(self) -> None:
        """Start observing the store."""
        if self._unsubscribe is None:
            self._unsubscribe = self.store.subscribe(self._on_state_change)
            logger.debug("advisory_orchestrator_started")

    def _on_state_change(self, previous: State, current: State) -> None:
        latest = current.latest_point
        if latest is previous.latest_point:
            return
        if latest is None:
            self._cancel_timer()
            return
        self.schedule()

    def schedule(self) -> None:
        """(Re)start the debounce timer, cancelling a pending one."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("advisory_schedule_without_event_loop")
            return

        self._cancel_timer()
        self._timer = loop.create_task(self._debounced())

    def _cancel_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
            logger.debug("advisory_timer_cancelled")
        self._timer = None

    async def _debounced(self) -> None:
        await asyncio.sleep(self.config.debounce)
        # The timer has fired: a later change must not cancel this cycle
        self._timer = None
        self._spawn(self.run_cycle())

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def run_cycle(self, force_alerts: bool = False) -> bool:
        """Run one advisory cycle for the selected battery.

        Args:
            force_alerts: Request alerts even if nothing changed enough

        Returns:
            True if a cycle ran, False if deferred or nothing to evaluate
        """
        if self._in_flight:
            self._rerun_requested = True
            logger.debug("advisory_cycle_deferred")
            return False

        point = self.store.state.latest_point
        if point is None:
            return False

        self._in_flight = True
        self.store.dispatch(AdvisoryStarted())
        try:
            await self._evaluate(point, force_alerts)
        finally:
            self._in_flight = False
            self.store.dispatch(AdvisoryFinished())
            if self._rerun_requested:
                self._rerun_requested = False
                self.schedule()

        return True

    async def _evaluate(self, point: AveragedDataPoint, force_alerts: bool) -> None:
        payload = AdvisoryPayload.from_point(
            point, coerce_nulls=self.config.coerce_null_cell_voltages
        )
        request_alerts = force_alerts or should_request_alerts(
            self.previous_point,
            point,
            self.config.soc_threshold,
            self.config.cell_diff_threshold,
        )

        calls: dict[str, Coroutine[Any, Any, Any]] = {
            "health": self.advisory.summarize_health(payload)
        }
        if request_alerts:
            calls["alerts"] = self.advisory.detect_alerts(payload)
        else:
            logger.info(
                "advisory_alerts_skipped",
                battery_id=point.battery_id,
                soc=point.soc,
            )

        logger.info(
            "advisory_cycle_started",
            battery_id=point.battery_id,
            capabilities=list(calls),
        )

        # Independent fan-out: one capability failing never blocks the other
        results = await asyncio.gather(*calls.values(), return_exceptions=True)

        if self.store.state.current_battery_id != point.battery_id:
            logger.info("advisory_results_discarded", battery_id=point.battery_id)
            return

        failed: list[str] = []
        alerts_failed = False

        for name, result in zip(calls, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                if is_transient(result):
                    logger.warning(
                        "advisory_rate_limited", capability=name, error=str(result)
                    )
                    continue
                logger.error(
                    "advisory_capability_failed",
                    capability=name,
                    battery_id=point.battery_id,
                    error_type=type(result).__name__,
                    error=str(result),
                )
                failed.append(name)
                alerts_failed = alerts_failed or name == "alerts"
            elif name == "health":
                self.store.dispatch(SetHealthSummary(summary=result))
            else:
                alerts = tuple(result)
                self.store.dispatch(SetAlerts(alerts=alerts))
                if len(alerts) > 1:
                    self._spawn(self._summarize_alerts(alerts))

        if self.is_fresh(point):
            self._spawn(self._recommend_power(point))

        if failed:
            await self.notifier.error(
                "AI Error", "Could not generate AI insights. Check logs for details."
            )

        # A hard alert failure keeps the old reference so the next change retries
        if not alerts_failed:
            self.previous_point = point

        logger.info(
            "advisory_cycle_complete",
            battery_id=point.battery_id,
            failed=failed,
        )

    async def _summarize_alerts(self, alerts: tuple[str, ...]) -> None:
        """Best-effort condensed summary of several alerts."""
        try:
            summary = await self.advisory.summarize_alerts(list(alerts))
        except Exception as e:
            logger.warning("alert_summary_failed", error=str(e))
            return

        if self.store.state.alerts != alerts:
            logger.debug("alert_summary_outdated")
            return
        self.store.dispatch(SetAlertSummary(summary=summary))

    def is_fresh(self, point: AveragedDataPoint, now: datetime | None = None) -> bool:
        """True when the point is recent enough for forward-looking advice."""
        now = now or datetime.now()
        return now - point.timestamp < timedelta(
            hours=self.config.insights_freshness_hours
        )

    async def _recommend_power(self, point: AveragedDataPoint) -> None:
        """Best-effort power recommendation, like the alert summary."""
        try:
            recommendation = await self.advisory.generate_power_recommendation(
                point.soc, point.power, self.config.location
            )
        except Exception as e:
            logger.warning("power_recommendation_failed", error=str(e))
            return

        if self.store.state.latest_point is not point:
            logger.debug("power_recommendation_outdated")
            return
        self.store.dispatch(SetPowerRecommendation(recommendation=recommendation))
        logger.info("power_recommendation_generated", battery_id=point.battery_id)

    async def request_insights(
        self, now: datetime | None = None
    ) -> list[Insight] | None:
        """Generate forward-looking insights for fresh data, on demand.

        Args:
            now: Reference time for the freshness check (default: now)

        Returns:
            The insights, or None when data is missing, stale or the call failed
        """
        point = self.store.state.latest_point
        if point is None:
            logger.info("insights_skipped_no_data")
            await self.notifier.error("No Data", "Cannot generate insights without data.")
            return None

        if not self.is_fresh(point, now):
            logger.info(
                "insights_skipped_stale_data",
                battery_id=point.battery_id,
                timestamp=point.timestamp.isoformat(),
            )
            return None

        self.store.dispatch(InsightsStarted())
        try:
            insights = await self.advisory.generate_insights(
                point.soc, point.power, self.config.location
            )
        except GeminiAPIError as e:
            if is_transient(e):
                logger.warning("insights_rate_limited", error=str(e))
            else:
                logger.error("insights_failed", error=str(e))
                await self.notifier.error("AI Error", "Could not generate AI insights.")
            return None
        finally:
            self.store.dispatch(InsightsFinished())

        self.store.dispatch(SetInsights(insights=tuple(insights)))
        logger.info("insights_generated", count=len(insights))
        return insights

    async def wait_idle(self) -> None:
        """Wait until no timer or cycle is pending."""
        while True:
            tasks = [t for t in (self._timer, *self._background) if t and not t.done()]
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    async def close(self) -> None:
        """Stop observing, drop the pending timer, let running calls finish."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._cancel_timer()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
