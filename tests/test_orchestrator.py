"""Tests pour l'orchestration des conseils IA."""

import asyncio
from collections.abc import AsyncIterator, Callable
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest
import pytest_asyncio

from batteryview.advisory.orchestrator import (
    AdvisoryOrchestrator,
    cell_difference,
    should_request_alerts,
)
from batteryview.api.gemini_client import GeminiAPIError, RateLimitError
from batteryview.core.config import AdvisoryConfig
from batteryview.models.reading import AlertSummary, AveragedDataPoint, Insight, RawDataPoint
from batteryview.services.notifier import Notifier
from batteryview.state.actions import AddDataBatch
from batteryview.state.store import StateStore

MakePoint = Callable[..., RawDataPoint]


@pytest.fixture
def make_bucket(make_point: MakePoint) -> Callable[..., AveragedDataPoint]:
    def _make(**overrides: object) -> AveragedDataPoint:
        return AveragedDataPoint.from_raw(make_point(**overrides))

    return _make


@pytest_asyncio.fixture
async def orchestrator(
    store: StateStore,
    mock_client: MagicMock,
    notifier: Notifier,
    advisory_config: AdvisoryConfig,
) -> AsyncIterator[AdvisoryOrchestrator]:
    orchestrator = AdvisoryOrchestrator(store, mock_client, notifier, advisory_config)
    yield orchestrator
    await orchestrator.close()


def test_alert_skip_heuristic(make_bucket: Callable[..., AveragedDataPoint]) -> None:
    """Test l'heuristique de saut des alertes (SOC et écart de cellules)."""
    previous = make_bucket(soc=80.0, cell_voltage_difference=0.010)

    small_change = make_bucket(soc=80.5, cell_voltage_difference=0.011)
    soc_jump = make_bucket(soc=83.0, cell_voltage_difference=0.011)
    cell_jump = make_bucket(soc=80.0, cell_voltage_difference=0.020)

    assert should_request_alerts(previous, small_change, 2.0, 0.005) is False
    assert should_request_alerts(previous, soc_jump, 2.0, 0.005) is True
    assert should_request_alerts(previous, cell_jump, 2.0, 0.005) is True


def test_alerts_requested_without_comparable_reference(
    make_bucket: Callable[..., AveragedDataPoint],
) -> None:
    current = make_bucket(soc=80.0)

    assert should_request_alerts(None, current, 2.0, 0.005) is True
    assert should_request_alerts(make_bucket(battery_id="B2"), current, 2.0, 0.005) is True


def test_cell_difference_appearing_counts_as_change(
    make_bucket: Callable[..., AveragedDataPoint],
) -> None:
    no_cells = {
        "cell_voltage_difference": None,
        "max_cell_voltage": None,
        "min_cell_voltage": None,
    }
    previous = make_bucket(**no_cells)

    assert should_request_alerts(previous, make_bucket(**no_cells), 2.0, 0.005) is False
    assert should_request_alerts(previous, make_bucket(), 2.0, 0.005) is True


def test_cell_difference_falls_back_to_max_minus_min(
    make_bucket: Callable[..., AveragedDataPoint],
) -> None:
    point = make_bucket(
        cell_voltage_difference=None, max_cell_voltage=3.40, min_cell_voltage=3.30
    )

    assert cell_difference(point) == pytest.approx(0.10)


@pytest.mark.asyncio
async def test_cycle_sets_health_and_alerts(
    orchestrator: AdvisoryOrchestrator,
    store: StateStore,
    mock_client: MagicMock,
    make_point: MakePoint,
) -> None:
    """Test un cycle complet: résumé de santé et alertes."""
    store.dispatch(AddDataBatch(points=(make_point(),)))
    mock_client.detect_alerts.return_value = ["Cell imbalance rising"]

    assert await orchestrator.run_cycle() is True

    state = store.state
    assert state.health_summary == "Battery is healthy."
    assert state.alerts == ("Cell imbalance rising",)
    assert state.is_advising is False
    assert orchestrator.previous_point is state.latest_point
    mock_client.summarize_alerts.assert_not_awaited()


@pytest.mark.asyncio
async def test_small_change_skips_alerts(
    orchestrator: AdvisoryOrchestrator,
    store: StateStore,
    mock_client: MagicMock,
    make_point: MakePoint,
) -> None:
    """Test qu'un petit changement ne redemande pas les alertes."""
    store.dispatch(AddDataBatch(points=(make_point(soc=80.0, cell_voltage_difference=0.010),)))
    await orchestrator.run_cycle()

    store.dispatch(
        AddDataBatch(
            points=(
                make_point(
                    datetime(2024, 1, 15, 15), soc=80.5, cell_voltage_difference=0.011
                ),
            )
        )
    )
    await orchestrator.run_cycle()

    assert mock_client.summarize_health.await_count == 2
    assert mock_client.detect_alerts.await_count == 1

    store.dispatch(AddDataBatch(points=(make_point(datetime(2024, 1, 15, 16), soc=83.0),)))
    await orchestrator.run_cycle()

    assert mock_client.detect_alerts.await_count == 2


@pytest.mark.asyncio
async def test_several_alerts_are_summarized(
    orchestrator: AdvisoryOrchestrator,
    store: StateStore,
    mock_client: MagicMock,
    make_point: MakePoint,
) -> None:
    store.dispatch(AddDataBatch(points=(make_point(),)))
    mock_client.detect_alerts.return_value = ["Low SOC", "High current"]
    mock_client.summarize_alerts.return_value = AlertSummary(
        summary="Two issues", recommendation="Reduce load"
    )

    await orchestrator.run_cycle()
    await orchestrator.wait_idle()

    mock_client.summarize_alerts.assert_awaited_once_with(["Low SOC", "High current"])
    assert store.state.alert_summary == AlertSummary(
        summary="Two issues", recommendation="Reduce load"
    )


@pytest.mark.asyncio
async def test_alert_summary_failure_is_ignored(
    orchestrator: AdvisoryOrchestrator,
    store: StateStore,
    mock_client: MagicMock,
    notifier: Notifier,
    make_point: MakePoint,
) -> None:
    store.dispatch(AddDataBatch(points=(make_point(),)))
    mock_client.detect_alerts.return_value = ["Low SOC", "High current"]
    mock_client.summarize_alerts.side_effect = GeminiAPIError("boom")

    await orchestrator.run_cycle()
    await orchestrator.wait_idle()

    assert store.state.alerts == ("Low SOC", "High current")
    assert store.state.alert_summary is None
    assert list(notifier.history) == []


@pytest.mark.asyncio
async def test_rate_limit_is_silent(
    orchestrator: AdvisoryOrchestrator,
    store: StateStore,
    mock_client: MagicMock,
    notifier: Notifier,
    make_point: MakePoint,
) -> None:
    """Test qu'une limite de débit n'affiche aucune erreur."""
    store.dispatch(AddDataBatch(points=(make_point(),)))
    mock_client.summarize_health.side_effect = RateLimitError("RESOURCE_EXHAUSTED")
    mock_client.detect_alerts.return_value = ["Low SOC"]

    await orchestrator.run_cycle()

    assert store.state.health_summary == ""
    assert store.state.alerts == ("Low SOC",)
    assert list(notifier.history) == []


@pytest.mark.asyncio
async def test_hard_failures_show_one_toast(
    orchestrator: AdvisoryOrchestrator,
    store: StateStore,
    mock_client: MagicMock,
    notifier: Notifier,
    make_point: MakePoint,
) -> None:
    """Test un seul toast d'erreur par cycle, et nouvel essai des alertes ensuite."""
    store.dispatch(AddDataBatch(points=(make_point(),)))
    mock_client.summarize_health.side_effect = GeminiAPIError("Gemini API error 500")
    mock_client.detect_alerts.side_effect = GeminiAPIError("Gemini API error 500")

    await orchestrator.run_cycle()

    assert [toast.title for toast in notifier.history] == ["AI Error"]
    assert orchestrator.previous_point is None
    assert store.state.is_advising is False

    mock_client.summarize_health.side_effect = None
    mock_client.detect_alerts.side_effect = None
    await orchestrator.run_cycle()

    assert mock_client.detect_alerts.await_count == 2


@pytest.mark.asyncio
async def test_null_cell_voltages_coerced_when_enabled(
    store: StateStore,
    mock_client: MagicMock,
    notifier: Notifier,
    make_point: MakePoint,
) -> None:
    orchestrator = AdvisoryOrchestrator(
        store, mock_client, notifier, AdvisoryConfig(coerce_null_cell_voltages=True)
    )
    store.dispatch(AddDataBatch(points=(make_point(max_cell_voltage=None),)))

    await orchestrator.run_cycle()

    payload = mock_client.summarize_health.await_args.args[0]
    assert payload.max_cell_voltage == 0.0
    assert payload.min_cell_voltage == 3.320


@pytest.mark.asyncio
async def test_null_cell_voltages_sent_as_null_by_default(
    orchestrator: AdvisoryOrchestrator,
    store: StateStore,
    mock_client: MagicMock,
    make_point: MakePoint,
) -> None:
    store.dispatch(AddDataBatch(points=(make_point(max_cell_voltage=None),)))

    await orchestrator.run_cycle()

    assert mock_client.detect_alerts.await_args.args[0].max_cell_voltage is None


@pytest.mark.asyncio
async def test_no_data_no_cycle(
    orchestrator: AdvisoryOrchestrator, mock_client: MagicMock
) -> None:
    assert await orchestrator.run_cycle() is False
    mock_client.summarize_health.assert_not_awaited()


@pytest.mark.asyncio
async def test_debounce_collapses_bursts(
    store: StateStore,
    mock_client: MagicMock,
    notifier: Notifier,
    make_point: MakePoint,
) -> None:
    """Test l'anti-rebond: une rafale de changements donne un seul cycle."""
    orchestrator = AdvisoryOrchestrator(
        store, mock_client, notifier, AdvisoryConfig(debounce=0.05)
    )
    orchestrator.start()

    for hour, soc in [(14, 80.0), (15, 70.0), (16, 60.0)]:
        store.dispatch(
            AddDataBatch(points=(make_point(datetime(2024, 1, 15, hour), soc=soc),))
        )

    assert orchestrator.has_pending_timer
    await orchestrator.wait_idle()

    mock_client.summarize_health.assert_awaited_once()
    assert mock_client.summarize_health.await_args.args[0].soc == 60.0
    await orchestrator.close()


@pytest.mark.asyncio
async def test_single_cycle_in_flight(
    orchestrator: AdvisoryOrchestrator,
    store: StateStore,
    mock_client: MagicMock,
    make_point: MakePoint,
) -> None:
    """Test qu'un changement pendant un cycle est repris après celui-ci."""
    gate = asyncio.Event()
    active = 0
    peak = 0

    async def _health(payload: object) -> str:
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await gate.wait()
        active -= 1
        return f"soc {payload.soc}"

    mock_client.summarize_health.side_effect = _health
    orchestrator.start()

    store.dispatch(AddDataBatch(points=(make_point(soc=80.0),)))
    await asyncio.sleep(0.01)
    assert orchestrator.in_flight

    store.dispatch(AddDataBatch(points=(make_point(datetime(2024, 1, 15, 16), soc=60.0),)))
    await asyncio.sleep(0.01)
    gate.set()
    await orchestrator.wait_idle()

    assert mock_client.summarize_health.await_count == 2
    assert peak == 1
    assert store.state.health_summary == "soc 60.0"


@pytest.mark.asyncio
async def test_close_cancels_pending_timer(
    store: StateStore,
    mock_client: MagicMock,
    notifier: Notifier,
    make_point: MakePoint,
) -> None:
    orchestrator = AdvisoryOrchestrator(
        store, mock_client, notifier, AdvisoryConfig(debounce=10)
    )
    orchestrator.start()
    store.dispatch(AddDataBatch(points=(make_point(),)))
    assert orchestrator.has_pending_timer

    await orchestrator.close()

    assert not orchestrator.has_pending_timer
    mock_client.summarize_health.assert_not_awaited()


@pytest.mark.asyncio
async def test_insights_without_data(
    orchestrator: AdvisoryOrchestrator, mock_client: MagicMock, notifier: Notifier
) -> None:
    assert await orchestrator.request_insights() is None

    mock_client.generate_insights.assert_not_awaited()
    assert notifier.history[-1].title == "No Data"


@pytest.mark.asyncio
async def test_insights_for_fresh_data_only(
    orchestrator: AdvisoryOrchestrator,
    store: StateStore,
    mock_client: MagicMock,
    make_point: MakePoint,
) -> None:
    """Test les insights uniquement pour des données de moins de 12 h."""
    store.dispatch(
        AddDataBatch(points=(make_point(datetime(2024, 1, 15, 14), soc=75.0, power=0.5),))
    )
    insight = Insight(title="Solar surplus", explanation="Charge before noon", icon="Sun")
    mock_client.generate_insights.return_value = [insight]

    stale = await orchestrator.request_insights(now=datetime(2024, 1, 16, 3))
    assert stale is None
    mock_client.generate_insights.assert_not_awaited()

    fresh = await orchestrator.request_insights(now=datetime(2024, 1, 15, 20))

    assert fresh == [insight]
    mock_client.generate_insights.assert_awaited_once_with(75.0, 0.5, "Pahoa, HI")
    assert store.state.insights == (insight,)
    assert store.state.is_loading_insights is False


def _recent_hour() -> datetime:
    return datetime.now().replace(minute=0, second=0, microsecond=0)


@pytest.mark.asyncio
async def test_power_recommendation_for_fresh_data(
    orchestrator: AdvisoryOrchestrator,
    store: StateStore,
    mock_client: MagicMock,
    make_point: MakePoint,
) -> None:
    """Test la recommandation d'énergie après un cycle sur données récentes."""
    store.dispatch(AddDataBatch(points=(make_point(_recent_hour(), soc=92.0, power=-1.2),)))
    mock_client.generate_power_recommendation.return_value = "Sunny days ahead, run the dehumidifier."

    await orchestrator.run_cycle()
    await orchestrator.wait_idle()

    mock_client.generate_power_recommendation.assert_awaited_once_with(92.0, -1.2, "Pahoa, HI")
    assert store.state.power_recommendation == "Sunny days ahead, run the dehumidifier."


@pytest.mark.asyncio
async def test_no_power_recommendation_for_old_data(
    orchestrator: AdvisoryOrchestrator,
    store: StateStore,
    mock_client: MagicMock,
    make_point: MakePoint,
) -> None:
    store.dispatch(AddDataBatch(points=(make_point(datetime(2024, 1, 15, 14)),)))

    await orchestrator.run_cycle()
    await orchestrator.wait_idle()

    mock_client.generate_power_recommendation.assert_not_awaited()
    assert store.state.power_recommendation == ""


@pytest.mark.asyncio
async def test_power_recommendation_failure_is_ignored(
    orchestrator: AdvisoryOrchestrator,
    store: StateStore,
    mock_client: MagicMock,
    notifier: Notifier,
    make_point: MakePoint,
) -> None:
    store.dispatch(AddDataBatch(points=(make_point(_recent_hour()),)))
    mock_client.generate_power_recommendation.side_effect = GeminiAPIError("boom")

    await orchestrator.run_cycle()
    await orchestrator.wait_idle()

    assert store.state.health_summary == "Battery is healthy."
    assert store.state.power_recommendation == ""
    assert list(notifier.history) == []


@pytest.mark.asyncio
async def test_insights_do_not_clear_cycle_flag(
    orchestrator: AdvisoryOrchestrator,
    store: StateStore,
    mock_client: MagicMock,
    make_point: MakePoint,
) -> None:
    """Test que la fin des insights ne masque pas un cycle encore en cours."""
    store.dispatch(AddDataBatch(points=(make_point(_recent_hour() - timedelta(hours=1)),)))
    release = asyncio.Event()

    async def _slow_health(payload: object) -> str:
        await release.wait()
        return "Battery is healthy."

    mock_client.summarize_health.side_effect = _slow_health
    mock_client.generate_insights.return_value = []
    mock_client.generate_power_recommendation.return_value = "Balanced use is fine."

    cycle = asyncio.create_task(orchestrator.run_cycle())
    await asyncio.sleep(0)
    assert store.state.is_advising is True

    await orchestrator.request_insights()

    assert store.state.is_advising is True
    assert store.state.is_loading_insights is False

    release.set()
    assert await cycle is True
    assert store.state.is_advising is False
