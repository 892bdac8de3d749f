"""Fixtures pytest communes."""

from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest

from batteryview.api.gemini_client import GeminiClient
from batteryview.core.config import (
    AdvisoryConfig,
    AppConfig,
    BackupConfig,
    GeminiConfig,
    LoggingConfig,
    NotificationConfig,
    UploadConfig,
)
from batteryview.models.reading import RawDataPoint, Reading
from batteryview.services.notifier import Notifier
from batteryview.state.store import StateStore


@pytest.fixture
def upload_config() -> UploadConfig:
    """Config d'upload sans attente."""
    return UploadConfig(rate_limit_backoff=0, settle_delay=0)


@pytest.fixture
def advisory_config() -> AdvisoryConfig:
    """Config de conseil sans anti-rebond."""
    return AdvisoryConfig(debounce=0)


@pytest.fixture
def app_config(
    tmp_path: Path, upload_config: UploadConfig, advisory_config: AdvisoryConfig
) -> AppConfig:
    """Fixture pour configuration complète de test."""
    return AppConfig(
        gemini=GeminiConfig(api_key="test-key", api_url="https://gemini.test/v1beta"),
        upload=upload_config,
        advisory=advisory_config,
        notification=NotificationConfig(enabled=True, urls=""),
        backup=BackupConfig(directory=str(tmp_path / "backups")),
        logging=LoggingConfig(level="DEBUG", format="text", file=""),
    )


@pytest.fixture
def store() -> StateStore:
    return StateStore()


@pytest.fixture
def notifier() -> Notifier:
    """Notifier sans canal Apprise, historique seulement."""
    return Notifier(NotificationConfig(enabled=True, urls=""))


@pytest.fixture
def mock_client() -> MagicMock:
    """Client Gemini simulé (méthodes async en AsyncMock)."""
    client = MagicMock(spec=GeminiClient)
    client.has_credentials = True
    client.summarize_health.return_value = "Battery is healthy."
    client.detect_alerts.return_value = []
    client.generate_power_recommendation.return_value = "Keep your usual load today."
    return client


@pytest.fixture
def make_reading() -> Callable[..., Reading]:
    """Fabrique de lectures extraites."""

    def _make(**overrides: Any) -> Reading:
        values: dict[str, Any] = {
            "battery_id": "B1",
            "soc": 80.0,
            "voltage": 53.2,
            "current": -4.5,
            "remaining_capacity": 160.0,
            "max_cell_voltage": 3.330,
            "min_cell_voltage": 3.320,
            "avg_cell_voltage": 3.325,
            "cell_voltage_difference": 0.010,
            "cycle_count": 42,
            "power": 0.24,
            "mos_charge_status": "ON",
            "mos_discharge_status": "ON",
            "balance_status": "OFF",
        }
        values.update(overrides)
        return Reading(**values)

    return _make


@pytest.fixture
def make_point(make_reading: Callable[..., Reading]) -> Callable[..., RawDataPoint]:
    """Fabrique de points bruts horodatés."""

    def _make(timestamp: datetime | None = None, **overrides: Any) -> RawDataPoint:
        return RawDataPoint.from_reading(
            make_reading(**overrides), timestamp or datetime(2024, 1, 15, 14, 30)
        )

    return _make


@pytest.fixture
def mock_config_path(tmp_path: Path) -> Path:
    """Crée un fichier de config temporaire."""
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        """
gemini:
  api_key: yaml-key
  vision_model: gemini-vision-test
  timeout: 30
upload:
  rate_limit_backoff: 10
  settle_delay: 0.5
advisory:
  debounce: 2
  soc_threshold: 3.5
  location: Hilo, HI
notification:
  enabled: false
  urls: ""
backup:
  directory: /tmp/batteryview-backups
logging:
  level: debug
  format: TEXT
  file: ""
"""
    )
    return config_file
