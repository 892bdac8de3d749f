"""Dashboard session: wires the store, the services and the orchestration."""

import asyncio
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from typing import Any

from batteryview.advisory.orchestrator import AdvisoryOrchestrator
from batteryview.api.gemini_client import GeminiClient
from batteryview.core.config import AppConfig
from batteryview.core.logger import get_logger
from batteryview.ingest.payloads import UploadSource
from batteryview.ingest.upload_queue import UploadQueue, UploadReport
from batteryview.models.reading import Insight
from batteryview.services.backup import battery_id_of, export_backup, load_backup
from batteryview.services.notifier import Notifier
from batteryview.state.actions import (
    ClearBatteryData,
    RestoreBatterySeries,
    SetCurrentBattery,
)
from batteryview.state.store import State, StateStore

logger = get_logger(__name__)


class DashboardSession:
    """Session du tableau de bord batterie.

    Point d'entrée unique pour l'interface: téléversement, sélection,
    effacement et sauvegarde des données, conseils IA.
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        client: GeminiClient | None = None,
        notifier: Notifier | None = None,
        store: StateStore | None = None,
    ) -> None:
        """Initialize the session.

        Args:
            config: Application configuration
            client: Extraction and advisory client (built from config if None)
            notifier: Notification service (built from config if None)
            store: State store (empty session if None)
        """
        self.config = config or AppConfig()
        self.store = store or StateStore()
        self.client = client or GeminiClient(self.config.gemini)
        self.notifier = notifier or Notifier(self.config.notification)
        self.uploads = UploadQueue(
            self.store, self.client, self.notifier, self.config.upload
        )
        self.advisor = AdvisoryOrchestrator(
            self.store, self.client, self.notifier, self.config.advisory
        )
        self.advisor.start()

    @property
    def state(self) -> State:
        return self.store.state

    async def upload(
        self,
        sources: Iterable[str | Path | UploadSource],
        date_context: datetime | None = None,
    ) -> UploadReport | None:
        """Upload screenshots (paths or URLs) in the given order."""
        return await self.uploads.enqueue(sources, date_context)

    async def import_urls(
        self, urls: Iterable[str], date_context: datetime | None = None
    ) -> UploadReport | None:
        """Import screenshots from URLs, skipping anything that is not http(s)."""
        sources = []
        for url in urls:
            source = UploadSource.of(url.strip())
            if source.is_url:
                sources.append(source)
            else:
                logger.warning("url_import_skipped", url=url)
        return await self.uploads.enqueue(sources, date_context)

    async def select_battery(self, battery_id: str) -> None:
        """Select the battery shown on the dashboard."""
        if battery_id not in self.state.batteries:
            await self.notifier.error(
                "Unknown Battery", f"No data loaded for battery {battery_id}."
            )
            return
        self.store.dispatch(SetCurrentBattery(battery_id=battery_id))

    async def export_current_backup(self) -> Path | None:
        """Write a backup of the selected battery.

        Returns:
            Path of the backup, or None when no battery is selected
        """
        battery_id = self.state.current_battery_id
        if battery_id is None:
            return None
        return await asyncio.to_thread(
            export_backup,
            self.state.series(battery_id),
            battery_id,
            self.config.backup.directory,
        )

    async def clear_current_battery(self, backup: bool = True) -> Path | None:
        """Delete all data of the selected battery, optionally saving it first.

        Args:
            backup: Write a backup file before clearing

        Returns:
            Path of the backup file, if one was written
        """
        battery_id = self.state.current_battery_id
        if battery_id is None:
            await self.notifier.error("No Battery Selected", "There is no data to clear.")
            return None

        path = None
        if backup:
            # A failed backup aborts the clear: data is never lost silently
            try:
                path = await self.export_current_backup()
            except OSError as e:
                logger.error("backup_export_failed", battery_id=battery_id, error=str(e))
                await self.notifier.error(
                    "Backup Failed", f"Data of {battery_id} was kept: {e}"
                )
                return None

        self.store.dispatch(ClearBatteryData(battery_id=battery_id))
        logger.info("battery_data_cleared", battery_id=battery_id, backup=str(path))
        await self.notifier.success(
            "Data Cleared", f"All data for battery {battery_id} has been removed."
        )
        return path

    async def restore_backup(self, path: Path | str) -> str | None:
        """Restore a battery series from a backup file.

        Returns:
            Identifier of the restored battery, or None for an empty backup
        """
        series = await asyncio.to_thread(load_backup, path)
        battery_id = battery_id_of(series)
        if battery_id is None:
            await self.notifier.warning("Empty Backup", f"{Path(path).name} holds no data.")
            return None

        self.store.dispatch(RestoreBatterySeries(battery_id=battery_id, series=series))
        await self.notifier.success(
            "Backup Restored", f"Data for battery {battery_id} has been restored."
        )
        return battery_id

    async def request_insights(self, now: datetime | None = None) -> list[Insight] | None:
        return await self.advisor.request_insights(now)

    async def refresh_advisory(self) -> bool:
        """Run an advisory cycle now, alerts included."""
        return await self.advisor.run_cycle(force_alerts=True)

    async def wait_idle(self) -> None:
        """Wait for pending advisory work to finish."""
        await self.advisor.wait_idle()

    async def close(self) -> None:
        """Release timers and HTTP clients."""
        await self.advisor.close()
        await self.uploads.close()
        await self.client.close()
        logger.debug("dashboard_session_closed")

    async def __aenter__(self) -> "DashboardSession":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
