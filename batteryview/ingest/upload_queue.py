"""Strictly sequential upload queue for BMS screenshots.

Files are drained one at a time so that at most one extraction call is ever
outstanding. A rate-limited file pauses the whole queue and is retried after
the backoff; a file failing for any other reason is reported and skipped.
"""

import asyncio
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

import httpx

from batteryview.api.gemini_client import GeminiAPIError, GeminiClient, is_transient
from batteryview.core.config import UploadConfig
from batteryview.core.logger import get_logger
from batteryview.ingest.payloads import UploadSource, read_payload
from batteryview.ingest.timestamps import resolve_timestamp
from batteryview.models.reading import RawDataPoint
from batteryview.services.notifier import Notifier
from batteryview.state.actions import (
    AddDataBatch,
    ResetUploadState,
    StartLoading,
    UpdateUploadProgress,
)
from batteryview.state.store import StateStore

logger = get_logger(__name__)

# Per-file failures that skip the file instead of stopping the queue
HARD_ERRORS = (GeminiAPIError, httpx.HTTPError, OSError, ValueError)


@dataclass(frozen=True)
class FileFailure:
    """A file that could not be ingested."""

    name: str
    error: str


@dataclass
class UploadReport:
    """Outcome of one drain of the queue."""

    total: int = 0
    processed: int = 0
    failures: list[FileFailure] = field(default_factory=list)
    rate_limit_waits: int = 0

    @property
    def failed(self) -> int:
        return len(self.failures)


@dataclass(frozen=True)
class _QueuedFile:
    source: UploadSource
    date_context: datetime


class UploadQueue:
    """File d'attente séquentielle des captures d'écran BMS.

    Transforme chaque fichier en data URI, appelle le service d'extraction,
    résout l'horodatage puis fusionne la lecture dans l'état via le store.
    """

    def __init__(
        self,
        store: StateStore,
        extractor: GeminiClient,
        notifier: Notifier,
        config: UploadConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize upload queue.

        Args:
            store: State store receiving the readings
            extractor: Extraction service
            notifier: User-visible notifications
            config: Upload configuration (backoff, settle delay)
            http_client: HTTP client for URL sources (created lazily if None)
        """
        self.store = store
        self.extractor = extractor
        self.notifier = notifier
        self.config = config or UploadConfig()
        self._http_client = http_client
        self._owns_http_client = http_client is None
        self._pending: deque[_QueuedFile] = deque()
        self._running = False
        self._report = UploadReport()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def pending(self) -> int:
        """Files waiting, including the one being processed."""
        return len(self._pending)

    async def enqueue(
        self,
        sources: Iterable[str | Path | UploadSource],
        date_context: datetime | None = None,
    ) -> UploadReport | None:
        """Queue screenshots and drain the queue.

        When a drain is already running, the files join it and this call
        returns immediately with None.

        Args:
            sources: Paths or URLs of the screenshots, in upload order
            date_context: Date used when a filename carries no date
                (default: now)

        Returns:
            Report of the drain, or None when nothing was started
        """
        items = [UploadSource.of(source) for source in sources]
        if not items:
            logger.debug("upload_enqueue_empty")
            return None

        if not self.extractor.has_credentials:
            logger.error("upload_rejected_missing_credentials", files=len(items))
            await self.notifier.error(
                "API Key Missing",
                "Configure a Gemini API key before uploading screenshots.",
            )
            return None

        context = date_context or datetime.now()
        self._pending.extend(_QueuedFile(source, context) for source in items)

        if self._running:
            self._report.total += len(items)
            self.store.dispatch(
                UpdateUploadProgress(
                    processed=self._handled_count(), total=self._report.total
                )
            )
            logger.info(
                "upload_files_appended",
                files=len(items),
                total=self._report.total,
            )
            return None

        return await self._drain(len(items))

    def _handled_count(self) -> int:
        return self._report.processed + self._report.failed

    async def _drain(self, total: int) -> UploadReport:
        self._running = True
        self._report = report = UploadReport(total=total)
        self.store.dispatch(StartLoading(total_files=total))
        logger.info("upload_batch_started", total=total)

        try:
            while True:
                await self._drain_pending(report)
                await asyncio.sleep(self.config.settle_delay)
                # Files enqueued while settling join this drain
                if not self._pending:
                    break
                logger.info("upload_resumed_after_settle", pending=len(self._pending))

            self.store.dispatch(ResetUploadState())
            await self._notify_batch_complete(report)

            logger.info(
                "upload_batch_complete",
                total=report.total,
                processed=report.processed,
                failed=report.failed,
            )
            return report

        except asyncio.CancelledError:
            logger.warning("upload_batch_cancelled", remaining=len(self._pending))
            self._pending.clear()
            self.store.dispatch(ResetUploadState())
            raise

        finally:
            self._running = False

    async def _drain_pending(self, report: UploadReport) -> None:
        while self._pending:
            item = self._pending[0]

            try:
                point = await self._process(item)
            except GeminiAPIError as e:
                if not is_transient(e):
                    await self._fail(item, e)
                else:
                    report.rate_limit_waits += 1
                    logger.warning(
                        "upload_rate_limited",
                        file=item.source.name,
                        retry_in=self.config.rate_limit_backoff,
                    )
                    await self.notifier.warning(
                        "Rate Limit Reached",
                        f"Pausing uploads, retrying {item.source.name} in "
                        f"{self.config.rate_limit_backoff:g}s.",
                    )
                    await asyncio.sleep(self.config.rate_limit_backoff)
                    continue
            except HARD_ERRORS as e:
                await self._fail(item, e)
            else:
                self._pending.popleft()
                self.store.dispatch(AddDataBatch(points=(point,)))
                report.processed += 1
                logger.info(
                    "upload_file_merged",
                    file=item.source.name,
                    battery_id=point.battery_id,
                    timestamp=point.timestamp.isoformat(),
                )

            self.store.dispatch(
                UpdateUploadProgress(
                    processed=self._handled_count(), total=report.total
                )
            )

    async def _process(self, item: _QueuedFile) -> RawDataPoint:
        """Extract and timestamp one file."""
        http_client = await self._get_http_client() if item.source.is_url else None
        payload = await read_payload(item.source, http_client)
        readings = await self.extractor.extract_readings([payload])
        if not readings:
            raise ValueError(f"No reading extracted from {item.source.name}")
        reading = readings[0]

        timestamp = resolve_timestamp(
            item.source.name, item.date_context, reading.timestamp
        )
        return RawDataPoint.from_reading(reading, timestamp)

    async def _fail(self, item: _QueuedFile, error: Exception) -> None:
        self._pending.popleft()
        self._report.failures.append(FileFailure(item.source.name, str(error)))
        logger.error(
            "upload_file_failed",
            file=item.source.name,
            error_type=type(error).__name__,
            error=str(error),
        )
        await self.notifier.error(
            f"Error processing {item.source.name}",
            "Could not extract data. Check logs for details.",
        )

    async def _notify_batch_complete(self, report: UploadReport) -> None:
        if report.failed == 0:
            await self.notifier.success(
                "Upload Complete",
                f"{report.processed} file(s) processed successfully.",
            )
        elif report.processed == 0:
            await self.notifier.error(
                "Error processing batch",
                f"Could not extract data from any of the {report.total} file(s).",
            )
        else:
            await self.notifier.warning(
                "Upload Finished With Errors",
                f"{report.processed} of {report.total} file(s) processed, "
                f"{report.failed} failed.",
            )

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.config.url_timeout)
        return self._http_client

    async def close(self) -> None:
        """Close the HTTP client if the queue created it."""
        if self._http_client and self._owns_http_client:
            await self._http_client.aclose()
        self._http_client = None
