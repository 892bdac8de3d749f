"""JSON backups of a battery series.

A backup file holds both series of one battery with camelCase keys::

    {"averagedData": [...], "rawData": [...]}
"""

import json
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError

from batteryview.core.logger import get_logger
from batteryview.models.reading import AveragedDataPoint, BatterySeries, RawDataPoint

logger = get_logger(__name__)


class BackupError(Exception):
    """A backup file cannot be read back."""


def backup_filename(battery_id: str, now: datetime | None = None) -> str:
    """Name of the backup file of a battery, ``<id>_backup_<ISO>.json``.

    Colons of the ISO timestamp are replaced so the name is valid everywhere.
    """
    stamp = (now or datetime.now()).isoformat(timespec="seconds").replace(":", "-")
    safe_id = "".join(c if c.isalnum() or c in "-_." else "_" for c in battery_id)
    return f"{safe_id}_backup_{stamp}.json"


def export_backup(
    series: BatterySeries,
    battery_id: str,
    directory: Path | str,
    now: datetime | None = None,
) -> Path:
    """Write a battery series to a JSON backup file.

    Args:
        series: Series to save
        battery_id: Battery identifier, used in the file name
        directory: Target directory (created if missing)
        now: Timestamp of the backup (default: now)

    Returns:
        Path of the written file
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / backup_filename(battery_id, now)

    document = {
        "averagedData": [
            point.model_dump(mode="json", by_alias=True) for point in series.averaged
        ],
        "rawData": [point.model_dump(mode="json", by_alias=True) for point in series.raw],
    }
    path.write_text(json.dumps(document, indent=2), encoding="utf-8")

    logger.info(
        "backup_exported",
        battery_id=battery_id,
        path=str(path),
        averaged=len(series.averaged),
        raw=len(series.raw),
    )
    return path


def load_backup(path: Path | str) -> BatterySeries:
    """Read a backup file written by :func:`export_backup`.

    Args:
        path: Backup file

    Returns:
        The series, sorted by timestamp

    Raises:
        FileNotFoundError: If the file does not exist
        BackupError: If the content is not a valid backup
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Backup file not found: {path}")

    try:
        document = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise BackupError(f"Backup {path.name} is not valid JSON: {e}") from e

    if not isinstance(document, dict):
        raise BackupError(f"Backup {path.name} must be a JSON object")

    try:
        averaged = [
            AveragedDataPoint.model_validate(entry)
            for entry in document.get("averagedData", [])
        ]
        raw = [RawDataPoint.model_validate(entry) for entry in document.get("rawData", [])]
    except (ValidationError, TypeError) as e:
        raise BackupError(f"Backup {path.name} does not match the data schema: {e}") from e

    series = BatterySeries(
        raw=tuple(sorted(raw, key=lambda p: p.timestamp)),
        averaged=tuple(sorted(averaged, key=lambda p: p.timestamp)),
    )
    logger.info(
        "backup_loaded",
        path=str(path),
        averaged=len(series.averaged),
        raw=len(series.raw),
    )
    return series


def battery_id_of(series: BatterySeries) -> str | None:
    """Battery identifier recorded in a series, if any."""
    points = series.averaged or series.raw
    return points[0].battery_id if points else None
