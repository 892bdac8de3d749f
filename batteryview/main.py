"""Point d'entrée en ligne de commande."""

import argparse
import asyncio
import json
import sys
from datetime import datetime
from pathlib import Path

from batteryview import __version__
from batteryview.core.config import AppConfig
from batteryview.core.logger import configure_logging, get_logger
from batteryview.core.session import DashboardSession
from batteryview.state.store import State

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="batteryview",
        description="Extract BMS screenshots and summarize battery health",
    )
    parser.add_argument("sources", nargs="*", help="Screenshot paths or URLs")
    parser.add_argument(
        "-c", "--config", type=Path, help="YAML configuration file (default: environment)"
    )
    parser.add_argument(
        "--date",
        type=datetime.fromisoformat,
        help="Date used when a filename carries none (YYYY-MM-DD)",
    )
    parser.add_argument("--restore", type=Path, help="Backup file to load first")
    parser.add_argument("--backup", action="store_true", help="Write a backup at the end")
    parser.add_argument("--insights", action="store_true", help="Also request insights")
    parser.add_argument(
        "--refresh",
        action="store_true",
        help="Re-run the health summary and alerts once the upload settles",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def render_state(state: State) -> dict:
    """Summary of the session printed at the end of a run."""
    latest = state.latest_point
    return {
        "batteries": state.battery_ids,
        "currentBatteryId": state.current_battery_id,
        "latest": latest.model_dump(mode="json", by_alias=True) if latest else None,
        "hourlyPoints": len(state.current_averaged),
        "rawPoints": len(state.current_raw),
        "healthSummary": state.health_summary,
        "powerRecommendation": state.power_recommendation,
        "alerts": list(state.alerts),
        "alertSummary": (
            state.alert_summary.model_dump(by_alias=True) if state.alert_summary else None
        ),
        "insights": [insight.model_dump(by_alias=True) for insight in state.insights],
    }


async def main(argv: list[str] | None = None) -> int:
    """Fonction principale."""
    args = build_parser().parse_args(argv)

    # Charger la configuration
    config = AppConfig.from_yaml(args.config) if args.config else AppConfig()

    # Configurer le logging
    configure_logging(config.logging)

    logger.info("batteryview_starting", version=__version__, files=len(args.sources))

    async with DashboardSession(config) as session:
        if args.restore:
            await session.restore_backup(args.restore)

        if args.sources:
            report = await session.upload(args.sources, args.date)
            if report is None and not session.state.batteries:
                logger.error("upload_not_started")
                return 1

        await session.wait_idle()

        if args.refresh:
            await session.refresh_advisory()
            await session.wait_idle()

        if args.insights:
            await session.request_insights()

        if args.backup:
            path = await session.export_current_backup()
            if path:
                print(f"Backup written to {path}", file=sys.stderr)

        print(json.dumps(render_state(session.state), indent=2))

    logger.info("batteryview_stopped")
    return 0


def run() -> None:
    """Console script entry point."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
