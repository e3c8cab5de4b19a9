# order_engine/cli/run_anomaly_scan.py
"""Run one anomaly scan from a shell or an external cron host."""
import asyncio
import json

import click

from order_engine.core.logging_config import configure_logging


@click.command()
@click.option("--actor", default="cli", show_default=True, help="Name recorded on the audit rows")
@click.option("--trigger", default="cli", show_default=True, help="Trigger label for the scan audit row")
def run_anomaly_scan(actor, trigger):
    """Scan monitored products for ordering anomalies and send notifications."""
    configure_logging()
    from order_engine.main import build_anomaly_scheduler

    async def _run():
        scan_scheduler = build_anomaly_scheduler()
        return await scan_scheduler.run_scan(trigger=trigger, actor=actor)

    summary = asyncio.run(_run())
    click.echo(json.dumps(summary.as_dict(), indent=2))
    if not summary.success:
        raise SystemExit(1)


if __name__ == "__main__":
    run_anomaly_scan()
