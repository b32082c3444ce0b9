"""CLI entry-point for the alert remediation engine.

Usage examples
--------------
# Execute matching workflows directly, one alert at a time:
python -m src.engine --input data/alerts.jsonl

# Route every match through the priority queue and workers:
python -m src.engine --input data/alerts.csv --mode queued --out-dir out
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from src.engine.engine import AutomationEngine
from src.engine.loaders import load_alerts
from src.engine.reporter import write_reports
from src.shared.logger import setup_logging

log = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="engine",
        description="Alert remediation engine: mine patterns, match rules, run workflows",
    )
    p.add_argument(
        "--input",
        default="data/alerts.jsonl",
        help="Alert file (CSV or JSONL). Format auto-detected by extension. "
             "Default: data/alerts.jsonl",
    )
    p.add_argument(
        "--automations",
        default="config/automations.yaml",
        help="YAML file with the automation definitions. Default: config/automations.yaml",
    )
    p.add_argument(
        "--config",
        default=None,
        help="Engine options YAML (e.g. config/engine.yaml). Defaults apply when omitted.",
    )
    p.add_argument(
        "--out-dir",
        default="out",
        help="Output directory. Default: out/",
    )
    p.add_argument(
        "--mode",
        default="direct",
        choices=["direct", "queued"],
        help="direct: execute workflows inline; queued: go through the scheduler. Default: direct",
    )
    p.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level. Default: INFO",
    )
    return p


async def run(args: argparse.Namespace) -> AutomationEngine:
    engine = AutomationEngine.from_files(args.config, args.automations)
    alerts = load_alerts(args.input)
    await engine.start()
    try:
        await engine.replay(alerts, mode=args.mode)
    finally:
        await engine.stop(drain=True)
    write_reports(engine, args.out_dir)
    return engine


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)
    engine = asyncio.run(run(args))
    log.info(
        "Done: %d alert(s) matched, %d queue item(s) finished",
        len(engine.get_history()), len(engine.scheduler.get_history()),
    )


if __name__ == "__main__":
    main()
