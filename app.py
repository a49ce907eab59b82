#!/usr/bin/env python3
"""
Pub/Sub Monitoring - Main Application Entry Point.

============================================================
SINGLE ENTRYPOINT
============================================================
Runs the monitoring pipeline as a standalone process.

- Loads configuration from the environment (.env supported)
- Starts aggregation, alert-check and retention jobs
- Handles SIGINT / SIGTERM gracefully

============================================================
USAGE
============================================================
Direct execution:
    python app.py

One-off status dump:
    python app.py --status

Environment-based configuration:
    MONITORING_ALERT_CHECK_INTERVAL_SECONDS=10 python app.py

============================================================
"""

import argparse
import asyncio
import json
import logging
import sys

from pubsub_monitoring import (
    MonitoringConfig,
    create_monitoring_runtime,
    setup_logging,
)
from pubsub_monitoring.core import InvalidConfigError


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="pubsub-monitoring",
        description="Message-bus metrics collection and threshold alerting",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Log level (default: MONITORING_LOG_LEVEL or INFO)",
    )
    parser.add_argument(
        "--log-format",
        type=str,
        choices=["json", "text"],
        default=None,
        help="Log format (default: MONITORING_LOG_FORMAT or text)",
    )
    parser.add_argument(
        "--alert-interval",
        type=float,
        default=None,
        help="Alert check interval in seconds",
    )
    parser.add_argument(
        "--no-default-metrics",
        action="store_true",
        help="Do not pre-register the default metric set",
    )
    parser.add_argument(
        "--status",
        action="store_true",
        help="Build the runtime, print its status and exit",
    )

    return parser


def build_config(args: argparse.Namespace) -> MonitoringConfig:
    """Environment configuration with CLI overrides applied."""
    config = MonitoringConfig.from_env()

    if args.log_level:
        config.log_level = args.log_level
    if args.log_format:
        config.log_format = args.log_format
    if args.alert_interval is not None:
        config.alert_check_interval_seconds = args.alert_interval
    if args.no_default_metrics:
        config.register_default_metrics = False

    return config


def print_banner(config: MonitoringConfig) -> None:
    """Print startup banner."""
    print()
    print("=" * 60)
    print("  PUB/SUB MONITORING")
    print("=" * 60)
    print(f"  Aggregation:  every {config.aggregation_interval_seconds:g}s")
    print(f"  Alert checks: every {config.alert_check_interval_seconds:g}s")
    print(f"  Retention:    {config.retention_days} day(s)")
    print(f"  Telegram:     {'enabled' if config.telegram_enabled else 'disabled'}")
    print("=" * 60)
    print()


# ============================================================
# MAIN FUNCTION
# ============================================================

async def run_application(args: argparse.Namespace, config: MonitoringConfig) -> int:
    """
    Run the monitoring application.

    Returns:
        Exit code
    """
    logger = logging.getLogger(__name__)

    try:
        runtime = create_monitoring_runtime(config)
    except InvalidConfigError as e:
        for error in e.errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1

    if args.status:
        print(json.dumps(runtime.get_status(), indent=2))
        return 0

    try:
        logger.info("Starting monitoring (press Ctrl+C to stop)...")
        await runtime.run_forever()
        return 0
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1


def main() -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()

    try:
        config = build_config(args)
    except InvalidConfigError as e:
        for error in e.errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1

    setup_logging(config.log_level, config.log_format)

    if not args.status:
        print_banner(config)

    try:
        return asyncio.run(run_application(args, config))
    except KeyboardInterrupt:
        return 130


# ============================================================
# ENTRY POINT
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
