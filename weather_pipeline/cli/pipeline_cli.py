"""
CLI for running and administering the weather pipeline.

Usage:
    weather-pipeline init-db
    weather-pipeline ingest <path> [--with-consumer]
    weather-pipeline consume
    weather-pipeline monitor
    weather-pipeline stats
    weather-pipeline purge --older-than-days <days>
    weather-pipeline send-test

Settings come from the environment (a .env file in the working directory
is loaded first) and from an optional YAML file given with --config.
"""

import argparse
import json
import signal
import sys
import threading
import time
from datetime import datetime, timedelta

from dotenv import load_dotenv

from weather_pipeline.config import PipelineSettings
from weather_pipeline.observability.logger import configure_logging, get_logger
from weather_pipeline.observability.metrics import start_metrics_server
from weather_pipeline.service import PipelineService
from weather_pipeline.streaming.monitor import MonitoringConsumer
from weather_pipeline.warehouse.schema_mgmt import EXPECTED_INDEXES

logger = get_logger(__name__)

# Global flag for graceful shutdown
_shutdown_requested = False


def signal_handler(signum, frame):  # type: ignore[no-untyped-def]
    """
    Handle shutdown signals (SIGINT, SIGTERM) for graceful termination.

    Args:
        signum: Signal number
        frame: Current stack frame
    """
    global _shutdown_requested
    signal_name = signal.Signals(signum).name
    logger.info(f"Received {signal_name} signal, initiating graceful shutdown...")
    _shutdown_requested = True


def install_signal_handlers() -> None:
    global _shutdown_requested
    _shutdown_requested = False
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


def _print_json(payload: dict, stream=None) -> None:
    print(json.dumps(payload, indent=2, default=str), file=stream or sys.stdout)


def _fail(message: str, error: Exception) -> int:
    logger.error(f"{message}: {error}", exc_info=True)
    _print_json({"status": "error", "error": str(error)}, stream=sys.stderr)
    return 1


def load_settings(args: argparse.Namespace) -> PipelineSettings:
    """
    Environment (+ .env) settings, overlaid with --config and CLI flags.

    Raises:
        FileNotFoundError: If --config names a missing file
        ValueError: If a setting is invalid
    """
    load_dotenv()
    if args.config:
        settings = PipelineSettings.from_yaml(args.config)
    else:
        settings = PipelineSettings.from_env()

    overrides = {}
    if args.log_level:
        overrides["log_level"] = args.log_level
    if args.metrics_port is not None:
        overrides["metrics_port"] = args.metrics_port
    if overrides:
        settings = PipelineSettings(**{**settings.model_dump(), **overrides})
    return settings


def init_db_command(service: PipelineService, args: argparse.Namespace) -> int:
    """Create weather_data and its indexes."""
    try:
        service.init_db()
        _print_json({"status": "ok", "table": "weather_data", "indexes": list(EXPECTED_INDEXES)})
        return 0
    except Exception as e:
        return _fail("Failed to initialize database", e)


def ingest_command(service: PipelineService, args: argparse.Namespace) -> int:
    """
    Ingest one CSV file and print the final job status.

    Args:
        service: Pipeline service
        args: Parsed command-line arguments

    Returns:
        Exit code (0 when the job completed or was cancelled)
    """
    install_signal_handlers()

    try:
        if args.with_consumer:
            service.start_consumer()

        job = service.ingest(args.path)
        logger.info(f"Ingestion job {job.job_id} started for {args.path}")

        while not job.done:
            if _shutdown_requested:
                job.cancel()
                break
            time.sleep(0.5)

        status = job.wait(raise_on_failure=False)
        _print_json(status.model_dump(mode="json"))

        if args.with_consumer and not _shutdown_requested:
            logger.info("Ingestion finished, storage consumer keeps running (press Ctrl+C to stop)...")
            while service.consumer_running and not _shutdown_requested:
                time.sleep(1)

        return 1 if status.state == "failed" else 0

    except FileNotFoundError as e:
        logger.error(f"Input file not found: {e}")
        _print_json({"status": "error", "error": str(e)}, stream=sys.stderr)
        return 1
    except Exception as e:
        return _fail("Ingestion failed", e)


def consume_command(service: PipelineService, args: argparse.Namespace) -> int:
    """Run the storage consumer until SIGINT/SIGTERM."""
    install_signal_handlers()

    try:
        consumer = service.start_consumer()
        logger.info("Waiting for termination (press Ctrl+C to stop)...")

        while consumer.running and not _shutdown_requested:
            time.sleep(1)

        logger.info("Stopping storage consumer gracefully...")
        service.stop_consumer()

        if consumer.failures:
            logger.error(f"{len(consumer.failures)} storage worker(s) crashed")
        _print_json(service.consumer_stats().model_dump())
        return 1 if consumer.failures else 0

    except Exception as e:
        return _fail("Storage consumer failed", e)


def monitor_command(service: PipelineService, args: argparse.Namespace) -> int:
    """Run the monitoring consumer; print per-city counts on exit."""
    install_signal_handlers()

    try:
        monitor = MonitoringConsumer(service.settings)
        thread = threading.Thread(target=monitor.run, name="weather-monitor", daemon=True)
        thread.start()

        while thread.is_alive() and not _shutdown_requested:
            time.sleep(1)

        monitor.stop()
        thread.join(timeout=30)
        _print_json({"group_id": monitor.group_id, "city_counts": monitor.city_counts()})
        return 0

    except Exception as e:
        return _fail("Monitoring consumer failed", e)


def stats_command(service: PipelineService, args: argparse.Namespace) -> int:
    """Print row totals and the per-city summary."""
    try:
        repository = service.repository
        _print_json({
            "total_rows": repository.count_all(),
            "unprocessed_rows": repository.count_unprocessed(),
            "cities": repository.summary_by_city(),
        })
        return 0
    except Exception as e:
        return _fail("Failed to query statistics", e)


def purge_command(service: PipelineService, args: argparse.Namespace) -> int:
    """Delete processed rows older than --older-than-days."""
    try:
        cutoff = datetime.now() - timedelta(days=args.older_than_days)
        deleted = service.purge_processed(cutoff)
        _print_json({"status": "ok", "deleted": deleted, "cutoff": cutoff.isoformat()})
        return 0
    except Exception as e:
        return _fail("Retention sweep failed", e)


def send_test_command(service: PipelineService, args: argparse.Namespace) -> int:
    """Publish the Mbeya test record and wait for the acknowledgement."""
    try:
        future = service.send_test_record()
        metadata = future.get(timeout=args.timeout)
        _print_json({
            "status": "sent",
            "topic": metadata.topic,
            "partition": metadata.partition,
            "offset": metadata.offset,
        })
        return 0
    except Exception as e:
        return _fail("Failed to send test record", e)


COMMANDS = {
    "init-db": init_db_command,
    "ingest": ingest_command,
    "consume": consume_command,
    "monitor": monitor_command,
    "stats": stats_command,
    "purge": purge_command,
    "send-test": send_test_command,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="weather-pipeline",
        description="Weather CSV -> Kafka -> PostgreSQL ingestion pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Create the table and indexes
  %(prog)s init-db

  # Ingest a file while the storage consumer runs in this process
  %(prog)s ingest data/tanzania_weather_data.csv --with-consumer

  # Run the storage consumer only
  %(prog)s --config config/pipeline.yaml consume

  # Delete processed rows older than 30 days
  %(prog)s purge --older-than-days 30
        """
    )

    parser.add_argument(
        "--config",
        help="YAML settings file (overrides environment variables)"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (default: LOG_LEVEL or INFO)"
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        help="Expose Prometheus metrics on this port"
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    subparsers.add_parser("init-db", help="Create weather_data and its indexes")

    ingest_parser = subparsers.add_parser("ingest", help="Publish a weather CSV file to Kafka")
    ingest_parser.add_argument("path", help="CSV file to ingest")
    ingest_parser.add_argument(
        "--with-consumer",
        action="store_true",
        help="Also run the storage consumer in this process"
    )

    subparsers.add_parser("consume", help="Run the storage consumer")
    subparsers.add_parser("monitor", help="Run the read-only monitoring consumer")
    subparsers.add_parser("stats", help="Show weather_data totals per city")

    purge_parser = subparsers.add_parser("purge", help="Delete old processed rows")
    purge_parser.add_argument(
        "--older-than-days",
        type=int,
        required=True,
        help="Delete processed rows created more than this many days ago"
    )

    send_parser = subparsers.add_parser("send-test", help="Publish one test record")
    send_parser.add_argument(
        "--timeout",
        type=float,
        default=30.0,
        help="Seconds to wait for the broker acknowledgement (default: 30)"
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the weather pipeline CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        settings = load_settings(args)
    except (FileNotFoundError, ValueError) as e:
        print(json.dumps({"status": "error", "error": str(e)}), file=sys.stderr)
        return 2

    configure_logging(settings.log_level, settings.log_format)
    if settings.metrics_port:
        start_metrics_server(settings.metrics_port)
        logger.info(f"Prometheus metrics available on port {settings.metrics_port}")

    with PipelineService(settings) as service:
        return COMMANDS[args.command](service, args)


if __name__ == "__main__":
    sys.exit(main())
