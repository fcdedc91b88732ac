from __future__ import annotations

import argparse
import logging
from pathlib import Path
import sys

from signalk_mqtt_export.admin import AdminApi
from signalk_mqtt_export.config import AppConfig, default_config, load_config
from signalk_mqtt_export.engine import EngineState, ExportEngine
from signalk_mqtt_export.logging_utils import configure_logging, resolve_log_level
from signalk_mqtt_export.mqtt_client import DryRunDispatcher, MqttDispatcher
from signalk_mqtt_export.source import DeltaStreamSource, read_deltas
from signalk_mqtt_export.storage import JsonRuleRepository

CONNECT_TIMEOUT_S = 5.0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Signal K to MQTT export engine")
    parser.add_argument(
        "--config",
        help="Path to CFG configuration file (defaults are used when omitted)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Enable debug logging (-v) or trace logging (-vv)",
    )
    parser.add_argument(
        "--input",
        default="-",
        help="Newline-delimited JSON deltas to export ('-' reads stdin)",
    )
    parser.add_argument(
        "--rules",
        help="Rule file to use instead of the one named in the config",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log messages without publishing to MQTT",
    )
    parser.add_argument(
        "--test-publish",
        action="store_true",
        help="Publish one diagnostic message to the broker and exit",
    )
    return parser


def build_engine(config: AppConfig, rules_file: str, dry_run: bool) -> ExportEngine:
    dispatcher = DryRunDispatcher(config.mqtt) if dry_run else MqttDispatcher(config.mqtt)
    return ExportEngine(
        config,
        DeltaStreamSource(self_id=config.export.self_id),
        dispatcher,
        JsonRuleRepository(rules_file),
    )


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    level = resolve_log_level(args.verbose, args.log_level)
    configure_logging(level)
    logger = logging.getLogger("signalk_mqtt_export")
    config = load_config(args.config) if args.config else default_config()
    rules_file = args.rules or config.export.rules_file

    engine = build_engine(config, rules_file, args.dry_run)
    admin = AdminApi(engine)

    if args.test_publish:
        engine.dispatcher.connect()
        try:
            if not engine.dispatcher.wait_connected(CONNECT_TIMEOUT_S):
                logger.error("Failed to connect to MQTT broker %s", config.mqtt.broker_url)
                return 1
            result = admin.test_publish()
            if not result["success"]:
                logger.error("Test publish failed: %s", result["error"])
                return 1
            logger.info("Test message published to %s", result["topic"])
            return 0
        finally:
            engine.dispatcher.disconnect()

    engine.start()
    if engine.state is not EngineState.RUNNING:
        return 0
    if not engine.dispatcher.wait_connected(CONNECT_TIMEOUT_S):
        logger.warning("MQTT broker not connected yet; updates are dropped until it is.")

    source = engine.source
    stream = None
    exit_code = 0
    try:
        stream = sys.stdin if args.input == "-" else Path(args.input).open(encoding="utf-8")
        for raw in read_deltas(stream):
            source.publish(raw)
    except KeyboardInterrupt:
        logger.info("Interrupted.")
    except OSError as exc:
        logger.error("Cannot read deltas from %s: %s", args.input, exc)
        exit_code = 1
    finally:
        if stream is not None and stream is not sys.stdin:
            stream.close()
        logger.info("Export summary: %s", admin.stats())
        engine.stop()
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
