"""CLI entrypoint for workflow-watch.

This file wires together:

- Config loading (YAML file + command line overrides)
- The n8n REST client and JSON watermark store
- The emission sink (stdout, JSON lines file, or webhook)
- The polling loop and its shutdown signals
"""

import argparse
import dataclasses
import logging
import signal
import sys
from typing import Any, Dict, List, Optional

from workflow_watch import __version__
from workflow_watch.auth import AuthConfig
from workflow_watch.config import WatchConfig, load_config
from workflow_watch.env import load_env_file
from workflow_watch.errors import ConfigurationError
from workflow_watch.logging_config import setup_logging
from workflow_watch.sinks import build_sink
from workflow_watch.state import JsonFileWatermarkStore
from workflow_watch.trigger import WorkflowUpdatedTrigger

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Poll an n8n instance and emit workflows updated since the last check",
    )

    parser.add_argument("--config", help="Path to a YAML config file")
    parser.add_argument("--base-url", help="n8n base URL (default: http://localhost:5678)")
    parser.add_argument(
        "--interval",
        type=float,
        dest="interval_seconds",
        help="Seconds between polling cycles (2-3600, default: 10)",
    )
    parser.add_argument(
        "--exclude",
        dest="exclude_regex",
        help="Ignore workflows whose name matches this regex (case-insensitive); '' disables",
    )
    parser.add_argument(
        "--no-full-workflow",
        action="store_true",
        help="Do not attach the full workflow JSON to emitted items",
    )
    parser.add_argument(
        "--timeout-ms",
        type=int,
        dest="request_timeout_ms",
        help="Per-request timeout in milliseconds (1000-60000, default: 10000)",
    )
    parser.add_argument(
        "--max-per-cycle",
        type=int,
        help="Maximum items emitted per cycle (0 = unlimited, default: 1000)",
    )
    parser.add_argument("--trigger-id", help="Name that scopes the persisted watermarks")
    parser.add_argument(
        "--state-dir",
        help="Directory for watermark files (default: $WORKFLOW_WATCH_STATE_DIR or .state)",
    )
    parser.add_argument(
        "--api-key",
        help="n8n API key; use a ${VAR} reference to keep it out of shell history",
    )
    parser.add_argument(
        "--output",
        default="-",
        help="Where to emit items: '-' for stdout, an http(s) URL, or a JSON lines file",
    )
    parser.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    parser.add_argument(
        "--reset-state",
        action="store_true",
        help="Delete the persisted watermarks for this trigger and exit",
    )
    parser.add_argument("--env-file", help="Load environment variables from this .env file")
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable verbose (DEBUG level) logging"
    )
    parser.add_argument(
        "--quiet", "-q", action="store_true", help="Suppress all output except errors"
    )
    parser.add_argument(
        "--log-format",
        choices=["text", "json"],
        default="text",
        help="Log format (default: text)",
    )
    parser.add_argument("--log-file", help="Also write logs to this file")
    parser.add_argument(
        "--version",
        action="version",
        version=f"workflow-watch {__version__}",
        help="Show version and exit",
    )
    return parser


def resolve_config(args: argparse.Namespace) -> WatchConfig:
    """Load the config file (if any) and apply command line overrides."""
    config = load_config(args.config) if args.config else WatchConfig()

    overrides: Dict[str, Any] = {}
    for name in (
        "base_url",
        "interval_seconds",
        "exclude_regex",
        "request_timeout_ms",
        "max_per_cycle",
        "trigger_id",
    ):
        value = getattr(args, name, None)
        if value is not None:
            overrides[name] = value
    if args.no_full_workflow:
        overrides["emit_full_workflow"] = False
    if args.api_key:
        auth = config.auth or AuthConfig()
        overrides["auth"] = dataclasses.replace(auth, api_key=args.api_key)

    if overrides:
        config = dataclasses.replace(config, **overrides)
    return config


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(
        verbose=args.verbose,
        json_format=args.log_format == "json",
        log_file=args.log_file,
        quiet=args.quiet,
    )

    if args.env_file:
        if not load_env_file(args.env_file):
            logger.warning("No variables loaded from %s", args.env_file)

    try:
        config = resolve_config(args)
    except ConfigurationError as exc:
        logger.error("%s", exc)
        return 1

    if args.reset_state:
        store = JsonFileWatermarkStore(config.trigger_id, state_dir=args.state_dir)
        if store.delete():
            print(f"Deleted watermarks at {store.path}")
        else:
            print(f"No watermarks found at {store.path}")
        return 0

    try:
        trigger = WorkflowUpdatedTrigger.from_config(
            config,
            build_sink(args.output),
            state_dir=args.state_dir,
        )
    except KeyError as exc:
        logger.error("Credential reference could not be resolved: %s", exc)
        return 1

    try:
        if args.once:
            result = trigger.run_cycle()
            return 0 if result.ok else 2

        def _handle_signal(signum: int, _frame: Any) -> None:
            logger.info("Received signal %d, stopping after the current cycle", signum)
            trigger.stop()

        signal.signal(signal.SIGINT, _handle_signal)
        signal.signal(signal.SIGTERM, _handle_signal)
        trigger.run()
        return 0
    finally:
        trigger.close()


if __name__ == "__main__":
    sys.exit(main())
