"""CLI runner: discover, schedule and run tests across parallel workers."""

from __future__ import annotations

import argparse
import asyncio
import logging
import shlex
import sys

from shardrun import __version__
from shardrun.config import MB, Settings
from shardrun.core.resource_monitor import format_bytes
from shardrun.exceptions import ShardrunError
from shardrun.main import build_orchestrator
from shardrun.models.enums import EngineKind, SchedulingStrategy

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shardrun",
        description="Resource-aware parallel test runner",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    parser.add_argument("--workers", type=int, default=None,
                        help="Number of workers (default: auto-detect from CPU and memory)")
    parser.add_argument("--strategy", default=SchedulingStrategy.BALANCED.value,
                        choices=[s.value for s in SchedulingStrategy],
                        help="Scheduling strategy (default: balanced)")
    parser.add_argument("--browser", default="electron", help="Browser to run tests in")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--headed", dest="headless", action="store_false", default=None,
                      help="Run with a visible browser")
    mode.add_argument("--headless", dest="headless", action="store_true",
                      help="Run without a visible browser (default)")
    parser.add_argument("--video", action=argparse.BooleanOptionalAction, default=True,
                        help="Record videos (default: on)")
    parser.add_argument("--quiet", action=argparse.BooleanOptionalAction, default=True,
                        help="Suppress engine console output (default: on)")
    parser.add_argument("--debug", action="store_true", help="Debug logging")
    parser.add_argument("--ci", action="store_true", help="CI profile (at most 4 workers)")
    parser.add_argument("--dev", action="store_true", help="Development profile (at most 6 workers)")
    parser.add_argument("--memory-limit", type=float, default=85.0,
                        help="Memory usage limit in percent (default: 85)")
    parser.add_argument("--disk-buffer", type=int, default=100,
                        help="Free disk space to keep in MB (default: 100)")

    parser.add_argument("--base-dir", default=None, help="Project directory (default: ui)")
    parser.add_argument("--test-dir", default=None,
                        help="Test directory relative to the base dir (default: cypress/e2e)")
    parser.add_argument("--engine", default=None, choices=[e.value for e in EngineKind],
                        help="Execution engine (default: cypress)")
    parser.add_argument("--engine-command", default=None,
                        help="Command template; with --engine command, {tests} expands to the "
                             "test paths and {result_file} is where results must be written")
    parser.add_argument("--timeout", type=float, default=None,
                        help="Per-worker timeout in seconds (default: 300)")
    parser.add_argument("--smoke", action="store_true", help="Run only the smoke group")
    parser.add_argument("--groups-file", default=None,
                        help="JSON file with test group definitions (relative to --base-dir)")
    parser.add_argument("--history-file", default=None,
                        help="JSON file with test timing history (read and updated)")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return parser


def build_settings(args: argparse.Namespace) -> Settings:
    """Build Settings from CLI args."""
    overrides: dict = {
        "strategy": args.strategy,
        "browser": args.browser,
        "video": args.video,
        "quiet": args.quiet,
        "debug": args.debug,
        "ci": args.ci,
        "dev": args.dev,
        "memory_limit_percent": args.memory_limit,
        "disk_buffer": args.disk_buffer * MB,
        "smoke_only": args.smoke,
        "log_level": "DEBUG" if args.debug else args.log_level,
    }
    if args.workers is not None:
        overrides["workers"] = args.workers
    if args.headless is not None:
        overrides["headless"] = args.headless
    if args.base_dir:
        overrides["base_dir"] = args.base_dir
    if args.test_dir:
        overrides["test_dir"] = args.test_dir
    if args.engine:
        overrides["engine"] = args.engine
    if args.engine_command:
        overrides["engine_command"] = shlex.split(args.engine_command)
    if args.timeout is not None:
        overrides["worker_timeout"] = args.timeout
    if args.groups_file:
        overrides["groups_file"] = args.groups_file
    if args.history_file:
        overrides["history_file"] = args.history_file
    return Settings(**overrides)


def _print_header(settings: Settings) -> None:
    print("=== shardrun: parallel test execution ===")
    print(f"  test_dir:      {settings.test_root}")
    print(f"  workers:       {settings.workers or 'auto'}")
    print(f"  strategy:      {settings.strategy.value}")
    print(f"  engine:        {settings.engine.value}")
    print(f"  memory_limit:  {settings.memory_limit_percent:g}%")
    print(f"  disk_buffer:   {format_bytes(settings.disk_buffer)}")
    if settings.smoke_only:
        print("  mode:          smoke only")
    print()


async def run(settings: Settings) -> int:
    try:
        orchestrator = build_orchestrator(settings)
    except ShardrunError as e:
        logger.critical("Could not set up the run: %s", e)
        print(f"FATAL: {e}", file=sys.stderr)
        return 1
    _print_header(settings)
    code = await orchestrator.run()

    if orchestrator.report is not None:
        print()
        print(orchestrator.reporter.format_results(orchestrator.report.summary))
        print(f"Reports: {orchestrator.reporter.reports_dir}")
    if orchestrator.partial_results is not None:
        print(f"Run aborted; partial results for {len(orchestrator.partial_results)} "
              f"workers saved in {orchestrator.reporter.reports_dir}", file=sys.stderr)
    if orchestrator.error is not None:
        print(f"FATAL: {orchestrator.error}", file=sys.stderr)
    return code


def main():
    parser = build_parser()
    args = parser.parse_args()
    if args.engine == EngineKind.COMMAND.value and not args.engine_command:
        parser.error("--engine command requires --engine-command")

    settings = build_settings(args)
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper()),
        format="%(asctime)s %(levelname)-8s %(name)s - %(message)s",
    )
    sys.exit(asyncio.run(run(settings)))


if __name__ == "__main__":
    main()
