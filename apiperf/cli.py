"""CLI entry point for apiperf.

Modes:
- default: run a suite locally (-s SUITE)
- --coordinator: serve workers and distribute the suite
- --worker URL: connect to a coordinator and execute assigned ranges
- --cron EXPR: run the suite on a cron schedule until interrupted

Uses uvloop for the event loop when it is installed.
"""

from __future__ import annotations

import argparse
import asyncio
import socket
import sys
from pathlib import Path
from typing import Any, Coroutine

_HAS_UVLOOP = False
try:
    import uvloop
    _HAS_UVLOOP = True
except ImportError:
    pass

from . import __version__
from .config import Settings, load_settings, load_suite
from .exceptions import ApiPerfError
from .executor import HttpxRequestExecutor
from .extraction import ElementTreeXPathEvaluator, ExtractionStep
from .logging_config import get_logger
from .runner import run_distributed, run_local, run_on_schedule
from .worker import run_worker

logger = get_logger("cli")

DEFAULT_COORDINATOR_TIMEOUT_SEC = 300.0


def _run_async(coro: Coroutine[Any, Any, Any]) -> Any:
    """Run coroutine on uvloop when available, else asyncio."""
    if _HAS_UVLOOP:
        return uvloop.run(coro)
    return asyncio.run(coro)


def _parse_env_args(env_list: list[str] | None) -> dict[str, str]:
    if not env_list:
        return {}
    out: dict[str, str] = {}
    for s in env_list:
        if "=" in s:
            k, _, v = s.partition("=")
            out[k.strip()] = v.strip()
    return out


def _apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    if args.port is not None:
        settings.coordinator_port = args.port
    if args.workers is not None:
        settings.expected_workers = args.workers
    return settings


async def _serve_worker(url: str, name: str, max_concurrent: int, settings: Settings) -> int:
    async with HttpxRequestExecutor(http2=settings.http2, timeout=settings.request_timeout_seconds) as executor:
        return await run_worker(
            url,
            name,
            executor,
            max_concurrent=max_concurrent,
            heartbeat_interval=settings.heartbeat_interval_seconds,
            extraction=ExtractionStep(ElementTreeXPathEvaluator()),
        )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="apiperf",
        description="Performance-suite runner: local runs, cron schedules and distributed workers.",
    )
    parser.add_argument("-s", "--suite", help="Path to suite definition (YAML or JSON)")
    parser.add_argument("-f", "--config", default=None, help="Path to settings YAML (optional)")
    parser.add_argument(
        "-e",
        "--env",
        action="append",
        metavar="KEY=VALUE",
        help="Initial variable for ${KEY} substitution (can be repeated)",
    )
    parser.add_argument("--environment", default=None, help="Environment tag recorded on the run")
    parser.add_argument("--json", metavar="PATH", dest="json_path", help="Write the finished run as JSON to PATH")
    parser.add_argument("--no-live", action="store_true", help="Disable live Rich output (headless mode)")
    parser.add_argument("--cron", metavar="EXPR", default=None, help="Run the suite on this cron schedule")
    parser.add_argument("--coordinator", action="store_true", help="Serve as coordinator for distributed workers")
    parser.add_argument("--port", type=int, default=None, help="Override settings: coordinator port")
    parser.add_argument("--workers", type=int, default=None, metavar="N", help="Override settings: workers to wait for")
    parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_COORDINATOR_TIMEOUT_SEC,
        metavar="SEC",
        help="Coordinator: time to wait for workers and for results",
    )
    parser.add_argument("--worker", metavar="URL", default=None, help="Run as worker connected to coordinator URL")
    parser.add_argument("--name", default=None, help="Worker id (default: hostname)")
    parser.add_argument("--max-concurrent", type=int, default=10, dest="max_concurrent", help="Worker capacity hint")
    parser.add_argument("-v", "--version", action="version", version=f"apiperf {__version__}")
    return parser


def main() -> int:
    args = build_parser().parse_args()

    def handle_error(e: BaseException) -> int:
        if isinstance(e, ApiPerfError):
            print(f"Error: {e.message}", file=sys.stderr)
            return 1
        if isinstance(e, (FileNotFoundError, ValueError)):
            print(f"Error: {e}", file=sys.stderr)
            return 1
        logger.exception("Unexpected error")
        print("Error: An unexpected error occurred. Check logs for details.", file=sys.stderr)
        return 1

    try:
        settings = _apply_overrides(load_settings(args.config), args)
    except ApiPerfError as e:
        return handle_error(e)

    live = not args.no_live

    if args.worker:
        name = args.name or socket.gethostname()
        try:
            _run_async(_serve_worker(args.worker, name, args.max_concurrent, settings))
        except KeyboardInterrupt:
            print("\nInterrupted.", file=sys.stderr)
            return 130
        except Exception as e:
            return handle_error(e)
        return 0

    if not args.suite:
        print("Error: -s/--suite required unless running as --worker", file=sys.stderr)
        return 1
    try:
        suite = load_suite(Path(args.suite))
    except ApiPerfError as e:
        return handle_error(e)

    variables = _parse_env_args(args.env) or None
    try:
        if args.coordinator:
            _run_async(
                run_distributed(
                    suite,
                    settings,
                    expected_workers=settings.expected_workers,
                    timeout=args.timeout,
                    live=live,
                    json_path=args.json_path,
                    variables=variables,
                )
            )
        elif args.cron:
            _run_async(
                run_on_schedule(
                    suite,
                    args.cron,
                    settings,
                    live=live,
                    variables=variables,
                    environment=args.environment,
                )
            )
        else:
            _run_async(
                run_local(
                    suite,
                    settings,
                    variables=variables,
                    environment=args.environment,
                    live=live,
                    json_path=args.json_path,
                )
            )
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return 130
    except Exception as e:
        return handle_error(e)
    return 0


if __name__ == "__main__":
    sys.exit(main())
