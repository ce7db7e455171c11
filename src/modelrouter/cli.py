"""``model-router`` command line: start, stop and inspect the local service."""

import argparse
import os
import signal
import sys
from pathlib import Path

import structlog
import uvicorn

from modelrouter import lifecycle
from modelrouter.config import settings

_log = structlog.get_logger(__name__)


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="model-router",
        description="Anthropic Messages gateway for OpenAI-compatible providers",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s start
  %(prog)s start --config ./config.json --port 4000
  %(prog)s status
  %(prog)s stop
        """,
    )
    commands = parser.add_subparsers(dest="command", required=True)

    start = commands.add_parser("start", help="Run the gateway in the foreground")
    start.add_argument("--config", "-c", type=Path, help=f"Config file (default: {settings.config_path})")
    start.add_argument("--host", help=f"Host to bind to (default: {settings.host})")
    start.add_argument("--port", "-p", type=int, help=f"Port to listen on (default: {settings.port})")

    commands.add_parser("stop", help="Stop the running gateway")
    commands.add_parser("status", help="Report whether the gateway is running")
    return parser.parse_args(argv)


def start(args: argparse.Namespace) -> int:
    if lifecycle.is_running(settings.pid_file):
        pid = lifecycle.read_pid(settings.pid_file)
        print(f"model-router is already running (pid {pid})", file=sys.stderr)
        return 1

    if args.config is not None:
        settings.config_path = args.config
    if args.host:
        settings.host = args.host
    if args.port:
        settings.port = args.port

    # Imported late so the overrides above are visible to app startup.
    from modelrouter.main import app

    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
    return 0


def stop(args: argparse.Namespace) -> int:
    pid = lifecycle.read_pid(settings.pid_file)
    if pid is None or not lifecycle.is_running(settings.pid_file):
        print("model-router is not running")
        return 1
    try:
        os.kill(pid, signal.SIGTERM)
    except ProcessLookupError:
        pass
    lifecycle.cleanup(settings.pid_file)
    _log.info("service_stopped", pid=pid)
    print(f"model-router stopped (pid {pid})")
    return 0


def status(args: argparse.Namespace) -> int:
    if not lifecycle.is_running(settings.pid_file):
        print("model-router is not running")
        return 1
    pid = lifecycle.read_pid(settings.pid_file)
    print(f"model-router is running (pid {pid}) on http://{settings.host}:{settings.port}")
    return 0


_COMMANDS = {"start": start, "stop": stop, "status": status}


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    args = parse_args(argv)
    return _COMMANDS[args.command](args)


if __name__ == "__main__":
    raise SystemExit(main())
