"""CLI entry point for the catalogsync server and maintenance commands."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from catalogsync import __version__


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point. Runs ``serve`` when no command is given."""
    parser = argparse.ArgumentParser(
        prog="catalogsync",
        description="catalogsync — Product catalog with a synchronized search index",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        default=None,
        help="Path to YAML configuration file",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["debug", "info", "warning", "error"],
        default=None,
        help="Log level (overrides config)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"catalogsync {__version__}",
    )
    commands = parser.add_subparsers(dest="command")

    serve = commands.add_parser("serve", help="Run the HTTP API server (default)")
    serve.add_argument("--host", type=str, default=None, help="Server bind address (overrides config)")
    serve.add_argument("--port", "-p", type=int, default=None, help="Server port (overrides config)")
    serve.add_argument("--workers", "-w", type=int, default=None, help="Number of worker processes")
    serve.add_argument("--reload", action="store_true", help="Enable auto-reload for development")

    commands.add_parser("reconcile", help="Rewrite every stored product into the index and drop orphans")

    args = parser.parse_args(argv)

    log_level = (args.log_level or "info").upper()
    logging.basicConfig(
        level=getattr(logging, log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if args.config and not Path(args.config).exists():
        print(f"Error: Config file not found: {args.config}", file=sys.stderr)
        sys.exit(1)

    if args.command == "reconcile":
        _reconcile(args)
    else:
        _serve(args)


def _load_settings(args: argparse.Namespace):
    from catalogsync.config.settings import Settings

    settings = Settings.from_yaml(args.config) if args.config else Settings()
    if args.log_level:
        settings.observability.log_level = args.log_level
    return settings


def _serve(args: argparse.Namespace) -> None:
    settings = _load_settings(args)
    host = getattr(args, "host", None) or settings.server.host
    port = getattr(args, "port", None) or settings.server.port
    workers = getattr(args, "workers", None) or settings.server.workers
    reload = getattr(args, "reload", False)

    _check_port(host, port)

    # The app factory runs in the server process and re-reads configuration.
    if args.config:
        os.environ["CATALOGSYNC_CONFIG_FILE"] = str(Path(args.config).resolve())
    if args.log_level:
        os.environ["CATALOGSYNC_OBSERVABILITY__LOG_LEVEL"] = args.log_level

    import uvicorn

    uvicorn.run(
        "catalogsync.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        workers=workers if not reload else 1,
        reload=reload,
        log_level=settings.observability.log_level.lower(),
    )


def _reconcile(args: argparse.Namespace) -> None:
    from catalogsync.core.engine import CatalogSyncEngine
    from catalogsync.errors import CatalogSyncError

    async def run() -> None:
        engine = CatalogSyncEngine(_load_settings(args))
        await engine.initialize()
        try:
            report = await engine.reconcile()
        finally:
            await engine.shutdown()
        print(report.model_dump_json(indent=2))
        if report.failed:
            sys.exit(2)

    try:
        asyncio.run(run())
    except CatalogSyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


def _check_port(host: str, port: int) -> None:
    """Check if the port is available. If not, print the blocking process and exit."""
    import socket
    import subprocess

    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.bind((host if host != "0.0.0.0" else "127.0.0.1", port))
    except OSError:
        print(f"\n  ERROR: Port {port} is already in use!", file=sys.stderr)
        try:
            result = subprocess.run(
                ["lsof", "-i", f":{port}", "-P", "-n"],
                capture_output=True,
                text=True,
                timeout=5,
            )
            lines = result.stdout.strip().splitlines()
            if lines:
                print(f"\n  Processes using port {port}:\n", file=sys.stderr)
                for line in lines:
                    print(f"    {line}", file=sys.stderr)
                pids = sorted({line.split()[1] for line in lines[1:] if len(line.split()) >= 2})
                if pids:
                    print(f"\n  To free the port, run:\n    kill {' '.join(pids)}", file=sys.stderr)
            else:
                print(f"\n  Could not identify the process using port {port}.", file=sys.stderr)
        except (subprocess.TimeoutExpired, FileNotFoundError):
            print(f"\n  Run 'lsof -i :{port}' to find the process.", file=sys.stderr)
        sys.exit(1)
    finally:
        sock.close()


if __name__ == "__main__":
    main()
