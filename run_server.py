#!/usr/bin/env python
"""
Server Entry Point

Starts the profit API under Uvicorn, bound to API_HOST/API_PORT.
Usage:
    Development:  python run_server.py --dev
    Production:   python run_server.py --workers 4

Each worker keeps its own in-process profit cache. Run more than one worker
only with the Redis invalidation bus enabled (REDIS_ENABLED=true), otherwise
a status change handled by one worker leaves stale breakdowns in the others.
"""

import argparse
import sys

import uvicorn

from profitcore.config.settings import get_settings

APP_PATH = "profitcore.main:app"


def build_parser(default_port: int) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Order Profit Engine API Server")
    parser.add_argument("--dev", action="store_true", help="Single worker with auto-reload")
    parser.add_argument("--port", type=int, default=default_port, help=f"Port to bind (default: {default_port})")
    parser.add_argument("--workers", type=int, default=1, help="Worker processes in production mode")
    return parser


def main(argv=None) -> int:
    settings = get_settings()
    args = build_parser(settings.api_port).parse_args(argv)

    if args.workers > 1 and not settings.redis.enabled:
        print("Refusing to start several workers without REDIS_ENABLED=true", file=sys.stderr)
        return 2

    options = {
        "host": settings.api_host,
        "port": args.port,
        "log_level": settings.monitoring.log_level.lower(),
        "access_log": False,
    }
    if args.dev:
        options.update(reload=True, reload_dirs=["profitcore"])
    else:
        options.update(workers=args.workers, proxy_headers=True, server_header=False)

    print(f"Starting {settings.app_name} on {settings.api_host}:{args.port} ({'dev' if args.dev else 'prod'})")
    uvicorn.run(APP_PATH, **options)
    return 0


if __name__ == "__main__":
    sys.exit(main())
