"""
CLI entry point for the stockcache caching layer.

Usage:
    python main.py api [--host 0.0.0.0] [--port 3000]
    python main.py config
"""

import argparse
import json
import sys
from dataclasses import asdict

from stockcache.config import get_settings
from stockcache.logging_setup import configure_logging


def cmd_api(args):
    """Start the FastAPI server with uvicorn."""
    import uvicorn

    from stockcache.api import create_app
    from stockcache.warmer import load_fetchers

    settings = get_settings()
    configure_logging(settings.logging)
    host = args.host or settings.api.host
    port = args.port or settings.api.port

    fetchers = load_fetchers(settings.warmer.fetchers) if settings.warmer.fetchers else None
    app = create_app(warm_fetchers=fetchers, settings=settings)
    print(f"Starting stockcache API on {host}:{port}")
    uvicorn.run(app, host=host, port=port, log_config=None)


def cmd_config(args):
    """Print the resolved settings (YAML + .env + environment overrides)."""
    settings = get_settings()
    print(json.dumps(asdict(settings), indent=2))


def main():
    parser = argparse.ArgumentParser(
        description="stockcache - tiered cache for the inventory API"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # api
    p_api = subparsers.add_parser("api", help="Start REST API server")
    p_api.add_argument("--host", default=None, help="Bind address (default: api.host)")
    p_api.add_argument("--port", type=int, default=None, help="Port (default: api.port)")

    # config
    subparsers.add_parser("config", help="Show resolved settings")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    commands = {
        "api": cmd_api,
        "config": cmd_config,
    }
    commands[args.command](args)


if __name__ == "__main__":
    main()
