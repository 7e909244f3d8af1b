#!/usr/bin/env python
"""
API Server Entry Point

Usage:
    Development:  python run_server.py --dev
    Single host:  python run_server.py

    Multi-worker deployments run under Gunicorn instead:
    gunicorn gear_popularity.main:app -c gunicorn.conf.py
"""

import argparse

import uvicorn

from gear_popularity.config import get_settings


def main() -> None:
    settings = get_settings()

    parser = argparse.ArgumentParser(description="Gear Popularity API Server")
    parser.add_argument("--dev", action="store_true", help="Auto-reload on code changes")
    parser.add_argument("--port", type=int, default=settings.api_port, help="Port to listen on")
    args = parser.parse_args()

    uvicorn.run(
        "gear_popularity.main:app",
        host=settings.api_host,
        port=args.port,
        reload=args.dev,
        reload_dirs=["gear_popularity"] if args.dev else None,
        log_level="debug" if args.dev else settings.monitoring.log_level.lower(),
        proxy_headers=not args.dev,
        server_header=False,
    )


if __name__ == "__main__":
    main()
