#!/usr/bin/env python3
"""
Launch the community event verification API.

Usage:
    python start_api.py                   # Development mode, REST event store
    python start_api.py --memory          # Development mode, in-memory event store
    python start_api.py --prod --workers 2
"""

import argparse
import os

import uvicorn

from ingest.api_client import API_BASE_URL
from scrapers.llm_backend import OPENAI_MODEL
from verification.settings import VerificationSettings

WATCHED_PACKAGES = ["api", "community", "ingest", "scrapers", "verification"]


def build_parser():
    parser = argparse.ArgumentParser(description="Start the event verification API")
    parser.add_argument("--host", default="0.0.0.0", help="Host to bind to (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8001, help="Port to bind to (default: 8001)")
    parser.add_argument("--prod", action="store_true", help="Run worker processes without reload")
    parser.add_argument("--workers", type=int, default=1, help="Worker processes in --prod mode (default: 1)")
    parser.add_argument("--no-reload", action="store_true", help="Disable auto-reload in development mode")
    parser.add_argument(
        "--memory",
        action="store_true",
        help="Keep events in memory instead of the REST backend (sets EVENT_STORE=memory)",
    )
    return parser


def describe_environment(settings):
    """Startup summary of the store, model and routing thresholds."""
    store = "in-memory" if os.getenv("EVENT_STORE") == "memory" else API_BASE_URL
    return [
        f"   🗄️  Event store: {store}",
        f"   🤖 Model: {OPENAI_MODEL}",
        f"   ✅ Auto-approve at {settings.auto_approve_threshold:.2f}, review at {settings.review_threshold:.2f}",
        f"   🔗 Matches at {settings.match_threshold:.2f} within {settings.match_window_days} day(s)",
        f"   🚩 Events hidden after {settings.flag_threshold} pending flag(s)",
    ]


def uvicorn_config(args):
    config = {"app": "api.main:app", "host": args.host, "port": args.port, "loop": "asyncio", "http": "h11"}
    if args.prod:
        config.update(workers=args.workers, log_level="info")
    else:
        config.update(log_level="debug")
        if not args.no_reload:
            config.update(reload=True, reload_dirs=WATCHED_PACKAGES, reload_delay=1.0)
    return config


def main(argv=None):
    """Start the FastAPI server with configurable options."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.memory:
        # Each worker would hold its own copy of the events
        if args.prod and args.workers > 1:
            parser.error("--memory needs a single worker")
        os.environ["EVENT_STORE"] = "memory"
    if not args.prod and not args.no_reload:
        os.environ.setdefault("WATCHFILES_FORCE_POLLING", "1")

    mode = "PRODUCTION" if args.prod else "DEVELOPMENT"
    print(f"🚀 Starting event verification API in {mode} mode")
    print(f"   📍 http://{args.host}:{args.port} (docs at /docs)")
    for line in describe_environment(VerificationSettings.from_env()):
        print(line)

    uvicorn.run(**uvicorn_config(args))


if __name__ == "__main__":
    main()
