"""
Main entrypoint: FastAPI server in the main thread; the collector scheduler
runs in a daemon thread started by the app lifespan.

Usage:
  python main.py            # serve the API (and collect on COLLECTOR_CRON)
  python main.py --run-now  # run one collection cycle, print the report, exit

API only (no collector): COLLECTOR_ENABLED=0 uvicorn backend_pnodes.api_server.app:app --port 3001
"""

import argparse
import asyncio
import json
import sys

# Configure structured JSON logging before other imports that may log
from backend_pnodes.pnodes_logging import get_logger

logger = get_logger("main")


def run_once() -> int:
    """Collect every network once. Returns 0 when at least one network succeeded."""
    from backend_pnodes.api_server.state import build_app_state

    state = build_app_state()
    try:
        report = asyncio.run(state.scheduler.run_cycle())
    finally:
        state.close()
    print(json.dumps(report.to_dict(), indent=2))
    return 0 if report.ok_count else 1


def main() -> int:
    parser = argparse.ArgumentParser(description="pNode network collector and read API.")
    parser.add_argument(
        "--run-now",
        action="store_true",
        help="Run one collection cycle immediately, then exit.",
    )
    args = parser.parse_args()

    if args.run_now:
        logger.info("main_manual_run_start")
        exit_code = run_once()
        logger.info("main_manual_run_end", exit_code=exit_code)
        return exit_code

    import uvicorn

    from backend_pnodes.api_server.server import create_app
    from backend_pnodes.api_server.state import build_app_state
    from backend_pnodes.config import get_settings

    settings = get_settings()

    app = create_app(build_app_state(settings))
    logger.info("main_server_starting", host=settings.api_host, port=settings.api_port)
    uvicorn.run(app, host=settings.api_host, port=settings.api_port, log_level="info")
    return 0


if __name__ == "__main__":
    sys.exit(main())
