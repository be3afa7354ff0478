"""
MHC Control Panel - Main entry point.

Process roles, selected with RUN_MODE:
- web: the FastAPI app under uvicorn
- worker: the Chaturbate Events API listener only
- all: the API with the listener running inside its lifespan (needed for
  live room presence, which is process-local)

Usage:
    mhc-panel

Configuration is entirely via environment variables.
See config.py and api/config.py for all available settings.

Invariants:
    - Logging is configured before any component is built
    - The worker initializes the schema before polling

How to change safely:
    - Keep each role runnable on its own; web must not require an events token
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

import json_log_formatter
import uvicorn

from .api import Settings, create_app
from .config import PanelConfig, RunMode
from .container import build_listener, build_services

logger = logging.getLogger(__name__)


def setup_logging(config: PanelConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Panel configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("aiobotocore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


async def run_worker(config: PanelConfig) -> None:
    """Run the events listener until SIGTERM/SIGINT."""
    services = build_services(config)
    await services.db.initialize()
    listener = build_listener(services)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, listener.stop)

    logger.info("Worker started", extra={"broadcaster": config.chaturbate.username})
    await listener.start()
    logger.info("Worker stopped")


def run_web(config: PanelConfig) -> None:
    settings = Settings()
    app = create_app(config, settings)
    # uvicorn must not replace the handlers installed by setup_logging
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


def main() -> None:
    """Main entry point."""
    # Load configuration
    try:
        config = PanelConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    # Setup logging
    setup_logging(config)
    config.log_config()

    if config.run_mode == RunMode.WORKER:
        try:
            asyncio.run(run_worker(config))
        except KeyboardInterrupt:
            pass
    else:
        run_web(config)


if __name__ == "__main__":
    main()
