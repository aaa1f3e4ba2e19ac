"""
learnstore - Main entry point.

Opens the local store (running migrations) and serves the command routes.

Usage:
    python -m learnstore.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - The store is migrated before the first request is accepted
    - A store that cannot be opened or migrated stops the process (exit 1)
"""

from __future__ import annotations

import logging
import sys

import json_log_formatter
import uvicorn

from .api.app import create_app, open_store
from .config import AppConfig
from .store import LearnStoreError

logger = logging.getLogger(__name__)


def setup_logging(config: AppConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Process configuration
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
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def main() -> None:
    """Main entry point."""
    try:
        config = AppConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)
    config.log_config()

    try:
        store = open_store(config)
    except LearnStoreError as e:
        logger.error(
            f"Store startup failed: {e}",
            extra={"error_code": e.code, "details": e.details},
            exc_info=True,
        )
        sys.exit(1)

    app = create_app(config, store=store)
    try:
        uvicorn.run(app, host=config.api.host, port=config.api.port, log_config=None)
    except KeyboardInterrupt:
        pass
    finally:
        store.close()


if __name__ == "__main__":
    main()
