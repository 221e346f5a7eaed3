"""Main entry point for running the Levy service."""

import os

import uvicorn
from loguru import logger

from src.api.main import app
from src.core.config import get_settings
from src.core.logging import setup_logging

# Route uvicorn's stdlib loggers through Loguru
UVICORN_LOG_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "handlers": {
        "default": {
            "class": "src.core.logging.InterceptHandler",
        },
    },
    "loggers": {
        name: {"handlers": ["default"], "level": "INFO", "propagate": False}
        for name in ("uvicorn", "uvicorn.error", "uvicorn.access")
    },
}


def main() -> None:
    """Serve the application until SIGINT or SIGTERM.

    On a signal uvicorn stops accepting connections and waits up to
    ``graceful_shutdown_seconds`` for in-flight requests, then the application
    lifespan flushes metrics and traces.
    """
    settings = get_settings()
    setup_logging(settings)

    # Container platforms set PORT to the port the service should listen on
    port = int(os.environ.get("PORT", settings.api_port))

    if settings.debug:
        logger.info(
            "Starting Uvicorn on http://{}:{} (development mode with auto-reload)",
            settings.api_host,
            port,
        )
        uvicorn.run(
            "src.api.main:app",
            host=settings.api_host,
            port=port,
            reload=True,
            log_config=UVICORN_LOG_CONFIG,
            timeout_graceful_shutdown=int(settings.graceful_shutdown_seconds),
        )
    else:
        logger.info(
            "Starting Uvicorn on http://{}:{} (production mode)",
            settings.api_host,
            port,
        )
        uvicorn.run(
            app,
            host=settings.api_host,
            port=port,
            reload=False,
            log_config=UVICORN_LOG_CONFIG,
            timeout_graceful_shutdown=int(settings.graceful_shutdown_seconds),
        )


if __name__ == "__main__":
    main()
