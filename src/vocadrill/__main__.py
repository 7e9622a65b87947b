"""Main entry point: prepare the database and optional metrics endpoint."""
import logging
import signal
import sys
import threading

from vocadrill.config import ensure_directories, settings
from vocadrill.logging_config import setup_logging
from vocadrill.models.base import engine, init_db
from vocadrill.monitoring import start_monitoring

logger = logging.getLogger("vocadrill")


def main() -> int:
    """Create the schema and, when enabled, serve metrics until interrupted."""
    ensure_directories()
    setup_logging("Starting vocadrill practice engine ...")

    try:
        init_db()
    except Exception as e:
        logger.error(f"Could not initialize database {engine.url!r}: {e}")
        return 1
    logger.info(f"Database ready at {engine.url!r}")

    if not settings.monitoring.enabled:
        logger.info("Metrics disabled, nothing left to run")
        return 0

    start_monitoring(settings.monitoring.port)
    logger.info(f"Serving metrics on port {settings.monitoring.port}")

    stop = threading.Event()
    for sig in (signal.SIGTERM, signal.SIGINT):
        signal.signal(sig, lambda signum, frame: stop.set())
    stop.wait()
    logger.info("Received exit signal, shutting down...")
    return 0


if __name__ == "__main__":
    sys.exit(main())
