"""
Application logging configuration.

This module centralises logging configuration to ensure consistent
formatting across the API, the background analysis tasks and the client
poller. Call ``configure_logging()`` once at application startup.
"""
import logging


def configure_logging(level: str = "INFO") -> None:
    """Configure the root logger with a simple format.

    :param level: Logging level (e.g., 'DEBUG', 'INFO').
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    # httpx logs every request at INFO which drowns the poller output
    logging.getLogger("httpx").setLevel(logging.WARNING)
