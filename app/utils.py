"""
Shared helpers.
"""
import logging
import os


LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


def get_logger(name: str) -> logging.Logger:
    """Return a module logger configured with the service-wide format."""
    return logging.getLogger(name)
