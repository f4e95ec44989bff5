"""
Logging setup for command-line entry points.

Library modules only call logging.getLogger(__name__); handlers are
configured once here.
"""

import logging

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging with the standard format.

    Args:
        level: Level name such as "DEBUG" or "INFO"
    """
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
