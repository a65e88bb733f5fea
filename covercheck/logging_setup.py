"""Console logging setup for covercheck entry points.

Library modules only emit through loguru's shared logger; sinks are
configured here, by applications, never at import time.
"""

import sys

from loguru import logger

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"


def configure_logging(level: str = "INFO") -> int:
    """Replace loguru's default sink with a stderr sink at `level`.

    Returns:
        The id of the installed sink
    """
    logger.remove()
    return logger.add(sys.stderr, level=level.upper(), format=LOG_FORMAT)
