"""
Logging configuration for the n8n CLI.

Library modules log through ``logging.getLogger(__name__)``; only the CLI
entry point calls ``setup_logging``. Logs go to stderr so --json output on
stdout stays parseable.
"""

import logging
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def level_for_verbosity(verbosity: int) -> int:
    if verbosity >= 2:
        return logging.DEBUG
    if verbosity == 1:
        return logging.INFO
    return logging.WARNING


def setup_logging(verbosity: int = 0, name: str = "n8n") -> logging.Logger:
    """
    Configure the root logger for the CLI.

    Args:
        verbosity: 0 = warnings only, 1 = info, 2+ = debug
        name: Logger returned for the caller's own use

    Returns:
        Configured logger instance
    """
    level = level_for_verbosity(verbosity)
    root = logging.getLogger()

    # Avoid adding handlers multiple times
    if not any(getattr(h, "_n8n_cli", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        handler._n8n_cli = True
        root.addHandler(handler)

    root.setLevel(level)
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbosity >= 2 else logging.WARNING)
    return logging.getLogger(name)
