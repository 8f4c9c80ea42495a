# utils/logging.py

import logging
import sys
from typing import Iterable, Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Client libraries that log every request at DEBUG/INFO
NOISY_LOGGERS = ("urllib3", "kubernetes", "websocket", "httpx", "httpcore")


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    quiet: Iterable[str] = NOISY_LOGGERS,
) -> None:
    """
    Configure process-wide logging.

    Console output goes to stderr only: with the stdio transport, stdout
    carries the MCP JSON-RPC stream and any stray write corrupts it.

    Args:
        level: Root log level name (debug, info, warning, error)
        log_file: Optional file to mirror log records into
        quiet: Logger names capped at WARNING unless level is DEBUG
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    if log_level > logging.DEBUG:
        for name in quiet:
            logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    logging.getLogger(__name__).info(f"Logging configured with level: {level}")


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for the specified name."""
    return logging.getLogger(name)
