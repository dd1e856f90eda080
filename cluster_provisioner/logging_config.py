"""Logging configuration for the cluster provisioner.

Address pollers and SSH checks run in worker threads named after their
phase (``worker-poll_0``, ``ssh-wait_1``), so the log format carries the
thread name.
"""

import logging
import sys
from pathlib import Path

from cluster_provisioner.exceptions import ConfigurationError

LOG_FORMAT = "%(asctime)s - %(threadName)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Third-party loggers and the most verbose level they may log at
LIBRARY_LEVELS = {
    # paramiko logs every failed handshake while nodes boot
    "paramiko": logging.WARNING,
    "urllib3": logging.WARNING,
    "requests": logging.WARNING,
}


def parse_level(level: str) -> int:
    """Translate a level name such as ``"info"`` to its numeric value.

    Raises:
        ConfigurationError: If the name is not a standard logging level
    """
    value = logging.getLevelName(level.upper())
    if not isinstance(value, int):
        raise ConfigurationError(
            f"Unknown log level: {level}", "Use DEBUG, INFO, WARNING, ERROR or CRITICAL"
        )
    return value


def setup_logging(level: str = "INFO", log_file: Path | None = None, verbose: bool = False) -> None:
    """Configure logging for the application.

    Provisioning progress is shown on the console through rich, so the console
    handler only shows warnings unless ``verbose`` is set. The log file always
    receives everything at ``level`` and above.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to log file
        verbose: If True, set level to DEBUG
    """
    root_level = logging.DEBUG if verbose else parse_level(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file)
        except OSError as e:
            root_logger.warning(f"Cannot write log file {log_file}: {e}")
        else:
            file_handler.setLevel(root_level)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)

    for name, library_level in LIBRARY_LEVELS.items():
        logging.getLogger(name).setLevel(max(root_level, library_level))


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance.

    Args:
        name: Logger name (typically __name__)
    """
    return logging.getLogger(name)
