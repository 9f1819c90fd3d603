"""
Logging configuration for synthbridge.

Results go to stdout as JSON, so log records are kept off it: the full record
stream goes to a log file and only warnings and above reach stderr.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

LOG_PATH = Path("synthbridge_data") / "synthbridge.log"
LOGGER_NAME = "synthbridge"

FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
CONSOLE_FORMAT = "%(levelname)s: %(message)s"


def _level(name: str) -> int:
    value = logging.getLevelName(name.upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {name}")
    return value


def setup_logging(
    level: str = "INFO",
    log_file: Optional[Path] = None,
    console_level: str = "WARNING",
) -> logging.Logger:
    """
    Route root logging to a log file and a quiet stderr console.

    Calling it again replaces the handlers installed by the previous call.

    Args:
        level: File logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Log file path, default synthbridge_data/synthbridge.log
        console_level: stderr level

    Returns:
        The synthbridge package logger
    """
    file_level = _level(level)
    console_level_no = _level(console_level)
    log_path = Path(log_file) if log_file is not None else LOG_PATH
    log_path.parent.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.setLevel(min(file_level, console_level_no))

    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setLevel(file_level)
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
    root.addHandler(file_handler)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level_no)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    root.addHandler(console)

    return logging.getLogger(LOGGER_NAME)
