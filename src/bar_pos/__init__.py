"""Bar POS: inventory-consistency engine for a small bar.

Importing the package installs the ``bar_pos`` logger with a console handler.
The rotating log file is attached once a workbook configuration is known, via
:func:`configure_file_logging`, so each store keeps its log beside its data.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union


LOG_FILE_NAME = "bar_pos.log"
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_MAX_BYTES = 1_000_000
LOG_BACKUP_COUNT = 5


def _configure_logging() -> logging.Logger:
    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    logger.setLevel(logging.INFO)
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    logger.addHandler(console_handler)
    return logger


def configure_file_logging(log_dir: Path, level: Union[int, str] = logging.INFO) -> Optional[Path]:
    """Route the package log to ``log_dir/bar_pos.log`` at ``level``.

    A rotating handler attached earlier for another directory is closed and
    replaced, so switching workbooks moves the log with them. When the
    directory cannot be created a warning goes to stderr, the console handler
    keeps working, and ``None`` is returned.

    Args:
        log_dir (Path): Directory that receives the log file.
        level (int | str): Logging level name or number for the package logger.

    Returns:
        Path | None: Location of the active log file.
    """

    logger = logging.getLogger(__name__)
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    logger.setLevel(level)

    log_file = Path(log_dir).expanduser().resolve() / LOG_FILE_NAME
    for handler in list(logger.handlers):
        if not isinstance(handler, RotatingFileHandler):
            continue
        if Path(handler.baseFilename) == log_file:
            return log_file
        logger.removeHandler(handler)
        handler.close()

    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
    except OSError as exc:
        print(f"Warning: unable to initialize log file at '{log_file}': {exc}", file=sys.stderr)
        return None

    file_handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    logger.addHandler(file_handler)
    logger.debug("Writing package log to '%s'", log_file)
    return log_file


log = _configure_logging()
