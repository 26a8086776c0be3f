"""Log sinks for the portpatch CLI.

Two sinks on the ``portpatch`` logger: a Rich console handler (INFO, or
DEBUG when verbose) and an append-mode file handler that always records
DEBUG detail. The root logger is left alone.
"""

from __future__ import annotations

import logging
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "portpatch"
FILE_FORMAT = "[%(asctime)s] %(levelname)s: %(message)s [%(name)s:%(funcName)s:%(lineno)d]"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(
    verbose: bool = False,
    log_file: Path | None = None,
    console: Console | None = None,
) -> logging.Logger:
    """Attach console and file handlers to the ``portpatch`` logger.

    Calling again replaces the handlers from a previous call. A log file
    that cannot be opened is reported on the console and skipped.

    Returns:
        The configured ``portpatch`` logger.
    """
    log = logging.getLogger(LOGGER_NAME)
    for handler in list(log.handlers):
        log.removeHandler(handler)
        handler.close()

    log.setLevel(logging.DEBUG)
    log.propagate = False

    console_handler = RichHandler(
        console=console,
        level=logging.DEBUG if verbose else logging.INFO,
        show_path=verbose,
        markup=False,
        rich_tracebacks=True,
    )
    log.addHandler(console_handler)

    if log_file is not None:
        try:
            file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        except OSError as e:
            log.warning("Cannot open log file %s: %s", log_file, e)
        else:
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter(FILE_FORMAT, DATE_FORMAT))
            log.addHandler(file_handler)

    return log
