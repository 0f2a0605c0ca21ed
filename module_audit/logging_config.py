"""
Logging setup for the module_audit package logger.

Every module logs through a child of the "module_audit" logger, so one call
to setup_logging configures extraction, collection and reporting alike. The
console handler writes to stdout; the optional file
handler records everything at DEBUG, including the worker thread names of
the extract and analyze pools.
"""

import logging
import sys
from pathlib import Path
from typing import Optional


LOGGER_NAME = "module_audit"

# Global logger instance
_logger: Optional[logging.Logger] = None


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    verbose: bool = False,
    quiet: bool = False,
    propagate: bool = False,
) -> logging.Logger:
    """
    Configure the module_audit logger, replacing handlers from earlier calls.

    verbose wins over quiet, which wins over level. quiet drops the console
    handler and raises the logger to WARNING. With a log file the logger
    itself is lowered to DEBUG so per-module parse skips reach the file while
    the console handler keeps the effective level.

    Args:
        level: Console level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path of a DEBUG log file; parent directories are created
        verbose: Console at DEBUG (the -v flag)
        quiet: No console handler (the --quiet flag)
        propagate: Pass records on to the root logger, for caplog in tests

    Returns:
        The configured "module_audit" logger
    """
    global _logger

    if verbose:
        effective_level = "DEBUG"
    elif quiet:
        effective_level = "WARNING"
    else:
        effective_level = level.upper()

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, effective_level))

    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()

    if not quiet:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(getattr(logging, effective_level))
        console_handler.setFormatter(ColoredFormatter(
            "%(levelname_colored)s %(message)s",
            use_colors=sys.stdout.isatty()
        ))
        logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(levelname)s] %(threadName)s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))
        logger.addHandler(file_handler)
        # Console handler keeps its own level
        logger.setLevel(logging.DEBUG)

    logger.propagate = propagate

    _logger = logger
    return logger


def get_logger() -> logging.Logger:
    """
    The package logger, set up at INFO on stdout if setup_logging was never called.
    """
    global _logger
    if _logger is None:
        _logger = setup_logging()
    return _logger


class ColoredFormatter(logging.Formatter):
    """
    Console formatter: coloured level symbol and name on a terminal, the
    plain level name when stdout is redirected.
    """

    COLORS = {
        'DEBUG': '\033[36m',      # Cyan
        'INFO': '\033[32m',       # Green
        'WARNING': '\033[33m',    # Yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[1;31m', # Bold Red
    }
    RESET = '\033[0m'

    SYMBOLS = {
        'DEBUG': '🔍',
        'INFO': '✓',
        'WARNING': '⚠️',
        'ERROR': '✗',
        'CRITICAL': '🚨',
    }

    def __init__(self, fmt: str, use_colors: bool = True):
        super().__init__(fmt)
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        """Fill levelname_colored for the console format string."""
        if self.use_colors:
            levelname = record.levelname
            color = self.COLORS.get(levelname, '')
            symbol = self.SYMBOLS.get(levelname, '')
            record.levelname_colored = f"{color}{symbol} {levelname}{self.RESET}"
        else:
            record.levelname_colored = record.levelname

        return super().format(record)
