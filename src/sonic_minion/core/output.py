"""
Unified output system using Loguru.
User-facing messages are printed and written to the log file.
"""

import sys
import threading
from pathlib import Path
from typing import Optional

from loguru import logger
from rich.console import Console

_console_sink_id: Optional[int] = None
_output_lock = threading.Lock()


def setup_loguru(
    log_file: Path, level: str = "INFO", console_output: bool = False
) -> None:
    """
    Configure loguru for file logging, with an optional stderr sink.

    Args:
        log_file: Path to log file
        level: Minimum level for file logging (DEBUG, INFO, WARNING, ERROR)
        console_output: Also write log records to stderr
    """
    global _console_sink_id

    # Remove default handler
    logger.remove()
    _console_sink_id = None

    log_file.parent.mkdir(parents=True, exist_ok=True)
    logger.add(
        log_file,
        rotation="10 MB",
        retention=5,  # Keep 5 backup files
        level=level,
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{line} | {message}",
        enqueue=False,
    )

    if console_output:
        _console_sink_id = logger.add(
            sys.stderr, level=level, format="{level}: {message}"
        )

    logger.info(f"Loguru initialized: {log_file} (level={level})")


def log(message: str, level: str = "info") -> None:
    """
    Unified logging: writes to the log file AND prints for the user.

    Use this instead of print() for user-facing messages that should also be logged.
    When the stderr sink is active the message is not printed a second time.

    Args:
        message: User-facing message
        level: Log level (debug, info, warning, error)
    """
    log_func = getattr(logger, level)
    log_func(message)

    if _console_sink_id is not None or level == "debug":
        return

    with _output_lock:
        stream = sys.stderr if level in ("warning", "error") else sys.stdout
        print(message, file=stream)


_console: Optional[Console] = None


def get_console() -> Console:
    """Get or create the shared Rich Console used for tables and progress bars."""
    global _console
    if _console is None:
        _console = Console()
    return _console
