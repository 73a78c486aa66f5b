"""Loguru sinks for the service.

Keyword arguments passed to logger calls land in `extra` and are printed
after the message, e.g. `[FLAGS] Created merge candidate flag | {'activity_id': 7}`.
"""

import sys
from pathlib import Path

from loguru import logger

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level> | {extra}"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {thread.name} | {name}:{function}:{line} - {message} | {extra}"


def setup_logger(
    level: str = "INFO",
    log_file: str | None = None,
    rotation: str = "10 MB",
    retention: str = "7 days",
) -> None:
    """Replace loguru's default handler with a colored stderr sink and an optional rotating file.

    Args:
        level: Minimum level for both sinks
        log_file: Path of the rotating log file; console only when None
        rotation: When to rotate the file (size or interval, e.g. "10 MB", "1 day")
        retention: How long rotated files are kept
    """
    logger.remove()
    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=level, colorize=True)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        # enqueue: scan chunks log from worker threads
        logger.add(
            log_path,
            format=FILE_FORMAT,
            level=level,
            rotation=rotation,
            retention=retention,
            compression="zip",
            enqueue=True,
            backtrace=True,
            diagnose=False,
        )

    logger.info(f"Logger initialized with level={level}, file={log_file or '-'}")
