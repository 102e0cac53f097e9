# utils/logger.py
import os
import sys
from datetime import datetime
from pathlib import Path

from loguru import logger

DEFAULT_LOG_DIR = Path(__file__).resolve().parents[1] / "logs"
CONSOLE_FORMAT = "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <7}</level> | {message}"
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <7} | {name}:{line} | {message}"


def configure_logging(level: str | None = None, log_dir: str | Path | None = None) -> Path:
    """
    (Re)install the stdout sink and the rotating DEBUG file sink.
    Falls back to MAILING_LOG_LEVEL / MAILING_LOG_DIR, then INFO / ./logs.
    Returns the file the DEBUG sink writes to.
    """
    level = (level or os.getenv("MAILING_LOG_LEVEL") or "INFO").upper()
    directory = Path(log_dir or os.getenv("MAILING_LOG_DIR") or DEFAULT_LOG_DIR)
    directory.mkdir(parents=True, exist_ok=True)
    log_file = directory / f"mail_{datetime.now():%Y%m%d_%H%M%S}.log"

    logger.remove()
    logger.add(sys.stdout, level=level, enqueue=True, format=CONSOLE_FORMAT)
    logger.add(
        log_file,
        level="DEBUG",
        rotation="50 MB",
        retention="30 days",
        compression="zip",
        enqueue=True,
        encoding="utf-8",
        format=FILE_FORMAT,
    )
    return log_file


log_file = configure_logging()
logger.debug(f"Logger initialized. Writing logs to {log_file}")
