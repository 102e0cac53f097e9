# utils/__init__.py

from utils.logger import logger, configure_logging
from utils.config import load_cfg
from utils.time import parse_duration, utc_now

__all__ = ["logger", "configure_logging", "load_cfg", "parse_duration", "utc_now"]
