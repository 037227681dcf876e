"""Logging setup shared by the operator scripts."""

import logging
from typing import Optional

from phd2link.core.config import get_settings

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging.

    Args:
        level: Level name (e.g. "DEBUG"). If None, uses the log_level setting.
    """
    level_name = (level or get_settings().log_level).upper()
    numeric_level = getattr(logging, level_name, None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {level_name}")

    logging.basicConfig(level=numeric_level, format=LOG_FORMAT, force=True)
