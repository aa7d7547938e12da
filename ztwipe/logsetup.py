"""Logging setup for applications embedding the wipe core"""

import logging
from pathlib import Path
from typing import Optional

from ztwipe import config


def configure_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> None:
    """Install the console (and optional file) handler on the root logger"""
    level_name = (level or config.LOG_LEVEL).upper()
    log_level = getattr(logging, level_name, logging.INFO)
    log_file = log_file or config.LOG_FILE

    handlers = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(level=log_level, format=config.LOG_FORMAT,
                        handlers=handlers, force=True)
