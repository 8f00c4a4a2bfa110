import logging
import sys
from datetime import datetime
from pathlib import Path

from standings.config import Config

PACKAGE_LOGGER = 'standings'

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def _configure_package_logger() -> logging.Logger:
    """Attach handlers once to the package logger; module loggers propagate to it."""
    root = logging.getLogger(PACKAGE_LOGGER)
    if root.handlers:
        return root

    level = logging.DEBUG if Config.DEBUG else logging.INFO
    root.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    stream = logging.StreamHandler(sys.stdout)
    stream.setLevel(level)
    stream.setFormatter(formatter)
    root.addHandler(stream)

    if Config.LOG_TO_FILE:
        log_dir = Path(Config.LOG_DIR)
        log_dir.mkdir(parents=True, exist_ok=True)
        daily_file = log_dir / f'standings_{datetime.now():%Y%m%d}.log'
        file_handler = logging.FileHandler(daily_file, encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    return root


def setup_logger(name: str) -> logging.Logger:
    """Logger for ``name`` with the package handlers configured."""
    _configure_package_logger()
    if name != PACKAGE_LOGGER and not name.startswith(PACKAGE_LOGGER + '.'):
        # Scripts outside the package log under it too
        name = f'{PACKAGE_LOGGER}.{name}'
    return logging.getLogger(name)
