"""Shared logging utilities for the raffle keeper.

Provides a central get_logger(name) factory that configures the console and
file handlers once. Level and file path come from the LOG_LEVEL and LOG_FILE
environment variables; LOG_FILE=off keeps logging on the console only.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional


_configured = False

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _ensure_configured() -> None:
    global _configured
    if _configured:
        return

    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
    LOG_FILE = os.getenv('LOG_FILE', '')

    level = getattr(logging, LOG_LEVEL.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)

    formatter = logging.Formatter(LOG_FORMAT)

    ch = logging.StreamHandler()
    ch.setLevel(level)
    ch.setFormatter(formatter)
    root.addHandler(ch)

    if LOG_FILE.lower() != 'off':
        try:
            if LOG_FILE:
                log_path = Path(LOG_FILE)
            else:
                log_path = Path.cwd() / 'raffle_keeper.log'
            log_path.parent.mkdir(parents=True, exist_ok=True)
            fh = logging.FileHandler(log_path, encoding='utf-8')
            fh.setLevel(level)
            fh.setFormatter(formatter)
            root.addHandler(fh)
        except OSError:
            root.exception('Failed to create file log handler; continuing with console only')

    _configured = True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a configured logger for the given name.

    The first call configures the root logger from LOG_LEVEL / LOG_FILE.
    Later calls return plain loggers that inherit the same handlers.
    """
    _ensure_configured()
    return logging.getLogger(name)
