"""Structured logging for the service."""

import logging
from typing import Union

from pythonjsonlogger.json import JsonFormatter


def setup_logger(level: Union[int, str] = logging.INFO) -> None:
    """Emit JSON log records from the root logger."""
    logger = logging.getLogger()
    if any(getattr(h, '_sastlink', False) for h in logger.handlers):
        logger.setLevel(level)
        return
    log_handler = logging.StreamHandler()
    formatter = JsonFormatter(
        '%(asctime)s %(levelname)s %(name)s %(message)s',
        rename_fields={'levelname': 'level', 'asctime': 'timestamp'}
    )
    log_handler.setFormatter(formatter)
    log_handler._sastlink = True    # type: ignore
    logger.addHandler(log_handler)
    logger.setLevel(level)
