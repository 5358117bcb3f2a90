"""Logging setup for WorkBridge."""

import sys
from pathlib import Path
from typing import Iterable, Optional

from loguru import logger

CONSOLE_FORMAT = (
    '<green>{time:YYYY-MM-DD HH:mm:ss}</green> | '
    '<level>{level: <8}</level> | '
    '<cyan>{extra[component]}</cyan> | '
    '<level>{message}</level>'
)
FILE_FORMAT = (
    '{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | '
    '{extra[component]} | {name}:{function}:{line} | {message}'
)
MASK = '***'


def _masking_patcher(secrets: Iterable[str]):
    values = sorted({s for s in secrets if s}, key=len, reverse=True)

    def patch(record):
        message = record['message']
        for value in values:
            if value in message:
                message = message.replace(value, MASK)
        record['message'] = message

    return patch


def setup_logging(
    level: str = 'INFO',
    log_file: Optional[str] = None,
    log_format: Optional[str] = None,
    secrets: Iterable[str] = (),
) -> None:
    """Configure loguru sinks for the CLI.

    Records carry a ``component`` extra, set by ``logger.bind(component=...)``
    in each class and defaulting to ``workbridge``.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path of a rotating log file
        log_format: Console format overriding the default
        secrets: Values (API tokens) replaced by ``***`` in every message
    """
    logger.remove()
    logger.configure(
        extra={'component': 'workbridge'},
        patcher=_masking_patcher(secrets),
    )

    logger.add(
        sys.stderr,
        format=log_format or CONSOLE_FORMAT,
        level=level,
        colorize=True,
        backtrace=True,
        diagnose=False,
    )

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            format=FILE_FORMAT,
            level=level,
            rotation='10 MB',
            retention='30 days',
            compression='gz',
            backtrace=True,
            diagnose=False,
        )
        logger.debug(f'Logging to {log_file} at {level}')
