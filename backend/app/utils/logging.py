"""Structured logging helpers."""

import logging
from typing import Any


def log_event(
    logger: logging.Logger,
    message: str,
    *,
    level: int = logging.INFO,
    **fields: Any,
) -> None:
    """Log a message with a structured payload.

    Fields are attached under ``extra["structured"]`` so JSON formatters can
    emit them as-is; None values are dropped.
    """
    log_data = {key: value for key, value in fields.items() if value is not None}
    logger.log(level, message, extra={"structured": log_data})
