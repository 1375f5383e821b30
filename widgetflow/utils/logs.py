from __future__ import annotations

import logging
from typing import Any, Optional

LOG_FORMAT = "%(asctime)s %(levelname)s [%(step)s] %(message)s"


def log_step(
    logger: logging.Logger,
    level: int,
    message: str,
    step: str,
    details: Optional[Any] = None,
) -> None:
    """Emit a structured record carrying ``step`` and ``details`` as extras."""
    logger.log(level, message, extra={"step": step, "details": details})


def is_debug_enabled(logger: logging.Logger) -> bool:
    return logger.isEnabledFor(logging.DEBUG)


def truncate(value: str, length: int) -> str:
    if len(value) <= length:
        return value
    return f"{value[: length - 3]}..."


class StepFormatter(logging.Formatter):
    """Formatter that tolerates records logged without a ``step`` extra."""

    def __init__(self, fmt: str = LOG_FORMAT, show_details: bool = False) -> None:
        super().__init__(fmt)
        self.show_details = show_details

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "step"):
            record.step = record.name
        line = super().format(record)
        details = getattr(record, "details", None)
        if self.show_details and details is not None:
            line = f"{line} | {truncate(repr(details), 500)}"
        return line


def configure_logging(verbose: bool = False) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(StepFormatter(show_details=verbose))
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
