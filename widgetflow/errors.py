from __future__ import annotations

from typing import List, Optional


class WidgetflowError(Exception):
    pass


class ConfigError(WidgetflowError):
    pass


class ParseError(WidgetflowError):
    """No JSON object could be recovered from model output."""

    def __init__(self, message: str, head: str = "", tail: str = "") -> None:
        details = message
        if head:
            details += f" Snippet: {head}"
        if tail and tail != head:
            details += f" ... {tail}"
        super().__init__(details)
        self.reason = message
        self.head = head
        self.tail = tail


class ValidationFailure(WidgetflowError):
    def __init__(self, errors: List[str], label: str = "Validation failed") -> None:
        self.errors = list(errors)
        super().__init__(f"{label}: {', '.join(self.errors) or 'unknown defect'}")


class GenerationFailure(WidgetflowError):
    pass


class PhaseExhausted(WidgetflowError):
    def __init__(self, phase: str, attempts: int, last_error: Optional[Exception]) -> None:
        self.phase = phase
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{phase} failed after {attempts} attempts: {describe_error(last_error)}")


def describe_error(error: object) -> str:
    if isinstance(error, BaseException):
        return str(error) or error.__class__.__name__
    if isinstance(error, str):
        return error
    return "Unknown error"
