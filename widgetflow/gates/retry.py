from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional, TypeVar

from widgetflow.errors import (
    GenerationFailure,
    ParseError,
    PhaseExhausted,
    ValidationFailure,
    describe_error,
)
from widgetflow.gates.parsers import extract_json
from widgetflow.models import ValidationResult
from widgetflow.utils.logs import is_debug_enabled, log_step

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 2
RETRY_DELAY_SECONDS = 0.5

# RecursionError: validators and prompt serialisation recurse over the parsed reply
RETRYABLE_ERRORS = (GenerationFailure, ParseError, ValidationFailure, RecursionError)


def build_feedback(error: Optional[Exception]) -> str:
    return (
        f"\n\nPREVIOUS ATTEMPT FAILED: {describe_error(error)}\n"
        "Please fix these issues and return valid JSON."
    )


def run_with_retry(
    call: Callable[[Optional[str]], Any],
    validate: Callable[[Any], ValidationResult],
    phase_name: str,
    max_retries: int = DEFAULT_MAX_RETRIES,
    delay: float = RETRY_DELAY_SECONDS,
) -> T:
    """Generate, extract and validate, feeding each failure into the next prompt.

    ``call`` receives ``None`` on the first attempt and the corrective feedback
    text afterwards. It returns raw model text (extracted here) or an already
    parsed mapping. Raises ``PhaseExhausted`` once ``max_retries + 1`` attempts
    have failed.
    """
    attempts = max_retries + 1
    last_error: Optional[Exception] = None

    for attempt in range(attempts):
        feedback = build_feedback(last_error) if attempt > 0 else None
        log_step(
            logger,
            logging.INFO,
            f"{phase_name} attempt {attempt + 1}/{attempts}",
            phase_name,
            "retrying with validation context" if feedback else None,
        )
        try:
            raw = call(feedback)
            parsed = extract_json(raw) if isinstance(raw, str) else raw
            result = validate(parsed)
            if not result.valid:
                raise ValidationFailure(result.errors)
            log_step(logger, logging.INFO, f"{phase_name} succeeded", phase_name, f"attempt {attempt + 1}")
            return result.normalized
        except RETRYABLE_ERRORS as exc:
            last_error = exc
            log_step(
                logger,
                logging.WARNING,
                f"{phase_name} attempt {attempt + 1} failed ({describe_error(exc)})",
                phase_name,
                exc,
            )
            if isinstance(exc, ParseError) and is_debug_enabled(logger):
                log_step(logger, logging.DEBUG, "Original text (head)", "parsing", exc.head)
                log_step(logger, logging.DEBUG, "Original text (tail)", "parsing", exc.tail)
        if attempt + 1 < attempts and delay > 0:
            time.sleep(delay)

    log_step(
        logger,
        logging.ERROR,
        f"{phase_name} failed after {attempts} attempts",
        phase_name,
        last_error,
    )
    raise PhaseExhausted(phase_name, attempts, last_error)
