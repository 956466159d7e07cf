"""
Single corrective retry shared by both generation phases.

Each phase gets a primary attempt and at most one corrective attempt. Only
output validation failures trigger the second attempt; backend errors
propagate immediately. There is no wait between attempts.
"""
import logging
from typing import Callable, List, Optional, Tuple, TypeVar

from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_none

from overlap_engine.services.errors import GenerationError, OutputValidationError

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 2

T = TypeVar('T')


def run_with_correction(
    attempt_fn: Callable[[Optional[OutputValidationError]], T],
    *,
    phase: str
) -> Tuple[T, int]:
    """
    Run attempt_fn, retrying once when it raises OutputValidationError.

    Args:
        attempt_fn: Called with None on the primary attempt and with the
            previous validation error on the corrective attempt.
        phase: Phase label for logs and the terminal error.

    Returns:
        (result, attempts used)

    Raises:
        GenerationError: When the corrective attempt also fails validation.
            Its message is the last validator message, verbatim.
    """
    failures: List[OutputValidationError] = []

    def _record_failure(retry_state) -> None:
        error = retry_state.outcome.exception()
        failures.append(error)
        logger.warning(f"[{phase}] Validation failed, retrying with corrective instruction: {error}")

    retrying = Retrying(
        stop=stop_after_attempt(MAX_ATTEMPTS),
        wait=wait_none(),
        retry=retry_if_exception_type(OutputValidationError),
        before_sleep=_record_failure,
        reraise=True
    )

    try:
        for attempt in retrying:
            with attempt:
                previous = failures[-1] if failures else None
                result = attempt_fn(previous)
            attempts = attempt.retry_state.attempt_number
    except OutputValidationError as e:
        logger.error(f"[{phase}] Corrective retry exhausted: {e}")
        raise GenerationError(str(e), phase=phase, cause=e) from e

    return result, attempts
