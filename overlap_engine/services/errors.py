"""
Error taxonomy for report generation.

Validation errors are recoverable once per phase through the corrective
retry. GenerationError is terminal and carries the last validator message.
"""
from typing import Any, List, Optional


class ReportEngineError(Exception):
    """Base error for the report engine."""
    pass


class BackendError(ReportEngineError):
    """Raised when the completion backend is unreachable or misconfigured."""
    pass


class RequestValidationError(ReportEngineError, ValueError):
    """Raised when an incoming report request body is invalid."""

    def __init__(self, errors: List[str]):
        super().__init__("; ".join(errors))
        self.errors = list(errors)


class OutputValidationError(ReportEngineError):
    """
    Model output failed a structural or content check.

    Attributes:
        predicate: Short name of the check that failed (e.g. "title").
        observed: The value the check saw.
    """

    def __init__(self, message: str, *, predicate: str = "", observed: Any = None):
        super().__init__(message)
        self.predicate = predicate
        self.observed = observed


class MalformedOutputError(OutputValidationError):
    """Backend returned empty or non-JSON text."""
    pass


class ShapeError(OutputValidationError):
    """Phase 1 payload has the wrong structure or bucket sizes."""

    def __init__(
        self,
        message: str,
        *,
        bucket: str,
        found: Optional[int] = None,
        expected_min: Optional[int] = None,
        expected_max: Optional[int] = None,
        predicate: str = "shape",
        observed: Any = None
    ):
        super().__init__(message, predicate=predicate, observed=found if observed is None else observed)
        self.bucket = bucket
        self.found = found
        self.expected_min = expected_min
        self.expected_max = expected_max


class DriftError(OutputValidationError):
    """Too many Phase 1 items wandered away from the intended reading of the premise."""

    def __init__(self, message: str, *, matched: int, total: int, threshold: float):
        super().__init__(message, predicate="drift", observed=f"{matched}/{total}")
        self.matched = matched
        self.total = total
        self.threshold = threshold


class SectionError(OutputValidationError):
    """Report is too short, lacks the title, or lacks a required section header."""
    pass


class AssumptionCountError(OutputValidationError):
    """Surface Assumptions bullet count is outside its bounds."""
    pass


class AnchorDriftError(OutputValidationError):
    """Premise Clarified no longer carries the premise anchor phrase."""
    pass


class HedgeLanguageError(OutputValidationError):
    """Report contains a hedging token."""
    pass


class GenerationError(ReportEngineError):
    """Terminal failure after the corrective retry was spent."""

    def __init__(self, message: str, *, phase: str, cause: Optional[Exception] = None):
        super().__init__(message)
        self.phase = phase
        self.cause = cause
