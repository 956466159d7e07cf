"""
Report orchestrator - coordinates the two-phase report generation workflow.
Phase 1 discovers overlaps, Phase 2 authors the report from them.
"""
import logging
import time
from dataclasses import dataclass
from typing import Optional

from overlap_engine.config import GenerationConfig
from overlap_engine.services.llm_client import CompleteFn
from overlap_engine.services.overlap_discovery import discover
from overlap_engine.services.report_authoring import author
from overlap_engine.services.schemas import DriftGuard, Phase1Payload, derive_anchor, find_hedge_tokens
from overlap_engine.services.style_contracts import get_style_contract

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReportResult:
    """Final report plus the intermediate payload kept for debugging."""
    report: str
    phase1: Phase1Payload
    style_id: str
    phase1_attempts: int
    phase2_attempts: int

    def to_debug_dict(self) -> dict:
        return {
            'phase1': self.phase1.to_dict(),
            'phase1Attempts': self.phase1_attempts,
            'phase2Attempts': self.phase2_attempts,
        }


def _build_drift_guard(anchor: str, config: GenerationConfig) -> Optional[DriftGuard]:
    """Guard against the anchor's head noun being used as a random prop."""
    if not config.drift_guard_enabled or not anchor:
        return None
    candidates = [word for word in anchor.split() if len(word) >= 3 and not find_hedge_tokens(word)]
    if not candidates:
        return None
    return DriftGuard.for_term(candidates[-1], threshold=config.drift_threshold)


def generate_report(
    premise: str,
    style_id: str,
    *,
    complete: Optional[CompleteFn] = None,
    config: Optional[GenerationConfig] = None,
    anchor: Optional[str] = None
) -> ReportResult:
    """
    Generate a full Overlap Analysis Report (two-call pipeline).

    Resolves the style contract (unknown ids fall back to the default), runs
    Phase 1 then Phase 2, and returns the report with the Phase 1 payload.
    Errors from either phase propagate unchanged; Phase 1 is never re-run
    because Phase 2 failed.

    Args:
        premise: User premise text.
        style_id: Style contract identifier.
        complete: Backend callable shared by both phases.
        config: Generation settings; defaults to the environment.
        anchor: Premise anchor phrase; derived from the premise when None.

    Returns:
        ReportResult.

    Raises:
        ValueError: If the premise is blank.
        GenerationError: When a phase exhausts its corrective retry.
        BackendError: When a completion call fails.
    """
    if not premise or not premise.strip():
        raise ValueError("Premise cannot be blank")

    config = config or GenerationConfig.from_env()
    style = get_style_contract(style_id)
    if style.style_id != style_id:
        logger.info(f"Unknown style '{style_id}', falling back to '{style.style_id}'")

    anchor = anchor if anchor is not None else derive_anchor(premise)
    drift_guard = _build_drift_guard(anchor, config)

    start_time = time.time()
    logger.info(f"Starting report generation: style={style.style_id}, premise_chars={len(premise)}")

    discovery = discover(premise, complete=complete, config=config, drift_guard=drift_guard)
    authoring = author(
        premise,
        discovery.payload,
        style,
        anchor=anchor,
        complete=complete,
        config=config
    )

    duration = time.time() - start_time
    logger.info(
        f"Report generation complete: style={style.style_id}, "
        f"calls={discovery.attempts + authoring.attempts}, duration={duration:.2f}s"
    )

    return ReportResult(
        report=authoring.report,
        phase1=discovery.payload,
        style_id=style.style_id,
        phase1_attempts=discovery.attempts,
        phase2_attempts=authoring.attempts
    )


def run_two_phase_report(premise: str, style_id: str, *, complete: Optional[CompleteFn] = None) -> str:
    """Core entry point: premise and style id in, report text out."""
    return generate_report(premise, style_id, complete=complete).report
