"""
Phase 2: report authoring.

Re-expresses the Phase 1 material in a style contract's voice and lays it
out as the fixed-section Overlap Analysis Report.
"""
import functools
import json
import logging
import time
from dataclasses import dataclass
from typing import List, Optional

from overlap_engine.config import GenerationConfig
from overlap_engine.services.corrective_retry import run_with_correction
from overlap_engine.services.errors import (
    AnchorDriftError,
    AssumptionCountError,
    HedgeLanguageError,
    MalformedOutputError,
    OutputValidationError,
    SectionError,
)
from overlap_engine.services.llm_client import (
    JSON_OUTPUT_REMINDER,
    CompleteFn,
    Message,
    complete_json,
    parse_json_response,
)
from overlap_engine.services.schemas import (
    COMPRESSION_LINES,
    CORE_OVERLAPS,
    HEDGE_TOKENS,
    MAX_ASSUMPTIONS,
    MIN_ASSUMPTIONS,
    OUTER_FIELD_OVERLAPS,
    PREMISE_CLARIFIED,
    REPORT_TITLE,
    REQUIRED_SECTIONS,
    SURFACE_ASSUMPTIONS,
    Phase1Payload,
    derive_anchor,
    validate_phase2,
)
from overlap_engine.services.style_contracts import StyleContract

logger = logging.getLogger(__name__)

PHASE = "Phase 2"

AUTHORING_TOP_P = 1.0

SYSTEM_PROMPT = (
    'You are writing a final Overlap Analysis Report. Return ONLY a JSON object with a single "report" key '
    'containing the complete formatted report as a plain text string (not structured JSON).'
)

DEVELOPER_PROMPT = f'''The PHASE 1 RAW MATERIAL is authoritative. Do NOT add new overlap ideas.
Re-express each overlap in the voice of the STYLE CONTRACT and lay the report out in this exact order:

{REPORT_TITLE}

{PREMISE_CLARIFIED}
One short paragraph restating the premise. Keep the premise's key phrase word-for-word.

{SURFACE_ASSUMPTIONS}
{MIN_ASSUMPTIONS}–{MAX_ASSUMPTIONS} bullets, one assumption per line, each starting with "- ".

{CORE_OVERLAPS}
One block per core item, in order:
  Label: the two anchors that collide.
  Scene: the overlap translated into one concrete, playable scene.
  Escalation: three to five short lines, each more committed than the last.
  Brainstorm: objects, activities, idioms, double meanings.

{OUTER_FIELD_OVERLAPS}
One line per outer item, re-voiced.

{COMPRESSION_LINES}
One line per compression item, re-voiced and kept to one sentence.

RULES:
- The title line must match exactly: {REPORT_TITLE}
- Every section header above must appear exactly as written.
- Write with declarative certainty. Never use: {", ".join(HEDGE_TOKENS)}.
- Follow every language constraint in the STYLE CONTRACT.
- Plain text with line breaks inside the JSON string. No markdown tables.'''

USER_PROMPT_TEMPLATE = '''Create a full Overlap Analysis Report.

TOPIC (for premise clarified + assumptions):
{premise}

PREMISE ANCHOR (must appear in {premise_clarified}):
{anchor}

STYLE CONTRACT (BINDING):
{style_json}

PHASE 1 RAW MATERIAL (DO NOT ADD NEW IDEAS):
{phase1_json}

OUTPUT FORMAT (STRICT):
Return valid JSON only in this exact shape:
{{ "report": "<plain text report with line breaks>" }}'''

BASE_CORRECTIVE_PROMPT = (
    'CRITICAL: Your previous report was rejected: {error}\n'
    'Output must be valid JSON with exactly one key: {{"report": "..."}} and the report must include all '
    'required sections: Title, {sections}.'
)


@dataclass(frozen=True)
class AuthoringResult:
    report: str
    attempts: int


def build_corrective_directive(error: OutputValidationError, anchor: Optional[str]) -> str:
    """Corrective instruction naming the violated predicate and what was observed."""
    lines = [BASE_CORRECTIVE_PROMPT.format(error=str(error), sections=', '.join(REQUIRED_SECTIONS))]

    if isinstance(error, SectionError):
        if error.predicate == 'title':
            lines.append(f'The first line must be exactly: {REPORT_TITLE}')
        elif error.predicate == 'min_length':
            lines.append('Write the full report; every Phase 1 item must appear in its section.')
        else:
            missing = error.predicate.split(':', 1)[-1]
            lines.append(f'Add the missing "{missing}" header exactly as written.')
    elif isinstance(error, AssumptionCountError):
        lines.append(
            f'{SURFACE_ASSUMPTIONS} must contain EXACTLY {MIN_ASSUMPTIONS}-{MAX_ASSUMPTIONS} bullets '
            f'(previous attempt had {error.observed}). Start each bullet with "- ".'
        )
    elif isinstance(error, AnchorDriftError):
        lines.append(f'{PREMISE_CLARIFIED} must contain the phrase "{anchor}" word-for-word.')
    elif isinstance(error, HedgeLanguageError):
        found = ', '.join(sorted(set(error.observed or [])))
        lines.append(f'Remove every hedge ({found}) and state each line as fact.')
    elif isinstance(error, MalformedOutputError):
        lines.append(JSON_OUTPUT_REMINDER)

    return '\n'.join(lines)


def build_messages(
    premise: str,
    phase1: Phase1Payload,
    style: StyleContract,
    anchor: Optional[str],
    previous_error: Optional[OutputValidationError] = None
) -> List[Message]:
    """Assemble the Phase 2 chat messages, adding the corrective directive on retry."""
    user_prompt = USER_PROMPT_TEMPLATE.format(
        premise=premise.strip(),
        premise_clarified=PREMISE_CLARIFIED,
        anchor=anchor or premise.strip(),
        style_json=json.dumps(style.to_dict(), indent=2, ensure_ascii=False),
        phase1_json=json.dumps(phase1.to_dict(), indent=2, ensure_ascii=False)
    )
    messages = [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "developer", "content": DEVELOPER_PROMPT},
        {"role": "user", "content": user_prompt},
    ]
    if previous_error is not None:
        messages.append({"role": "developer", "content": build_corrective_directive(previous_error, anchor)})
    return messages


def author(
    premise: str,
    phase1: Phase1Payload,
    style: StyleContract,
    *,
    anchor: Optional[str] = None,
    complete: Optional[CompleteFn] = None,
    config: Optional[GenerationConfig] = None
) -> AuthoringResult:
    """
    Run Phase 2 for a validated Phase 1 payload.

    Args:
        premise: User premise text.
        phase1: Validated Phase 1 payload (never modified).
        style: Resolved style contract.
        anchor: Phrase that must survive in Premise Clarified; derived from
            the premise when not given.
        complete: Backend callable; defaults to the OpenAI client.
        config: Generation settings; defaults to the environment.

    Returns:
        AuthoringResult with the validated report text and attempts used.

    Raises:
        GenerationError: When the corrective attempt also fails validation.
        BackendError: When the completion call itself fails.
    """
    config = config or GenerationConfig.from_env()
    complete = complete or functools.partial(complete_json, config=config)
    anchor = anchor if anchor is not None else derive_anchor(premise)
    start_time = time.time()

    def _attempt(previous_error: Optional[OutputValidationError]) -> str:
        raw = complete(
            build_messages(premise, phase1, style, anchor, previous_error),
            model=config.authoring_model,
            temperature=config.authoring_temperature,
            max_tokens=config.authoring_max_tokens,
            top_p=AUTHORING_TOP_P
        )
        parsed = parse_json_response(raw, PHASE)
        return validate_phase2(parsed, anchor=anchor, premise=premise)

    logger.info(f"[{PHASE}] Authoring report: style={style.style_id}, anchor={anchor!r}")
    report, attempts = run_with_correction(_attempt, phase=PHASE)

    duration = time.time() - start_time
    logger.info(f"[{PHASE}] Complete: chars={len(report)}, attempts={attempts}, duration={duration:.2f}s")
    return AuthoringResult(report=report, attempts=attempts)
