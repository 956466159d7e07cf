"""
Phase 1: overlap discovery.

Asks the model for raw overlap statements in three buckets (core, outer,
compression) and validates the JSON it returns.
"""
import functools
import logging
import time
from dataclasses import dataclass
from typing import List, Optional

from overlap_engine.config import GenerationConfig
from overlap_engine.services.corrective_retry import run_with_correction
from overlap_engine.services.errors import DriftError, OutputValidationError
from overlap_engine.services.llm_client import (
    JSON_OUTPUT_REMINDER,
    CompleteFn,
    Message,
    complete_json,
    parse_json_response,
)
from overlap_engine.services.schemas import (
    COMPRESSION_BUCKET,
    CORE_BUCKET,
    OUTER_BUCKET,
    DriftGuard,
    Phase1Payload,
    bucket_bounds,
    validate_phase1,
)

logger = logging.getLogger(__name__)

PHASE = "Phase 1"

DISCOVERY_TOP_P = 0.95

SYSTEM_PROMPT = """You are a mechanical overlap discovery engine. Return JSON only.
Produce only single-sentence overlaps. No jokes. No hedging language."""

DEVELOPER_PROMPT = f'''An overlap is one concrete sentence in which two worlds attached to the premise collide
and the wrong rule set is treated as fully true.

BUCKETS:
- core: {CORE_BUCKET.min_items}–{CORE_BUCKET.max_items} primary overlaps drawn directly from the premise.
- outer: {OUTER_BUCKET.min_items}–{OUTER_BUCKET.max_items} overlaps one hop outward (topic-adjacent). Each names the "seed" idea it grew from.
- compression: {COMPRESSION_BUCKET.min_items}–{COMPRESSION_BUCKET.max_items} maximally compressed one-line statements.

EVERY ITEM:
- "world": short label for the world or context the overlap borrows.
- "a" and "b": the two concrete anchors that collide (object, action, person, place).
- EXACTLY one sentence of payload text ("overlap" for core/outer, "line" for compression).
- The sentence is CONCRETE: an object, action, person, place or clearly pictured behavior.
- The sentence is CERTAIN: do NOT use hedging language (feels like, looks like, seems, might,
  probably, kind of, sort of, almost, basically, I guess, I imagine, I picture).
- Do NOT write jokes, punchlines, or joke templates.
- Stay inside the real-world meaning of the premise; do not swap a key term for a literal or
  whimsical object.'''

USER_PROMPT_TEMPLATE = '''PREMISE:
{premise}

Generate overlap statements as JSON with these EXACT counts:
- core: {core_min}–{core_max} (minimum {core_min})
- outer: {outer_min}–{outer_max} (minimum {outer_min})
- compression: {compression_min}–{compression_max} (minimum {compression_min})

Return JSON only in this exact shape:
{{
  "core": [{{"world": "unspecified", "a": "...", "b": "...", "overlap": "..."}}],
  "outer": [{{"world": "unspecified", "seed": "...", "a": "...", "b": "...", "overlap": "..."}}],
  "compression": [{{"world": "unspecified", "a": "...", "b": "...", "line": "..."}}]
}}'''

CORRECTIVE_PROMPT = (
    "CRITICAL: Your previous answer was rejected: {error}\n"
    "You MUST generate the FULL required number of items. Minimum counts: "
    "core: {core_min}, outer: {outer_min}, compression: {compression_min}. "
    "Maximum counts: core: {core_max}, outer: {outer_max}, compression: {compression_max}. "
    "Generate more items if any array is short. Every item needs non-empty anchors and one full sentence. "
    "Output valid JSON only with all three arrays populated."
)

DRIFT_CORRECTIVE_SUFFIX = (
    " Rewrite the overlaps so they stay in the intended real-world context of the premise; "
    "do not treat the key term as a random prop."
)


@dataclass(frozen=True)
class DiscoveryResult:
    payload: Phase1Payload
    attempts: int


def _counts() -> dict:
    counts = {}
    for key, (min_items, max_items) in bucket_bounds().items():
        counts[f"{key}_min"] = min_items
        counts[f"{key}_max"] = max_items
    return counts


def build_corrective_directive(error: OutputValidationError) -> str:
    """Corrective instruction for the retry, quoting the previous rejection."""
    directive = CORRECTIVE_PROMPT.format(error=str(error), **_counts())
    if isinstance(error, DriftError):
        directive += DRIFT_CORRECTIVE_SUFFIX
    return directive


def build_messages(premise: str, previous_error: Optional[OutputValidationError] = None) -> List[Message]:
    """Assemble the Phase 1 chat messages, adding the corrective directive on retry."""
    messages = [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "developer", "content": DEVELOPER_PROMPT},
        {"role": "user", "content": USER_PROMPT_TEMPLATE.format(premise=premise.strip(), **_counts())},
    ]
    if previous_error is not None:
        messages.append({"role": "developer", "content": build_corrective_directive(previous_error)})
        messages.append({"role": "developer", "content": JSON_OUTPUT_REMINDER})
    return messages


def discover(
    premise: str,
    *,
    complete: Optional[CompleteFn] = None,
    config: Optional[GenerationConfig] = None,
    drift_guard: Optional[DriftGuard] = None
) -> DiscoveryResult:
    """
    Run Phase 1 for a premise.

    Args:
        premise: User premise text.
        complete: Backend callable; defaults to the OpenAI client.
        config: Generation settings; defaults to the environment.
        drift_guard: Optional content-drift check.

    Returns:
        DiscoveryResult with the validated payload and the attempts used.

    Raises:
        GenerationError: When the corrective attempt also fails validation.
        BackendError: When the completion call itself fails.
    """
    config = config or GenerationConfig.from_env()
    complete = complete or functools.partial(complete_json, config=config)
    start_time = time.time()

    def _attempt(previous_error: Optional[OutputValidationError]) -> Phase1Payload:
        raw = complete(
            build_messages(premise, previous_error),
            model=config.discovery_model,
            temperature=config.discovery_temperature,
            max_tokens=config.discovery_max_tokens,
            top_p=DISCOVERY_TOP_P
        )
        parsed = parse_json_response(raw, PHASE)
        return validate_phase1(parsed, drift_guard=drift_guard)

    logger.info(f"[{PHASE}] Discovering overlaps: premise_chars={len(premise)}")
    payload, attempts = run_with_correction(_attempt, phase=PHASE)

    duration = time.time() - start_time
    counts = payload.counts()
    logger.info(
        f"[{PHASE}] Complete: core={counts['core']}, outer={counts['outer']}, "
        f"compression={counts['compression']}, attempts={attempts}, duration={duration:.2f}s"
    )
    return DiscoveryResult(payload=payload, attempts=attempts)
