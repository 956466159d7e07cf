"""
Structural contracts for model output and for the report request body.

Phase 1 output is checked bucket by bucket; Phase 2 output is checked
predicate by predicate. Each failure raises its own error type with the
predicate and the observed value so the corrective retry can name the
exact defect.
"""
import re
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Pattern, Sequence, Tuple

from overlap_engine.services.errors import (
    AnchorDriftError,
    AssumptionCountError,
    DriftError,
    HedgeLanguageError,
    MalformedOutputError,
    RequestValidationError,
    SectionError,
    ShapeError,
)

logger = logging.getLogger(__name__)

UNSPECIFIED_WORLD = 'unspecified'
MIN_SENTENCE_CHARS = 8
MIN_ANCHOR_CHARS = 2

PREMISE_MIN_CHARS = 12
PREMISE_MAX_CHARS = 2000
STYLE_ID_MIN_CHARS = 2

REPORT_TITLE = "John Branyan's Overlap Comedy Engine — Overlap Analysis Report"
REPORT_MIN_CHARS = 100

PREMISE_CLARIFIED = 'Premise Clarified'
SURFACE_ASSUMPTIONS = 'Surface Assumptions'
CORE_OVERLAPS = 'Core Overlaps'
OUTER_FIELD_OVERLAPS = 'Outer Field Overlaps'
COMPRESSION_LINES = 'Compression Lines'

# Report layout order; the title precedes all of these.
REQUIRED_SECTIONS: Tuple[str, ...] = (
    PREMISE_CLARIFIED,
    SURFACE_ASSUMPTIONS,
    CORE_OVERLAPS,
    OUTER_FIELD_OVERLAPS,
    COMPRESSION_LINES,
)

MIN_ASSUMPTIONS = 6
MAX_ASSUMPTIONS = 10

HEDGE_TOKENS: Tuple[str, ...] = (
    'feels like',
    'looks like',
    'seems',
    'might',
    'probably',
    'kind of',
    'sort of',
    'almost',
    'basically',
    'I guess',
    'I imagine',
    'I picture',
)

_HEDGE_PATTERN = re.compile(
    r'\b(' + '|'.join(r'\s+'.join(map(re.escape, token.split())) for token in HEDGE_TOKENS) + r')\b',
    re.IGNORECASE
)

# "- item", "• item", "* item", "1. item", "1) item"
_BULLET_PATTERN = re.compile(r'^(?:[-•*]|\d+[.)])\s+\S')

# Words that end the leading noun phrase of a premise.
_ANCHOR_STOPWORDS = frozenset({
    'for', 'to', 'in', 'on', 'at', 'with', 'of', 'from', 'by', 'about',
    'and', 'or', 'but', 'that', 'which', 'when', 'while', 'is', 'are',
    'a', 'an', 'the',
})
_ANCHOR_MAX_WORDS = 4

DRIFT_VERBS: Tuple[str, ...] = (
    'using', 'stuffing', 'building', 'fueling', 'insulating', 'painting', 'making', 'trying to',
)


# ---------------------------------------------------------------------------
# Phase 1 payload
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BucketSpec:
    """Wire shape and size bounds for one Phase 1 bucket."""
    key: str
    anchor_fields: Tuple[str, ...]
    text_field: str
    min_items: int
    max_items: int


CORE_BUCKET = BucketSpec('core', ('a', 'b'), 'overlap', 10, 15)
OUTER_BUCKET = BucketSpec('outer', ('seed', 'a', 'b'), 'overlap', 12, 25)
COMPRESSION_BUCKET = BucketSpec('compression', ('a', 'b'), 'line', 5, 10)

PHASE1_BUCKETS: Tuple[BucketSpec, ...] = (CORE_BUCKET, OUTER_BUCKET, COMPRESSION_BUCKET)


@dataclass(frozen=True)
class OverlapItem:
    """One overlap statement: a world label, its anchors, and a single sentence."""
    world: str
    anchors: Tuple[Tuple[str, str], ...]
    text: str

    def to_dict(self, spec: BucketSpec) -> dict:
        data = {'world': self.world}
        data.update(dict(self.anchors))
        data[spec.text_field] = self.text
        return data


@dataclass(frozen=True)
class Phase1Payload:
    """Validated Phase 1 output."""
    core: Tuple[OverlapItem, ...]
    outer: Tuple[OverlapItem, ...]
    compression: Tuple[OverlapItem, ...]

    def to_dict(self) -> dict:
        return {
            CORE_BUCKET.key: [item.to_dict(CORE_BUCKET) for item in self.core],
            OUTER_BUCKET.key: [item.to_dict(OUTER_BUCKET) for item in self.outer],
            COMPRESSION_BUCKET.key: [item.to_dict(COMPRESSION_BUCKET) for item in self.compression],
        }

    def counts(self) -> Dict[str, int]:
        return {
            CORE_BUCKET.key: len(self.core),
            OUTER_BUCKET.key: len(self.outer),
            COMPRESSION_BUCKET.key: len(self.compression),
        }


@dataclass(frozen=True)
class DriftGuard:
    """
    Rejects a Phase 1 payload when too many items match a derailment pattern.

    The pattern describes the model swapping the intended reading of a key
    term for a literal or whimsical one.
    """
    pattern: Pattern[str]
    threshold: float = 0.35
    buckets: Tuple[str, ...] = ('core', 'outer')
    context_hint: str = 'the real-world context of the premise'

    @classmethod
    def for_term(
        cls,
        term: str,
        *,
        threshold: float = 0.35,
        verbs: Sequence[str] = DRIFT_VERBS,
        context_hint: Optional[str] = None
    ) -> "DriftGuard":
        """Build the "term used as a random object" guard for one term."""
        verb_group = '|'.join(r'\s+'.join(map(re.escape, verb.split())) for verb in verbs)
        pattern = re.compile(
            r'\b(' + verb_group + r')\b.*\b' + re.escape(term) + r'\b',
            re.IGNORECASE
        )
        hint = context_hint or f'the real buy/sell/use context of "{term}"'
        return cls(pattern=pattern, threshold=threshold, context_hint=hint)

    def check(self, payload: Phase1Payload) -> None:
        items: List[OverlapItem] = []
        for key in self.buckets:
            items.extend(getattr(payload, key))
        total = len(items)
        if total == 0:
            return
        matched = sum(1 for item in items if self.pattern.search(item.text))
        if matched / total > self.threshold:
            raise DriftError(
                f'Phase 1 drifted into literal substitutions of the key term ({matched}/{total}). '
                f'Regenerate the overlaps within {self.context_hint}.',
                matched=matched,
                total=total,
                threshold=self.threshold
            )


def normalize_sentence(value: str) -> str:
    """Collapse whitespace (including newlines) so a sentence stays on one line."""
    return re.sub(r'\s+', ' ', value or '').strip()


def _parse_item(raw: Any, spec: BucketSpec, index: int) -> OverlapItem:
    location = f'{spec.key}[{index}]'
    if not isinstance(raw, Mapping):
        raise ShapeError(
            f'Phase 1 {location} must be an object, got {type(raw).__name__}.',
            bucket=spec.key,
            predicate=f'{location}.type',
            observed=type(raw).__name__
        )

    world = raw.get('world')
    world = world.strip() if isinstance(world, str) and world.strip() else UNSPECIFIED_WORLD

    anchors = []
    for field_name in spec.anchor_fields:
        value = raw.get(field_name)
        value = normalize_sentence(value) if isinstance(value, str) else ''
        if len(value) < MIN_ANCHOR_CHARS:
            raise ShapeError(
                f'Phase 1 {location}.{field_name} must be a non-empty anchor string.',
                bucket=spec.key,
                predicate=f'{location}.{field_name}',
                observed=raw.get(field_name)
            )
        anchors.append((field_name, value))

    text = raw.get(spec.text_field)
    text = normalize_sentence(text) if isinstance(text, str) else ''
    if len(text) < MIN_SENTENCE_CHARS:
        raise ShapeError(
            f'Phase 1 {location}.{spec.text_field} must be one sentence of at least '
            f'{MIN_SENTENCE_CHARS} characters (got {len(text)}).',
            bucket=spec.key,
            predicate=f'{location}.{spec.text_field}',
            observed=text
        )

    return OverlapItem(world=world, anchors=tuple(anchors), text=text)


def _parse_bucket(parsed: Mapping, spec: BucketSpec) -> Tuple[OverlapItem, ...]:
    raw_items = parsed.get(spec.key)
    if not isinstance(raw_items, list):
        raise ShapeError(
            f'Phase 1 JSON must include an array "{spec.key}".',
            bucket=spec.key,
            predicate=f'{spec.key}.type',
            observed=type(raw_items).__name__
        )

    count = len(raw_items)
    if count < spec.min_items or count > spec.max_items:
        qualifier = 'too short' if count < spec.min_items else 'too long'
        raise ShapeError(
            f'Phase 1 "{spec.key}" {qualifier} ({count}); expected {spec.min_items}–{spec.max_items}.',
            bucket=spec.key,
            found=count,
            expected_min=spec.min_items,
            expected_max=spec.max_items,
            predicate=f'{spec.key}.count'
        )

    return tuple(_parse_item(raw, spec, index) for index, raw in enumerate(raw_items))


def validate_phase1(
    parsed: Any,
    *,
    buckets: Sequence[BucketSpec] = PHASE1_BUCKETS,
    drift_guard: Optional[DriftGuard] = None
) -> Phase1Payload:
    """
    Validate a parsed Phase 1 response.

    Args:
        parsed: Value returned by json.loads on the model output.
        buckets: Bucket specs keyed core, outer, compression (in that order).
        drift_guard: Optional content-drift check run after the shape checks.

    Returns:
        Phase1Payload with normalized items.

    Raises:
        ShapeError: On structure, field or count violations.
        DriftError: When the drift guard trips.
    """
    if not isinstance(parsed, Mapping):
        raise ShapeError(
            'Phase 1 JSON must be an object.',
            bucket='<root>',
            predicate='root.type',
            observed=type(parsed).__name__
        )

    parsed_buckets = {spec.key: _parse_bucket(parsed, spec) for spec in buckets}
    payload = Phase1Payload(
        core=parsed_buckets.get(CORE_BUCKET.key, ()),
        outer=parsed_buckets.get(OUTER_BUCKET.key, ()),
        compression=parsed_buckets.get(COMPRESSION_BUCKET.key, ())
    )

    if drift_guard is not None:
        drift_guard.check(payload)

    return payload


# ---------------------------------------------------------------------------
# Phase 2 report
# ---------------------------------------------------------------------------

def extract_section(report: str, header: str) -> Optional[str]:
    """
    Return the text between a section header and the next required header.

    Returns None when the header is absent.
    """
    start = report.find(header)
    if start < 0:
        return None
    body_start = start + len(header)
    end = len(report)
    for other in REQUIRED_SECTIONS:
        if other == header:
            continue
        position = report.find(other, body_start)
        if 0 <= position < end:
            end = position
    return report[body_start:end]


def _is_bullet(line: str) -> bool:
    return bool(_BULLET_PATTERN.match(line.strip()))


def count_assumption_bullets(report: str) -> int:
    """Count bullet lines under Surface Assumptions (0 when the section is missing)."""
    section = extract_section(report, SURFACE_ASSUMPTIONS)
    if section is None:
        return 0
    return sum(1 for line in section.splitlines() if _is_bullet(line))


def _fold_apostrophes(text: str) -> str:
    # Same length as the input, so match offsets stay valid.
    return (text or '').replace('’', "'")


def _phrase_spans(text: str, phrases: Iterable[str]) -> List[Tuple[int, int]]:
    """Case- and whitespace-insensitive occurrences of each phrase in text."""
    folded = _fold_apostrophes(text)
    spans = []
    for phrase in phrases:
        words = _fold_apostrophes(phrase).split()
        if not words:
            continue
        pattern = re.compile(r'\s+'.join(map(re.escape, words)), re.IGNORECASE)
        spans.extend(match.span() for match in pattern.finditer(folded))
    return spans


def find_hedge_tokens(text: str, *, quoted: Iterable[str] = ()) -> List[str]:
    """
    Hedge tokens found in text, lower-cased, in order of appearance.

    Hedges inside a verbatim occurrence of one of the quoted phrases (the
    user's own premise, for instance) are not counted.
    """
    exempt = _phrase_spans(text, quoted)
    found = []
    for match in _HEDGE_PATTERN.finditer(text or ''):
        start, end = match.span(1)
        if any(span_start <= start and end <= span_end for span_start, span_end in exempt):
            continue
        found.append(normalize_sentence(match.group(1)).lower())
    return found


def _normalize_for_match(text: str) -> str:
    return re.sub(r'\s+', ' ', _fold_apostrophes(text).lower()).strip()


_ANCHOR_WORD_PATTERN = re.compile(r"\w[\w'’\-]*")


def derive_anchor(premise: str) -> str:
    """
    Leading noun phrase of a premise, used to check the report stays on topic.

    "Horse quality hay for sale" -> "horse quality hay"

    The phrase is a slice of the premise itself (accents and apostrophes
    kept). It ends at a stopword, at punctuation between words, or at a
    hedge word; leading stopwords and hedges are skipped.
    """
    premise = premise or ''
    hedge_spans = [match.span(1) for match in _HEDGE_PATTERN.finditer(premise)]
    start = end = None
    count = 0
    for match in _ANCHOR_WORD_PATTERN.finditer(premise):
        word = _fold_apostrophes(match.group()).lower()
        is_hedge = any(s <= match.start() < e for s, e in hedge_spans)
        if word in _ANCHOR_STOPWORDS or is_hedge:
            if start is not None:
                break
            continue
        if start is not None and premise[end:match.start()].strip():
            break
        if start is None:
            start = match.start()
        end = match.end()
        count += 1
        if count >= _ANCHOR_MAX_WORDS:
            break
    if start is None:
        return ''
    return ' '.join(premise[start:end].lower().split())


def validate_phase2(
    parsed: Any,
    *,
    anchor: Optional[str],
    premise: Optional[str] = None,
    title: str = REPORT_TITLE,
    min_chars: int = REPORT_MIN_CHARS,
    min_assumptions: int = MIN_ASSUMPTIONS,
    max_assumptions: int = MAX_ASSUMPTIONS
) -> str:
    """
    Validate a parsed Phase 2 response and return the report text.

    Checks run in a fixed order (shape, length, title, headers, assumption
    count, anchor, hedging) and the first failure raises. Hedge words that
    sit inside a verbatim restatement of the premise are not counted.
    """
    report = parsed.get('report') if isinstance(parsed, Mapping) else None
    if not isinstance(report, str) or not report.strip():
        raise MalformedOutputError(
            'Phase 2 JSON missing required "report" string.',
            predicate='report.type',
            observed=type(report).__name__
        )

    if len(report.strip()) < min_chars:
        raise SectionError(
            f'Report is too short ({len(report.strip())} chars); expected at least {min_chars}.',
            predicate='min_length',
            observed=len(report.strip())
        )

    if title not in report:
        first_line = report.strip().splitlines()[0]
        raise SectionError(
            f'Report missing exact title "{title}".',
            predicate='title',
            observed=first_line[:120]
        )

    for header in REQUIRED_SECTIONS:
        if header not in report:
            raise SectionError(
                f'Report missing {header} section.',
                predicate=f'section:{header}',
                observed=None
            )

    bullets = count_assumption_bullets(report)
    if bullets < min_assumptions or bullets > max_assumptions:
        raise AssumptionCountError(
            f'{SURFACE_ASSUMPTIONS} must contain {min_assumptions}–{max_assumptions} bullets; got {bullets}.',
            predicate='assumption_count',
            observed=bullets
        )

    if anchor:
        clarified = extract_section(report, PREMISE_CLARIFIED) or ''
        if _normalize_for_match(anchor) not in _normalize_for_match(clarified):
            raise AnchorDriftError(
                f'{PREMISE_CLARIFIED} drifted; report must retain the user premise anchor "{anchor}".',
                predicate='anchor',
                observed=normalize_sentence(clarified)[:200]
            )

    hedges = find_hedge_tokens(report, quoted=(premise,) if premise else ())
    if hedges:
        raise HedgeLanguageError(
            f'Report contains hedging language ("{hedges[0]}"); rewrite with declarative certainty.',
            predicate='hedge',
            observed=hedges
        )

    return report


# ---------------------------------------------------------------------------
# Request body
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ReportRequest:
    premise: str
    style_id: str


def validate_report_request(body: Any) -> ReportRequest:
    """
    Validate a POST /api/report body.

    Raises:
        RequestValidationError: Listing every field problem found.
    """
    if not isinstance(body, Mapping):
        raise RequestValidationError(['Request body must be a JSON object'])

    errors = []
    premise = body.get('premise')
    if not isinstance(premise, str):
        errors.append('premise must be a string')
    else:
        premise = premise.strip()
        if len(premise) < PREMISE_MIN_CHARS:
            errors.append(f'premise must be at least {PREMISE_MIN_CHARS} characters')
        elif len(premise) > PREMISE_MAX_CHARS:
            errors.append(f'premise must be at most {PREMISE_MAX_CHARS} characters')

    style_id = body.get('styleId')
    if not isinstance(style_id, str) or len(style_id.strip()) < STYLE_ID_MIN_CHARS:
        errors.append(f'styleId must be a string of at least {STYLE_ID_MIN_CHARS} characters')

    if errors:
        logger.info(f"Rejected report request: {errors}")
        raise RequestValidationError(errors)

    return ReportRequest(premise=premise, style_id=style_id.strip())


def bucket_bounds(buckets: Iterable[BucketSpec] = PHASE1_BUCKETS) -> Dict[str, Tuple[int, int]]:
    """{"core": (10, 15), ...} for prompt text."""
    return {spec.key: (spec.min_items, spec.max_items) for spec in buckets}
