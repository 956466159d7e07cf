"""
Style contract registry: named voices consumed by the Phase 2 prompt.
"""
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Mapping, Tuple, Union


@dataclass(frozen=True)
class StyleContract:
    """A voice description applied while authoring the report."""
    style_id: str
    reference: str
    voice_description: str
    diction: str
    rhythm: str
    energy: str
    language_constraints: Tuple[str, ...]
    structural_behavior: Union[str, Mapping[str, str]]

    def to_dict(self) -> dict:
        """Serialize with the camelCase keys the prompts and API use."""
        behavior = self.structural_behavior
        if not isinstance(behavior, str):
            behavior = dict(behavior)
        return {
            'styleId': self.style_id,
            'reference': self.reference,
            'voiceDescription': self.voice_description,
            'diction': self.diction,
            'rhythm': self.rhythm,
            'energy': self.energy,
            'languageConstraints': list(self.language_constraints),
            'structuralBehavior': behavior,
        }


STYLE_CONTRACTS: Tuple[StyleContract, ...] = (
    StyleContract(
        style_id='warm_physical_storyteller',
        reference='Conversational stage storyteller',
        voice_description='Warm, human, present-tense narrator with visual specifics.',
        diction='Everyday spoken language, vivid nouns and verbs.',
        rhythm='Medium-length lines with occasional punchy short lines.',
        energy='Confident and inviting.',
        language_constraints=('No hedging', 'No academic jargon', 'No punchline templates'),
        structural_behavior='Build each overlap like a playable scene with immediate visual cues.',
    ),
    StyleContract(
        style_id='obsessive_precision_ranter',
        reference='High-control logic rant',
        voice_description='Fast, specific, relentless categorizer.',
        diction='Precise nouns, decisive verbs, no fluff.',
        rhythm='Rapid sequence of decisive statements.',
        energy='High urgency.',
        language_constraints=('No hedging', 'No passive voice', 'No vague abstractions'),
        structural_behavior='Escalation lines move from concrete to absurdly over-committed detail.',
    ),
    StyleContract(
        style_id='cold_minimalist_observer',
        reference='Detached cinematic observer',
        voice_description='Sparse, objective, sharp.',
        diction='Lean and literal.',
        rhythm='Short declarative lines.',
        energy='Low heat, high precision.',
        language_constraints=('No hedging', 'No decorative language', 'No rhetorical questions'),
        structural_behavior='Prioritize observable behavior over interpretation.',
    ),
    StyleContract(
        style_id='hyper_logical_literalist',
        reference='Formal absurd literalism',
        voice_description='Rigidly logical framing with concrete outcomes.',
        diction='Plain language with explicit causal links.',
        rhythm='Methodical sentence progression.',
        energy='Steady and emphatic.',
        language_constraints=('No hedging', 'No figurative filler', 'No unsupported claims'),
        structural_behavior='State premise mechanics like engineering steps.',
    ),
    StyleContract(
        style_id='cheerfully_misguided_optimist',
        reference='Positive but concretely wrong guide',
        voice_description='Bright confidence applied to absurdly concrete framing.',
        diction='Friendly language and plain images.',
        rhythm='Bouncy declarative statements.',
        energy='High and upbeat.',
        language_constraints=('No hedging', 'No cynicism', 'No generic phrasing'),
        structural_behavior='Escalation should stay optimistic while details get more extreme.',
    ),
    StyleContract(
        style_id='dave_barry_adjacent',
        reference='dave_barry_adjacent',
        voice_description=(
            'Mock-serious columnist voice. Treats ordinary life as an official matter, narrates '
            'with confident certainty, and escalates by applying bureaucratic or institutional '
            'language to trivial situations.'
        ),
        diction=(
            'Plain but wry. Prefers official-sounding nouns and verbs (compliance, policy, '
            'regulation, procedure, authorization, committee, documentation) applied to everyday '
            'objects. Avoids academic abstractions.'
        ),
        rhythm=(
            'Brisk sentences with confident declarations. Alternates short punchy lines with one '
            'longer explanatory line. Occasional short parenthetical asides are allowed.'
        ),
        energy=(
            'Confident, amused, mock-authoritative. The narrator sounds certain and calmly '
            'committed, even when the logic is ridiculous.'
        ),
        language_constraints=(
            'Do not use hedging language: feels like, looks like, seems, might, probably, kind of, '
            'sort of, almost, basically, I guess, I imagine, I picture.',
            'Write declarative statements with emphatic certainty; state absurd conclusions as facts.',
            'Escalate by adding official/bureaucratic layers to ordinary situations '
            '(forms, policies, committees, compliance).',
            'Treat trivial objects as if they require procedures, documentation, approvals, and audits.',
            'Use occasional short parenthetical asides as punch beats; keep them brief.',
            'Do not use joke templates or explicit punchlines.',
            'Do not moralize; keep it observational and procedural.',
            'Keep concrete nouns on the page; avoid abstract thesis language.',
            'Vary sentence openings to avoid repetitive stems.',
        ),
        structural_behavior=MappingProxyType({'multiLine': 'allowed', 'tagging': 'light'}),
    ),
)

DEFAULT_STYLE_CONTRACT = STYLE_CONTRACTS[0]

_BY_ID: Dict[str, StyleContract] = {contract.style_id: contract for contract in STYLE_CONTRACTS}


def get_style_contract(style_id: str) -> StyleContract:
    """
    Look up a style contract by identifier.

    Unknown or empty identifiers resolve to the default (first) contract.
    """
    if not style_id:
        return DEFAULT_STYLE_CONTRACT
    return _BY_ID.get(style_id.strip(), DEFAULT_STYLE_CONTRACT)


def list_style_contracts() -> Tuple[StyleContract, ...]:
    return STYLE_CONTRACTS


def style_ids() -> Tuple[str, ...]:
    return tuple(contract.style_id for contract in STYLE_CONTRACTS)
