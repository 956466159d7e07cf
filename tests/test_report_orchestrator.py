"""
End-to-end tests for the two-phase pipeline with a scripted backend.
"""
import json
from unittest.mock import patch

import pytest

from overlap_engine.config import GenerationConfig
from overlap_engine.services.errors import BackendError, GenerationError, ShapeError
from overlap_engine.services.report_orchestrator import generate_report, run_two_phase_report
from overlap_engine.services.schemas import (
    REPORT_TITLE,
    count_assumption_bullets,
    extract_section,
    find_hedge_tokens,
)
from tests.test_overlap_discovery import ScriptedBackend
from tests.test_report_authoring import layout_stub
from tests.test_schemas import make_phase1_dict, make_report

TEST_CONFIG = GenerationConfig(api_key='test-key')


def style_id_in_prompt(messages) -> str:
    user = next(m['content'] for m in messages if m['role'] == 'user')
    marker = '"styleId": "'
    start = user.index(marker) + len(marker)
    return user[start:user.index('"', start)]


class TestGenerateReport:
    """Tests for generate_report()."""

    def test_end_to_end_horse_quality_hay(self):
        backend = ScriptedBackend(make_phase1_dict(12, 14, 6), layout_stub)

        result = generate_report(
            'Horse quality hay for sale',
            'cold_minimalist_observer',
            complete=backend,
            config=TEST_CONFIG
        )

        assert len(backend.calls) == 2
        assert result.style_id == 'cold_minimalist_observer'
        assert result.phase1.counts() == {'core': 12, 'outer': 14, 'compression': 6}
        assert result.phase1_attempts == 1
        assert result.phase2_attempts == 1
        assert REPORT_TITLE in result.report
        assert 6 <= count_assumption_bullets(result.report) <= 10
        assert 'horse quality hay' in extract_section(result.report, 'Premise Clarified').lower()
        assert find_hedge_tokens(result.report) == []
        assert style_id_in_prompt(backend.calls[1][0]) == 'cold_minimalist_observer'

    def test_unknown_style_falls_back_to_default(self):
        backend = ScriptedBackend(make_phase1_dict(), layout_stub)

        result = generate_report(
            'Horse quality hay for sale',
            'no_such_style',
            complete=backend,
            config=TEST_CONFIG
        )

        assert result.style_id == 'warm_physical_storyteller'
        phase2_user = backend.calls[1][0][2]['content']
        assert style_id_in_prompt(backend.calls[1][0]) == 'warm_physical_storyteller'
        assert 'Warm, human, present-tense narrator' in phase2_user

    def test_phase1_failure_stops_before_phase2(self):
        backend = ScriptedBackend(make_phase1_dict(core=2))

        with pytest.raises(GenerationError) as exc_info:
            generate_report('Horse quality hay for sale', 'cold_minimalist_observer', complete=backend, config=TEST_CONFIG)

        assert exc_info.value.phase == 'Phase 1'
        assert isinstance(exc_info.value.cause, ShapeError)
        assert len(backend.calls) == 2

    def test_phase2_failure_never_reruns_phase1(self):
        backend = ScriptedBackend(make_phase1_dict(), {'report': make_report(bullets=3)})

        with pytest.raises(GenerationError) as exc_info:
            generate_report('Horse quality hay for sale', 'cold_minimalist_observer', complete=backend, config=TEST_CONFIG)

        assert exc_info.value.phase == 'Phase 2'
        assert len(backend.calls) == 3
        # Only the first call is a discovery call
        system_prompts = [call[0][0]['content'] for call in backend.calls]
        assert sum('discovery engine' in prompt for prompt in system_prompts) == 1

    def test_at_most_four_calls(self):
        backend = ScriptedBackend(
            make_phase1_dict(core=1),
            make_phase1_dict(),
            {'report': 'short'},
            layout_stub
        )

        result = generate_report('Horse quality hay for sale', 'dave_barry_adjacent', complete=backend, config=TEST_CONFIG)

        assert len(backend.calls) == 4
        assert result.phase1_attempts == 2
        assert result.phase2_attempts == 2

    def test_drift_guard_built_from_anchor(self):
        drifted = make_phase1_dict(core=10, outer=12, compression=5)
        for item in drifted['core']:
            item['overlap'] = 'The farmer is stuffing hay into the mattress factory.'
        backend = ScriptedBackend(drifted, make_phase1_dict(), layout_stub)

        result = generate_report('Horse quality hay for sale', 'cold_minimalist_observer', complete=backend, config=TEST_CONFIG)

        assert result.phase1_attempts == 2

    def test_drift_guard_can_be_disabled(self):
        drifted = make_phase1_dict(core=10, outer=12, compression=5)
        for item in drifted['core']:
            item['overlap'] = 'The farmer is stuffing hay into the mattress factory.'
        backend = ScriptedBackend(drifted, layout_stub)
        config = GenerationConfig(api_key='test-key', drift_guard_enabled=False)

        result = generate_report('Horse quality hay for sale', 'cold_minimalist_observer', complete=backend, config=config)

        assert result.phase1_attempts == 1

    def test_backend_error_propagates_unchanged(self):
        error = BackendError('Generation service error: APIError - boom')
        backend = ScriptedBackend(make_phase1_dict(), error)

        with pytest.raises(BackendError) as exc_info:
            generate_report('Horse quality hay for sale', 'cold_minimalist_observer', complete=backend, config=TEST_CONFIG)

        assert exc_info.value is error
        assert len(backend.calls) == 2

    def test_blank_premise_rejected(self):
        with pytest.raises(ValueError):
            generate_report('   ', 'cold_minimalist_observer', complete=ScriptedBackend('{}'), config=TEST_CONFIG)

    def test_debug_dict(self):
        backend = ScriptedBackend(make_phase1_dict(10, 12, 5), layout_stub)

        result = generate_report('Horse quality hay for sale', 'cold_minimalist_observer', complete=backend, config=TEST_CONFIG)
        debug = result.to_debug_dict()

        assert debug['phase1'] == make_phase1_dict(10, 12, 5)
        assert debug['phase1Attempts'] == 1
        assert debug['phase2Attempts'] == 1
        json.dumps(debug)


def test_run_two_phase_report_returns_text():
    backend = ScriptedBackend(make_phase1_dict(), layout_stub)

    with patch('overlap_engine.services.report_orchestrator.GenerationConfig.from_env', return_value=TEST_CONFIG):
        report = run_two_phase_report('Horse quality hay for sale', 'cold_minimalist_observer', complete=backend)

    assert isinstance(report, str)
    assert report.startswith(REPORT_TITLE)


TOPIC_MARKER = 'TOPIC (for premise clarified + assumptions):\n'


def restating_stub(messages) -> str:
    """Phase 2 backend that restates the premise word-for-word in Premise Clarified."""
    user = next(m['content'] for m in messages if m['role'] == 'user')
    premise = user.split(TOPIC_MARKER, 1)[1].split('\n\nPREMISE ANCHOR', 1)[0]
    return json.dumps({'report': make_report(anchor=premise)})


@pytest.mark.parametrize('premise,anchor', [
    ('Café culture in small towns', 'café culture'),
    ('Grandma’s recipe box for sale', 'grandma’s recipe box'),
    ('My dog might be a genius', 'my dog'),
    ('Probably the best pizza in town', 'best pizza'),
])
def test_premise_restated_verbatim_passes_first_time(premise, anchor):
    backend = ScriptedBackend(make_phase1_dict(), restating_stub)

    result = generate_report(premise, 'cold_minimalist_observer', complete=backend, config=TEST_CONFIG)

    assert len(backend.calls) == 2
    assert result.phase2_attempts == 1
    assert premise in extract_section(result.report, 'Premise Clarified')
    phase2_user = backend.calls[1][0][2]['content']
    assert f'PREMISE ANCHOR (must appear in Premise Clarified):\n{anchor}\n' in phase2_user
