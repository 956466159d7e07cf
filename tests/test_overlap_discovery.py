"""
Unit tests for Phase 1 overlap discovery and the corrective retry.
Backends are scripted callables, no network calls.
"""
import json

import pytest

from overlap_engine.config import GenerationConfig
from overlap_engine.services.corrective_retry import run_with_correction
from overlap_engine.services.errors import (
    BackendError,
    DriftError,
    GenerationError,
    MalformedOutputError,
    ShapeError,
)
from overlap_engine.services.overlap_discovery import build_messages, discover
from overlap_engine.services.schemas import DriftGuard
from tests.test_schemas import make_phase1_dict

TEST_CONFIG = GenerationConfig(api_key='test-key', drift_guard_enabled=False)


class ScriptedBackend:
    """
    Completion stub that replays canned responses in order.

    The last response repeats once the script runs out. Every call is
    recorded as (messages, kwargs).
    """

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def __call__(self, messages, **kwargs):
        self.calls.append((messages, kwargs))
        index = min(len(self.calls) - 1, len(self.responses) - 1)
        response = self.responses[index]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(messages)
        return response if isinstance(response, str) else json.dumps(response)

    def developer_messages(self, call_index: int) -> str:
        messages, _ = self.calls[call_index]
        return '\n'.join(m['content'] for m in messages if m['role'] == 'developer')


class TestRunWithCorrection:
    """Tests for the single corrective retry."""

    def test_first_attempt_success(self):
        seen = []

        result, attempts = run_with_correction(lambda error: seen.append(error) or 'ok', phase='Phase X')

        assert result == 'ok'
        assert attempts == 1
        assert seen == [None]

    def test_second_attempt_receives_previous_error(self):
        seen = []
        first_error = ShapeError('core too short', bucket='core', found=3)

        def attempt(previous):
            seen.append(previous)
            if previous is None:
                raise first_error
            return 'fixed'

        result, attempts = run_with_correction(attempt, phase='Phase X')

        assert result == 'fixed'
        assert attempts == 2
        assert seen == [None, first_error]

    def test_second_failure_is_terminal_and_verbatim(self):
        calls = []

        def attempt(previous):
            calls.append(previous)
            raise MalformedOutputError(f'bad json #{len(calls)}')

        with pytest.raises(GenerationError) as exc_info:
            run_with_correction(attempt, phase='Phase X')

        assert len(calls) == 2
        assert str(exc_info.value) == 'bad json #2'
        assert exc_info.value.phase == 'Phase X'
        assert isinstance(exc_info.value.cause, MalformedOutputError)
        assert exc_info.value.__cause__ is exc_info.value.cause

    def test_non_validation_errors_are_not_retried(self):
        calls = []

        def attempt(previous):
            calls.append(previous)
            raise BackendError('timed out')

        with pytest.raises(BackendError):
            run_with_correction(attempt, phase='Phase X')

        assert len(calls) == 1


class TestDiscover:
    """Tests for discover()."""

    def test_valid_first_response(self):
        backend = ScriptedBackend(make_phase1_dict(12, 14, 6))

        result = discover('Horse quality hay for sale', complete=backend, config=TEST_CONFIG)

        assert result.attempts == 1
        assert result.payload.counts() == {'core': 12, 'outer': 14, 'compression': 6}
        assert len(backend.calls) == 1

    def test_request_parameters(self):
        backend = ScriptedBackend(make_phase1_dict())

        discover('Horse quality hay for sale', complete=backend, config=TEST_CONFIG)

        messages, kwargs = backend.calls[0]
        assert kwargs['temperature'] == 0.7
        assert kwargs['model'] == TEST_CONFIG.discovery_model
        assert kwargs['max_tokens'] == TEST_CONFIG.discovery_max_tokens
        assert [m['role'] for m in messages] == ['system', 'developer', 'user']
        assert 'mechanical overlap discovery engine' in messages[0]['content']
        assert 'Horse quality hay for sale' in messages[2]['content']

    def test_always_short_core_makes_exactly_two_calls(self):
        backend = ScriptedBackend(make_phase1_dict(core=4))

        with pytest.raises(GenerationError) as exc_info:
            discover('Horse quality hay for sale', complete=backend, config=TEST_CONFIG)

        assert len(backend.calls) == 2
        assert 'core' in str(exc_info.value)
        assert 'too short (4)' in str(exc_info.value)
        assert isinstance(exc_info.value.cause, ShapeError)

    def test_corrective_retry_recovers(self):
        backend = ScriptedBackend(make_phase1_dict(outer=3), make_phase1_dict())

        result = discover('Horse quality hay for sale', complete=backend, config=TEST_CONFIG)

        assert result.attempts == 2
        corrective = backend.developer_messages(1)
        assert 'CRITICAL' in corrective
        assert 'outer' in corrective and 'too short (3)' in corrective
        assert 'core: 10, outer: 12, compression: 5' in corrective
        assert 'CRITICAL' not in backend.developer_messages(0)
        # Same temperature on the corrective attempt
        assert backend.calls[1][1]['temperature'] == backend.calls[0][1]['temperature']

    @pytest.mark.parametrize('raw', ['', '   ', 'not json at all', '{"core": ['])
    def test_malformed_output_is_retried_once(self, raw):
        backend = ScriptedBackend(raw, make_phase1_dict())

        result = discover('Horse quality hay for sale', complete=backend, config=TEST_CONFIG)

        assert result.attempts == 2

    def test_fenced_json_is_accepted(self):
        backend = ScriptedBackend('```json\n' + json.dumps(make_phase1_dict()) + '\n```')

        result = discover('Horse quality hay for sale', complete=backend, config=TEST_CONFIG)

        assert result.attempts == 1

    def test_drift_retry_asks_for_intended_context(self):
        drifted = make_phase1_dict(core=10, outer=12, compression=5)
        for item in drifted['core']:
            item['overlap'] = 'The farmer is using hay to build a chapel for the goats.'
        backend = ScriptedBackend(drifted, make_phase1_dict())

        result = discover(
            'Horse quality hay for sale',
            complete=backend,
            config=TEST_CONFIG,
            drift_guard=DriftGuard.for_term('hay')
        )

        assert result.attempts == 2
        assert 'intended real-world context' in backend.developer_messages(1)

    def test_persistent_drift_is_terminal(self):
        drifted = make_phase1_dict(core=10, outer=12, compression=5)
        for item in drifted['outer']:
            item['overlap'] = 'The roofer is insulating the garage with hay bales.'
        backend = ScriptedBackend(drifted)

        with pytest.raises(GenerationError) as exc_info:
            discover(
                'Horse quality hay for sale',
                complete=backend,
                config=TEST_CONFIG,
                drift_guard=DriftGuard.for_term('hay')
            )

        assert isinstance(exc_info.value.cause, DriftError)
        assert len(backend.calls) == 2

    def test_backend_error_propagates_without_retry(self):
        backend = ScriptedBackend(BackendError('Generation request timed out'))

        with pytest.raises(BackendError):
            discover('Horse quality hay for sale', complete=backend, config=TEST_CONFIG)

        assert len(backend.calls) == 1


class TestBuildMessages:
    """Tests for Phase 1 prompt assembly."""

    def test_primary_has_no_corrective_directive(self):
        messages = build_messages('Horse quality hay for sale')

        assert len(messages) == 3
        assert '"core"' in messages[2]['content']
        assert '"outer"' in messages[2]['content']
        assert '"compression"' in messages[2]['content']

    def test_corrective_messages_quote_previous_error(self):
        error = ShapeError('Phase 1 "compression" too short (2); expected 5–10.', bucket='compression', found=2)

        messages = build_messages('Horse quality hay for sale', error)

        assert len(messages) == 5
        assert 'Phase 1 "compression" too short (2)' in messages[3]['content']
        assert 'valid JSON only' in messages[4]['content']
