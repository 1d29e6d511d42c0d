"""
Unit tests for the Challenge State Machine transition function
"""
import math

import pytest
from hypothesis import given, strategies as st, settings

from liveness_gate.models.data_models import (
    ChallengeKind,
    ChallengePolicy,
    DwellState,
    FrameObservation,
    SessionState,
)
from liveness_gate.services.challenge_state_machine import (
    ALLOWED_TRANSITIONS,
    STATE_INSTRUCTIONS,
    can_transition,
    initial_dwell,
    transition,
)
from liveness_gate.services.dwell_accumulator import DwellAccumulator

POLICY = ChallengePolicy()

SMILING = FrameObservation(face_detected=True, smile_score=0.9, is_smile=True)
BLINKING = FrameObservation(face_detected=True, blink_score=0.8, is_blink=True)
NEUTRAL = FrameObservation(face_detected=True, smile_score=0.2)
NO_FACE = FrameObservation.no_face()
EVERYTHING = FrameObservation(
    face_detected=True, smile_score=1.0, blink_score=1.0, is_smile=True, is_blink=True
)


def run(state, ticks, elapsed_ms=100, dwell=None):
    """Apply a sequence of observations; returns the list of steps."""
    steps = []
    for observation in ticks:
        step = transition(state, dwell, observation, elapsed_ms, POLICY)
        steps.append(step)
        state, dwell = step.state, step.dwell
    return steps


class TestAwaitingFace:
    """Face settle before the first challenge"""

    def test_settle_completes_on_sixth_tick(self):
        steps = run(SessionState.AWAITING_FACE, [NEUTRAL] * 6)

        assert [s.state for s in steps[:5]] == [SessionState.AWAITING_FACE] * 5
        assert steps[5].state == SessionState.CHALLENGE_SMILE
        assert steps[5].completed is None
        assert steps[5].dwell == DwellState(accumulated_ms=0.0, required_ms=1000.0)

    def test_losing_face_restarts_settle(self):
        steps = run(SessionState.AWAITING_FACE, [NEUTRAL] * 4 + [NO_FACE] + [NEUTRAL] * 5)
        assert all(s.state == SessionState.AWAITING_FACE for s in steps)

    def test_smile_during_settle_does_not_skip_stage(self):
        steps = run(SessionState.AWAITING_FACE, [EVERYTHING] * 6)
        assert steps[-1].state == SessionState.CHALLENGE_SMILE


class TestChallengeStages:
    """Smile then blink"""

    def test_smile_completes_into_blink_stage(self):
        steps = run(SessionState.CHALLENGE_SMILE, [SMILING] * 11)

        final = steps[-1]
        assert final.state == SessionState.CHALLENGE_BLINK
        assert final.completed == ChallengeKind.SMILE
        assert final.dwell == DwellState(accumulated_ms=0.0, required_ms=300.0)

    def test_blink_during_smile_stage_is_ignored(self):
        steps = run(SessionState.CHALLENGE_SMILE, [BLINKING] * 20)
        assert steps[-1].state == SessionState.CHALLENGE_SMILE
        assert steps[-1].dwell.accumulated_ms == 0

    def test_blink_completes_into_verifying(self):
        steps = run(SessionState.CHALLENGE_BLINK, [BLINKING] * 4)

        final = steps[-1]
        assert final.state == SessionState.VERIFYING
        assert final.completed == ChallengeKind.BLINK
        assert final.dwell is None
        assert final.entered_verifying is True

    def test_at_most_one_advance_per_tick(self):
        """A huge elapsed value still moves only one stage"""
        step = transition(SessionState.CHALLENGE_SMILE, None, EVERYTHING, 10_000, POLICY)
        assert step.state == SessionState.CHALLENGE_BLINK

    def test_missing_dwell_starts_from_zero(self):
        step = transition(SessionState.CHALLENGE_BLINK, None, BLINKING, 100, POLICY)
        assert step.dwell.accumulated_ms == 100

    def test_stage_advance_only_on_satisfied_tick(self):
        steps = run(SessionState.CHALLENGE_SMILE, [SMILING] * 10)
        assert all(s.completed is None for s in steps)


class TestInertStates:
    """States that ignore observation ticks"""

    @pytest.mark.parametrize("state", [
        SessionState.IDLE,
        SessionState.INITIALIZING,
        SessionState.VERIFYING,
        SessionState.SUCCESS,
        SessionState.FAILURE,
    ])
    @pytest.mark.parametrize("observation", [SMILING, BLINKING, NO_FACE, EVERYTHING])
    def test_tick_leaves_state_unchanged(self, state, observation):
        step = transition(state, None, observation, 5000, POLICY)
        assert step.state == state
        assert step.completed is None
        assert step.entered_verifying is False


class TestTransitionContract:
    def test_negative_elapsed_rejected(self):
        with pytest.raises(ValueError):
            transition(SessionState.CHALLENGE_SMILE, None, SMILING, -5, POLICY)

    @pytest.mark.parametrize("elapsed", [math.inf, math.nan])
    def test_non_finite_elapsed_rejected(self, elapsed):
        with pytest.raises(ValueError):
            transition(SessionState.AWAITING_FACE, None, NEUTRAL, elapsed, POLICY)

    def test_inputs_not_modified(self):
        dwell = DwellState(accumulated_ms=200.0, required_ms=1000.0)
        transition(SessionState.CHALLENGE_SMILE, dwell, SMILING, 100, POLICY)
        assert dwell.accumulated_ms == 200.0

    def test_same_inputs_same_step(self):
        dwell = DwellState(accumulated_ms=950.0, required_ms=1000.0)
        first = transition(SessionState.CHALLENGE_SMILE, dwell, SMILING, 100, POLICY)
        second = transition(SessionState.CHALLENGE_SMILE, dwell, SMILING, 100, POLICY)
        assert first == second

    def test_initial_dwell(self):
        assert initial_dwell(SessionState.AWAITING_FACE, POLICY).required_ms == 500.0
        assert initial_dwell(SessionState.VERIFYING, POLICY) is None

    @given(ticks=st.lists(
        st.tuples(
            st.sampled_from([SMILING, BLINKING, NEUTRAL, NO_FACE, EVERYTHING]),
            st.floats(min_value=0, max_value=400)
        ),
        max_size=60
    ))
    @settings(max_examples=100)
    def test_smile_stage_exits_only_when_smile_dwell_satisfied(self, ticks):
        """Property: CHALLENGE_SMILE -> CHALLENGE_BLINK exactly on the tick the smile dwell is satisfied"""
        reference = DwellAccumulator.for_challenge(ChallengeKind.SMILE, POLICY)
        state, dwell = SessionState.CHALLENGE_SMILE, None
        for observation, elapsed in ticks:
            satisfied = reference.tick(observation, elapsed)
            step = transition(state, dwell, observation, elapsed, POLICY)
            if satisfied:
                assert step.state == SessionState.CHALLENGE_BLINK
                assert step.completed == ChallengeKind.SMILE
                return
            assert step.state == SessionState.CHALLENGE_SMILE
            state, dwell = step.state, step.dwell


class TestTransitionTable:
    def test_terminal_states_have_no_exits(self):
        assert ALLOWED_TRANSITIONS[SessionState.SUCCESS] == frozenset()
        assert ALLOWED_TRANSITIONS[SessionState.FAILURE] == frozenset()

    def test_no_stage_can_be_skipped(self):
        assert not can_transition(SessionState.AWAITING_FACE, SessionState.CHALLENGE_BLINK)
        assert not can_transition(SessionState.CHALLENGE_SMILE, SessionState.VERIFYING)
        assert not can_transition(SessionState.IDLE, SessionState.AWAITING_FACE)

    def test_success_only_from_verifying(self):
        sources = [s for s in SessionState if can_transition(s, SessionState.SUCCESS)]
        assert sources == [SessionState.VERIFYING]

    def test_every_active_state_can_fail(self):
        for state in SessionState:
            if state not in (SessionState.IDLE, SessionState.SUCCESS, SessionState.FAILURE):
                assert can_transition(state, SessionState.FAILURE)

    def test_every_state_has_an_instruction(self):
        assert set(STATE_INSTRUCTIONS) == set(SessionState)
