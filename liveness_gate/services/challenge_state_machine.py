"""
Challenge State Machine for liveness verification sessions
"""
import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional, Tuple

from ..models.data_models import (
    STAGE_CHALLENGES,
    ChallengeKind,
    ChallengePolicy,
    DwellState,
    FrameObservation,
    SessionState,
)
from .dwell_accumulator import DwellAccumulator, DwellRule, check_elapsed, rule_for, settle_rule

logger = logging.getLogger(__name__)

# Challenges in the order the stages present them
REQUIRED_CHALLENGES: Tuple[ChallengeKind, ...] = (ChallengeKind.SMILE, ChallengeKind.BLINK)

# Stage reached when the current stage's dwell is satisfied
STAGE_ADVANCE: Dict[SessionState, SessionState] = {
    SessionState.AWAITING_FACE: SessionState.CHALLENGE_SMILE,
    SessionState.CHALLENGE_SMILE: SessionState.CHALLENGE_BLINK,
    SessionState.CHALLENGE_BLINK: SessionState.VERIFYING,
}

ALLOWED_TRANSITIONS: Dict[SessionState, FrozenSet[SessionState]] = {
    SessionState.IDLE: frozenset({SessionState.INITIALIZING}),
    SessionState.INITIALIZING: frozenset({SessionState.AWAITING_FACE, SessionState.FAILURE}),
    SessionState.AWAITING_FACE: frozenset({SessionState.CHALLENGE_SMILE, SessionState.FAILURE}),
    SessionState.CHALLENGE_SMILE: frozenset({SessionState.CHALLENGE_BLINK, SessionState.FAILURE}),
    SessionState.CHALLENGE_BLINK: frozenset({SessionState.VERIFYING, SessionState.FAILURE}),
    SessionState.VERIFYING: frozenset({SessionState.SUCCESS, SessionState.FAILURE}),
    SessionState.SUCCESS: frozenset(),
    SessionState.FAILURE: frozenset(),
}

# Human-readable instructions for each state
STATE_INSTRUCTIONS: Dict[SessionState, str] = {
    SessionState.IDLE: "Start verification",
    SessionState.INITIALIZING: "Initializing camera",
    SessionState.AWAITING_FACE: "Face the camera and keep your face centered",
    SessionState.CHALLENGE_SMILE: "Step 1/2: Smile showing your teeth until the bar fills",
    SessionState.CHALLENGE_BLINK: "Step 2/2: Close your eyes briefly",
    SessionState.VERIFYING: "Verifying",
    SessionState.SUCCESS: "Verification passed",
    SessionState.FAILURE: "Verification failed",
}


@dataclass(frozen=True)
class Step:
    """
    Result of applying one tick.

    Attributes:
        state: State after the tick
        dwell: Dwell state for ``state``; freshly zeroed when a stage was
            just entered, None when ``state`` does not accumulate
        completed: Challenge satisfied on this tick, if any
    """
    state: SessionState
    dwell: Optional[DwellState]
    completed: Optional[ChallengeKind] = None

    @property
    def entered_verifying(self) -> bool:
        return self.completed is not None and self.state == SessionState.VERIFYING


def can_transition(current: SessionState, target: SessionState) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def stage_rule(state: SessionState, policy: ChallengePolicy) -> Optional[DwellRule]:
    """Dwell rule for a state, or None when the state does not accumulate."""
    if state == SessionState.AWAITING_FACE:
        return settle_rule(policy)
    kind = STAGE_CHALLENGES.get(state)
    if kind is None:
        return None
    return rule_for(kind, policy)


def initial_dwell(state: SessionState, policy: ChallengePolicy) -> Optional[DwellState]:
    rule = stage_rule(state, policy)
    if rule is None:
        return None
    return DwellState(accumulated_ms=0.0, required_ms=rule.required_ms)


def transition(
    state: SessionState,
    dwell: Optional[DwellState],
    observation: FrameObservation,
    elapsed_ms: float,
    policy: ChallengePolicy,
) -> Step:
    """
    Apply one observation tick to a session's state.

    Pure: the inputs are not modified and the same inputs always give the
    same Step. Only AWAITING_FACE, CHALLENGE_SMILE and CHALLENGE_BLINK react
    to ticks; every other state is returned unchanged. At most one stage
    advance happens per tick.

    Args:
        state: Current session state
        dwell: Dwell state of the current stage (None starts from zero)
        observation: Scores for the frame
        elapsed_ms: Milliseconds since the previous tick
        policy: Thresholds and dwell requirements

    Returns:
        Step: Next state, its dwell state and the completed challenge

    Raises:
        ValueError: If elapsed_ms is negative or not finite
    """
    check_elapsed(elapsed_ms)

    rule = stage_rule(state, policy)
    if rule is None:
        return Step(state=state, dwell=dwell)

    accumulator = DwellAccumulator(rule, dwell)
    if not accumulator.tick(observation, elapsed_ms):
        return Step(state=state, dwell=accumulator.snapshot())

    accumulator.reset()
    next_state = STAGE_ADVANCE[state]
    logger.debug(f"{rule.name} dwell satisfied: {state.value} -> {next_state.value}")
    return Step(
        state=next_state,
        dwell=initial_dwell(next_state, policy),
        completed=STAGE_CHALLENGES.get(state),
    )
