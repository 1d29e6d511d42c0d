"""
Dwell Accumulator: integrates per-frame observations into "satisfied" edges
"""
import math
from dataclasses import dataclass
from typing import Callable, Optional

from ..models.data_models import ChallengeKind, ChallengePolicy, DwellState, FrameObservation


@dataclass(frozen=True)
class DwellRule:
    """
    How one stage accumulates dwell time.

    Attributes:
        name: Label used in logs
        required_ms: Accumulated time that must be exceeded
        decay_rate: Multiple of elapsed time removed on an unmet tick, or
            None to reset to zero on any unmet tick
        condition: Predicate deciding whether a tick counts
    """
    name: str
    required_ms: float
    decay_rate: Optional[float]
    condition: Callable[[FrameObservation], bool]


def _smiling(observation: FrameObservation) -> bool:
    return observation.face_detected and observation.is_smile


def _blinking(observation: FrameObservation) -> bool:
    return observation.face_detected and observation.is_blink


def _face_present(observation: FrameObservation) -> bool:
    return observation.face_detected


def rule_for(kind: ChallengeKind, policy: ChallengePolicy) -> DwellRule:
    """
    Dwell rule for a challenge.

    A smile is a held pose and tolerates brief tracking noise, so unmet
    ticks decay progress. A blink must be sustained without interruption.
    """
    if kind == ChallengeKind.SMILE:
        return DwellRule("smile", policy.smile_dwell_ms, policy.smile_decay_rate, _smiling)
    if kind == ChallengeKind.BLINK:
        return DwellRule("blink", policy.blink_dwell_ms, None, _blinking)
    raise ValueError(f"Unknown challenge kind: {kind}")


def settle_rule(policy: ChallengePolicy) -> DwellRule:
    """Face must stay detected for the settle delay before challenges start."""
    return DwellRule("face_settle", policy.face_settle_ms, None, _face_present)


def advance(state: DwellState, rule: DwellRule, observation: FrameObservation, elapsed_ms: float) -> DwellState:
    """Pure accumulation step; returns the next dwell state."""
    if rule.condition(observation):
        accumulated = state.accumulated_ms + elapsed_ms
    elif rule.decay_rate is None:
        accumulated = 0.0
    else:
        accumulated = max(0.0, state.accumulated_ms - rule.decay_rate * elapsed_ms)
    return DwellState(accumulated_ms=accumulated, required_ms=rule.required_ms)


def is_satisfied(state: DwellState) -> bool:
    return state.accumulated_ms > state.required_ms


def check_elapsed(elapsed_ms: float) -> None:
    """Reject tick durations that are negative, infinite or NaN."""
    if not math.isfinite(elapsed_ms) or elapsed_ms < 0:
        raise ValueError(f"elapsed_ms must be a finite non-negative number, got {elapsed_ms}")


class DwellAccumulator:
    """
    Per-stage dwell timer.

    Example:
        >>> acc = DwellAccumulator(rule_for(ChallengeKind.BLINK, ChallengePolicy()))
        >>> acc.tick(FrameObservation(face_detected=True, is_blink=True), 200)
        False
        >>> acc.tick(FrameObservation(face_detected=True, is_blink=True), 200)
        True
    """

    def __init__(self, rule: DwellRule, state: Optional[DwellState] = None):
        self.rule = rule
        self._state = state or DwellState(accumulated_ms=0.0, required_ms=rule.required_ms)

    @classmethod
    def for_challenge(cls, kind: ChallengeKind, policy: ChallengePolicy) -> "DwellAccumulator":
        return cls(rule_for(kind, policy))

    @property
    def accumulated_ms(self) -> float:
        return self._state.accumulated_ms

    @property
    def satisfied(self) -> bool:
        return is_satisfied(self._state)

    def tick(self, observation: FrameObservation, elapsed_ms: float) -> bool:
        """
        Apply one observation.

        Args:
            observation: Scores for the current frame
            elapsed_ms: Time since the previous tick, finite and non-negative

        Returns:
            bool: True once accumulated time exceeds the required dwell

        Raises:
            ValueError: If elapsed_ms is negative or not finite
        """
        check_elapsed(elapsed_ms)
        self._state = advance(self._state, self.rule, observation, elapsed_ms)
        return self.satisfied

    def reset(self) -> None:
        self._state = DwellState(accumulated_ms=0.0, required_ms=self.rule.required_ms)

    def snapshot(self) -> DwellState:
        return self._state
