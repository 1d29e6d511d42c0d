"""
Session Controller: owns verification sessions and drives their state machines
"""
import asyncio
import logging
import time
from typing import Any, Callable, Dict, Optional, Tuple

import numpy as np

from ..exceptions import InvalidSessionError, SetupFailureError
from ..models.data_models import (
    ChallengeKind,
    ChallengePolicy,
    FailureReason,
    FrameObservation,
    Session,
    SessionState,
)
from .challenge_state_machine import (
    STATE_INSTRUCTIONS,
    Step,
    can_transition,
    initial_dwell,
    transition,
)
from .dwell_accumulator import check_elapsed
from .geometry_scorer import GeometryScorer, LandmarkInput
from .trust_authority import generate_session_id
from .verification_handoff import VerificationHandoff

logger = logging.getLogger(__name__)

# States bounded by the per-stage timeout
TIMED_STATES = frozenset({
    SessionState.AWAITING_FACE,
    SessionState.CHALLENGE_SMILE,
    SessionState.CHALLENGE_BLINK,
    SessionState.VERIFYING,
})


class SessionController:
    """
    Composition root for liveness verification.

    Owns every active Session, applies observation ticks to them one at a
    time under a per-session lock and issues the verification handoff.
    Sessions share nothing mutable except the immutable policy, so many can
    progress concurrently; a session waiting on the trust authority never
    blocks another.
    """

    def __init__(
        self,
        handoff: VerificationHandoff,
        policy: Optional[ChallengePolicy] = None,
        tracker_factory: Optional[Callable[[], Any]] = None,
        session_id_factory: Callable[[], str] = generate_session_id,
        stage_timeout_seconds: float = 30.0,
        max_session_seconds: float = 120.0,
        tracker_ready_timeout_seconds: float = 10.0,
        terminal_retention_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Args:
            handoff: Verification handoff to the trust authority
            policy: Thresholds and dwell requirements
            tracker_factory: Builds one landmark tracker per session; None
                when observations are scored outside the engine
            session_id_factory: Issues unguessable session identifiers
            stage_timeout_seconds: Budget for each timed stage
            max_session_seconds: Budget for a whole session
            tracker_ready_timeout_seconds: Bound on the tracker readiness wait
            terminal_retention_seconds: How long finished sessions stay queryable
            clock: Monotonic clock in seconds
        """
        self.handoff = handoff
        self.policy = policy or ChallengePolicy()
        self.scorer = GeometryScorer(self.policy)
        self.tracker_factory = tracker_factory
        self.session_id_factory = session_id_factory
        self.stage_timeout_seconds = stage_timeout_seconds
        self.max_session_seconds = max_session_seconds
        self.tracker_ready_timeout_seconds = tracker_ready_timeout_seconds
        self.terminal_retention_seconds = terminal_retention_seconds
        self.clock = clock
        self._sessions: Dict[str, Session] = {}

    # Session API

    async def start_session(self) -> str:
        """
        Create a session and bring it to AWAITING_FACE.

        When a tracker factory is configured the session's tracker must
        report readiness within the configured bound; otherwise the session
        ends in FAILURE with reason SETUP_FAILURE. The id is returned in
        both cases so the caller can read the outcome.

        Returns:
            str: The new session identifier
        """
        session_id = self.session_id_factory()
        if session_id in self._sessions:
            raise RuntimeError(f"Session id collision for {session_id}")

        now = self.clock()
        session = Session(session_id=session_id, started_at=now, stage_entered_at=now)
        self._sessions[session_id] = session
        logger.info(f"Session {session_id} created")

        async with session.lock:
            self._enter(session, SessionState.INITIALIZING)

        tracker = None
        try:
            if self.tracker_factory is not None:
                tracker = self.tracker_factory()
                await tracker.initialize(self.tracker_ready_timeout_seconds)
        except SetupFailureError as e:
            logger.warning(f"Session {session_id} setup failed: {e}")
            await self._abort_setup(session, tracker)
            return session_id
        except Exception:
            logger.exception(f"Unexpected error while setting up session {session_id}")
            await self._abort_setup(session, tracker)
            return session_id

        async with session.lock:
            if session.state != SessionState.INITIALIZING:
                # Cancelled while the tracker was loading
                if tracker is not None:
                    tracker.close()
                return session_id
            session.tracker = tracker
            self._enter(session, SessionState.AWAITING_FACE)

        return session_id

    async def feed_observation(
        self,
        session_id: str,
        observation: FrameObservation,
        elapsed_ms: float
    ) -> SessionState:
        """
        Apply one observation tick to a session.

        Args:
            session_id: Target session
            observation: Scores for the latest frame
            elapsed_ms: Milliseconds since the previous tick

        Returns:
            SessionState: State after the tick

        Raises:
            InvalidSessionError: If the session is unknown or terminal
            ValueError: If elapsed_ms is negative or not finite
        """
        check_elapsed(elapsed_ms)
        session = self._require_active(session_id)
        async with session.lock:
            self._ensure_active(session)
            return self._tick(session, observation, elapsed_ms)

    async def feed_landmarks(
        self,
        session_id: str,
        landmarks: LandmarkInput,
        elapsed_ms: float
    ) -> Tuple[SessionState, FrameObservation]:
        """
        Score a landmark set (None for "no face") and apply it as a tick.

        Returns:
            Tuple of the state after the tick and the derived observation
        """
        observation = self.scorer.score(landmarks)
        state = await self.feed_observation(session_id, observation, elapsed_ms)
        return state, observation

    async def feed_frame(
        self,
        session_id: str,
        frame: np.ndarray,
        elapsed_ms: float
    ) -> Tuple[SessionState, FrameObservation]:
        """
        Run the session's own tracker on a BGR frame and apply the result.

        Detection happens under the session lock so frames of one session
        are processed strictly in order.

        Raises:
            InvalidSessionError: If the session is unknown or terminal
            SetupFailureError: If the session has no ready tracker
        """
        check_elapsed(elapsed_ms)
        session = self._require_active(session_id)
        async with session.lock:
            self._ensure_active(session)
            if session.tracker is None:
                raise SetupFailureError(f"Session {session_id} has no landmark tracker")
            loop = asyncio.get_running_loop()
            landmarks = await loop.run_in_executor(None, session.tracker.detect, frame)
            # The lock is held across detection, so the session cannot have changed state
            observation = self.scorer.score(landmarks)
            return self._tick(session, observation, elapsed_ms), observation

    async def cancel_session(self, session_id: str) -> None:
        """
        Force a non-terminal session into FAILURE.

        An outstanding verification call is left to finish; its result is
        discarded.

        Raises:
            InvalidSessionError: If the session is unknown or terminal
        """
        session = self._require_active(session_id)
        async with session.lock:
            self._ensure_active(session)
            self._fail(session, FailureReason.CANCELLED)

    def get_state(self, session_id: str) -> SessionState:
        """
        Current state of a session, terminal sessions included.

        Raises:
            InvalidSessionError: If the session is unknown or already purged
        """
        return self.get_session(session_id).state

    def get_session(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise InvalidSessionError(session_id, unknown=True)
        return session

    def describe(self, session_id: str) -> Dict[str, Any]:
        """Status view of a session for the render layer."""
        session = self.get_session(session_id)
        observation = session.last_observation or FrameObservation.no_face()
        return {
            "session_id": session.session_id,
            "state": session.state.value,
            "reason": session.reason.value if session.reason else None,
            "instruction": STATE_INSTRUCTIONS[session.state],
            "completed": [kind.value for kind in session.completed],
            "progress": session.active_dwell.progress if session.active_dwell else 0.0,
            "face_detected": observation.face_detected,
            "smile_score": observation.smile_score,
            "blink_score": observation.blink_score,
        }

    async def wait_for_outcome(self, session_id: str) -> SessionState:
        """
        Wait for an outstanding verification call to resolve.

        Returns immediately when no call was issued.
        """
        session = self.get_session(session_id)
        task = session.verification_task
        if task is not None and not task.done():
            await asyncio.shield(task)
        return session.state

    @property
    def active_session_count(self) -> int:
        return sum(1 for session in self._sessions.values() if not session.state.is_terminal)

    async def expire_stale_sessions(self) -> int:
        """
        Enforce timeouts and drop finished sessions past their retention.

        Returns:
            int: Number of sessions moved to FAILURE by this sweep
        """
        now = self.clock()
        expired = 0
        for session in list(self._sessions.values()):
            if session.state.is_terminal:
                if session.ended_at is not None and now - session.ended_at > self.terminal_retention_seconds:
                    del self._sessions[session.session_id]
                    logger.debug(f"Purged session {session.session_id}")
                continue
            async with session.lock:
                if self._expire_if_overdue(session):
                    expired += 1
        return expired

    async def shutdown(self) -> None:
        """Release trackers and abandon outstanding verification calls."""
        for session in list(self._sessions.values()):
            if session.verification_task is not None and not session.verification_task.done():
                session.verification_task.cancel()
            self._release_tracker(session)
        self._sessions.clear()

    # Internals

    def _require_active(self, session_id: str) -> Session:
        session = self.get_session(session_id)
        self._ensure_active(session)
        return session

    @staticmethod
    def _ensure_active(session: Session) -> None:
        if session.state.is_terminal:
            raise InvalidSessionError(session.session_id, unknown=False)

    async def _abort_setup(self, session: Session, tracker) -> None:
        if tracker is not None:
            tracker.close()
        async with session.lock:
            if session.state == SessionState.INITIALIZING:
                self._fail(session, FailureReason.SETUP_FAILURE)

    def _tick(self, session: Session, observation: FrameObservation, elapsed_ms: float) -> SessionState:
        session.last_observation = observation
        if self._expire_if_overdue(session):
            return session.state

        step = transition(session.state, session.active_dwell, observation, elapsed_ms, self.policy)
        logger.debug(
            f"Session {session.session_id} tick: state={session.state.value} "
            f"face={observation.face_detected} smile={observation.smile_score:.2f} "
            f"blink={observation.blink_score:.2f} dwell={step.dwell}"
        )
        self._apply(session, step, observation)
        return session.state

    def _apply(self, session: Session, step: Step, observation: FrameObservation) -> None:
        if step.state == session.state:
            session.active_dwell = step.dwell
            return

        if step.completed is not None:
            session.completed.append(step.completed)
            session.proof[step.completed] = (
                observation.smile_score if step.completed == ChallengeKind.SMILE
                else observation.blink_score
            )
        self._enter(session, step.state, dwell=step.dwell)

        if step.entered_verifying:
            self._start_verification(session)

    def _enter(self, session: Session, target: SessionState, dwell=None) -> None:
        if not can_transition(session.state, target):
            raise RuntimeError(
                f"Illegal transition {session.state.value} -> {target.value} "
                f"for session {session.session_id}"
            )
        logger.info(f"Session {session.session_id}: {session.state.value} -> {target.value}")
        session.state = target
        session.stage_entered_at = self.clock()
        session.active_dwell = dwell if dwell is not None else initial_dwell(target, self.policy)
        if target.is_terminal:
            session.ended_at = session.stage_entered_at
            session.active_dwell = None
            self._release_tracker(session)

    def _fail(self, session: Session, reason: FailureReason) -> None:
        session.reason = reason
        self._enter(session, SessionState.FAILURE)
        logger.warning(f"Session {session.session_id} failed: {reason.value}")

    def _expire_if_overdue(self, session: Session) -> bool:
        if session.state.is_terminal:
            return False
        now = self.clock()
        overdue = now - session.started_at > self.max_session_seconds
        if session.state in TIMED_STATES and now - session.stage_entered_at > self.stage_timeout_seconds:
            overdue = True
        if overdue:
            logger.warning(
                f"Session {session.session_id} timed out in {session.state.value} "
                f"after {now - session.stage_entered_at:.1f}s"
            )
            self._fail(session, FailureReason.TIMEOUT)
        return overdue

    def _start_verification(self, session: Session) -> None:
        # Entry into VERIFYING happens once per session; guard anyway
        if session.verification_task is not None:
            return
        evidence = self.handoff.build_evidence(session.completed, session.proof)
        session.verification_task = asyncio.create_task(self._run_verification(session, evidence))

    async def _run_verification(self, session: Session, evidence) -> None:
        outcome = await self.handoff.verify(session.session_id, evidence)
        async with session.lock:
            if session.state != SessionState.VERIFYING:
                logger.info(
                    f"Discarding late verification result for session {session.session_id} "
                    f"(state={session.state.value})"
                )
                return
            if outcome.accepted:
                self._enter(session, SessionState.SUCCESS)
            else:
                self._fail(session, outcome.reason or FailureReason.VERIFICATION_REJECTED)

    @staticmethod
    def _release_tracker(session: Session) -> None:
        if session.tracker is not None:
            session.tracker.close()
            session.tracker = None
