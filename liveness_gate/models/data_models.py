"""
Data models for the liveness verification engine
"""
import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional, Tuple


class Landmark(NamedTuple):
    """One tracked facial keypoint in normalized image coordinates."""
    x: float
    y: float
    z: float = 0.0


class ChallengeKind(str, Enum):
    """Behavioral challenges a subject must perform"""
    SMILE = "smile"
    BLINK = "blink"


class SessionState(str, Enum):
    """Lifecycle states of a verification session"""
    IDLE = "idle"
    INITIALIZING = "initializing"
    AWAITING_FACE = "awaiting_face"
    CHALLENGE_SMILE = "challenge_smile"
    CHALLENGE_BLINK = "challenge_blink"
    VERIFYING = "verifying"
    SUCCESS = "success"
    FAILURE = "failure"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.SUCCESS, SessionState.FAILURE)


class FailureReason(str, Enum):
    """Reason codes attached to the FAILURE state"""
    SETUP_FAILURE = "setup_failure"
    VERIFICATION_REJECTED = "verification_rejected"
    VERIFICATION_UNREACHABLE = "verification_unreachable"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


class FeedbackType(str, Enum):
    """Message types sent to the render layer"""
    STATE_UPDATE = "state_update"
    VERIFICATION_RESULT = "verification_result"
    ERROR = "error"


@dataclass(frozen=True)
class FrameObservation:
    """
    Scores derived from a single frame's landmarks.

    Attributes:
        face_detected: Whether a complete face was present
        smile_score: Continuous smile confidence in [0, 1]
        blink_score: Continuous blink confidence in [0, 1]
        is_smile: Smile ratio crossed the trigger threshold
        is_blink: Eye-aspect ratio fell below the trigger threshold
    """
    face_detected: bool
    smile_score: float = 0.0
    blink_score: float = 0.0
    is_smile: bool = False
    is_blink: bool = False

    @classmethod
    def no_face(cls) -> "FrameObservation":
        return cls(face_detected=False)


@dataclass(frozen=True)
class DwellState:
    """Accumulated dwell time for the active stage."""
    accumulated_ms: float = 0.0
    required_ms: float = 0.0

    @property
    def progress(self) -> float:
        if self.required_ms <= 0:
            return 0.0
        return min(self.accumulated_ms / self.required_ms, 1.0)


@dataclass(frozen=True)
class ChallengePolicy:
    """
    Immutable policy constants shared by every session.

    Defaults reproduce the reference thresholds: smile scoring starts at a
    ratio of 0.45 and saturates at 0.65, a smile only counts above 0.58, a
    blink counts below an eye-aspect ratio of 0.18.
    """
    smile_low_threshold: float = 0.45
    smile_gain: float = 5.0
    smile_trigger_ratio: float = 0.58
    blink_open_threshold: float = 0.25
    blink_gain: float = 5.0
    blink_trigger_ratio: float = 0.18
    smile_dwell_ms: float = 1000.0
    smile_decay_rate: float = 2.0
    blink_dwell_ms: float = 300.0
    face_settle_ms: float = 500.0

    @classmethod
    def from_config(cls, config) -> "ChallengePolicy":
        return cls(
            smile_low_threshold=config.SMILE_LOW_THRESHOLD,
            smile_gain=config.SMILE_GAIN,
            smile_trigger_ratio=config.SMILE_TRIGGER_RATIO,
            blink_open_threshold=config.BLINK_OPEN_THRESHOLD,
            blink_gain=config.BLINK_GAIN,
            blink_trigger_ratio=config.BLINK_TRIGGER_RATIO,
            smile_dwell_ms=config.SMILE_DWELL_MS,
            smile_decay_rate=config.SMILE_DECAY_RATE,
            blink_dwell_ms=config.BLINK_DWELL_MS,
            face_settle_ms=config.FACE_SETTLE_MS,
        )


@dataclass(frozen=True)
class Evidence:
    """
    Challenge-completion evidence submitted to the trust authority.

    Attributes:
        timestamp: Submission time in milliseconds since the epoch
        challenges: Completed challenges in the order they were satisfied
        smile_score: Smile score observed on the tick that satisfied SMILE
        blink_score: Blink score observed on the tick that satisfied BLINK
    """
    timestamp: int
    challenges: Tuple[ChallengeKind, ...]
    smile_score: float
    blink_score: float

    def to_payload(self, session_id: str) -> Dict[str, Any]:
        """Serialize to the authority wire format."""
        return {
            "sessionId": session_id,
            "timestamp": self.timestamp,
            "challenges": [kind.value for kind in self.challenges],
            "proof": {
                "smileScore": self.smile_score,
                "blinkScore": self.blink_score,
            },
        }


@dataclass(frozen=True)
class VerificationOutcome:
    """Result of a verification handoff."""
    accepted: bool
    reason: Optional[FailureReason] = None


@dataclass
class VerificationFeedback:
    """Feedback message for the capture/render layer."""
    type: FeedbackType
    message: str
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Session:
    """
    One liveness verification attempt.

    Only the session controller mutates a Session, and only while holding
    its lock. ``active_dwell`` is the dwell state of the current stage
    (the face settle delay included) and is None in states that do not
    accumulate. ``started_at`` and ``stage_entered_at`` are readings of the
    controller's monotonic clock.
    """
    session_id: str
    created_at: float = field(default_factory=time.time)
    state: SessionState = SessionState.IDLE
    reason: Optional[FailureReason] = None
    stage_entered_at: float = 0.0
    started_at: float = 0.0
    ended_at: Optional[float] = None
    active_dwell: Optional[DwellState] = None
    completed: List[ChallengeKind] = field(default_factory=list)
    proof: Dict[ChallengeKind, float] = field(default_factory=dict)
    last_observation: Optional[FrameObservation] = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)
    verification_task: Optional[asyncio.Task] = field(default=None, repr=False, compare=False)
    tracker: Any = field(default=None, repr=False, compare=False)

    @property
    def dwell(self) -> Dict[ChallengeKind, DwellState]:
        """Dwell state keyed by the challenge currently accumulating."""
        kind = STAGE_CHALLENGES.get(self.state)
        if kind is None or self.active_dwell is None:
            return {}
        return {kind: self.active_dwell}


STAGE_CHALLENGES: Dict[SessionState, ChallengeKind] = {
    SessionState.CHALLENGE_SMILE: ChallengeKind.SMILE,
    SessionState.CHALLENGE_BLINK: ChallengeKind.BLINK,
}
