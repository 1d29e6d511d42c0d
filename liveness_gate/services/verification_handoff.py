"""
Verification Handoff: packages challenge evidence for the trust authority
"""
import asyncio
import logging
import time
from typing import Dict, Optional, Sequence

from ..exceptions import VerificationUnreachableError
from ..models.data_models import ChallengeKind, Evidence, FailureReason, VerificationOutcome
from .trust_authority import TrustAuthority

logger = logging.getLogger(__name__)


class VerificationHandoff:
    """
    Terminal step of a session: submits evidence and awaits the decision.

    The engine's own scores are informative only. Whatever goes wrong on the
    way to a decision (rejection, transport error, timeout) is reported as a
    rejected outcome with a reason; there is no retry here.
    """

    def __init__(self, authority: TrustAuthority, timeout_seconds: float = 10.0):
        self.authority = authority
        self.timeout_seconds = timeout_seconds

    @staticmethod
    def build_evidence(
        completed: Sequence[ChallengeKind],
        proof: Dict[ChallengeKind, float],
        timestamp_ms: Optional[int] = None
    ) -> Evidence:
        """
        Assemble evidence from a session's completed challenges.

        Args:
            completed: Challenges in the order they were satisfied
            proof: Score observed on the tick that satisfied each challenge
            timestamp_ms: Submission time, defaults to now

        Returns:
            Evidence ready for submission
        """
        if timestamp_ms is None:
            timestamp_ms = int(time.time() * 1000)
        return Evidence(
            timestamp=timestamp_ms,
            challenges=tuple(completed),
            smile_score=proof.get(ChallengeKind.SMILE, 0.0),
            blink_score=proof.get(ChallengeKind.BLINK, 0.0)
        )

    async def verify(self, session_id: str, evidence: Evidence) -> VerificationOutcome:
        """
        Submit evidence and wait for the authority's decision.

        Args:
            session_id: Identifier bound to the evidence
            evidence: Completed challenges and proof metrics

        Returns:
            VerificationOutcome: accepted, or rejected with a FailureReason
        """
        logger.info(
            f"Submitting evidence for session {session_id}: "
            f"challenges={[kind.value for kind in evidence.challenges]}"
        )
        try:
            accepted = await asyncio.wait_for(
                self.authority.verify(session_id, evidence),
                timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.warning(f"Trust authority timed out after {self.timeout_seconds}s for session {session_id}")
            return VerificationOutcome(accepted=False, reason=FailureReason.TIMEOUT)
        except VerificationUnreachableError as e:
            logger.warning(f"Trust authority unreachable for session {session_id}: {e}")
            return VerificationOutcome(accepted=False, reason=FailureReason.VERIFICATION_UNREACHABLE)
        except Exception:
            logger.exception(f"Unexpected trust authority error for session {session_id}")
            return VerificationOutcome(accepted=False, reason=FailureReason.VERIFICATION_UNREACHABLE)

        if accepted:
            logger.info(f"Session {session_id} accepted by trust authority")
            return VerificationOutcome(accepted=True)

        logger.warning(f"Session {session_id} rejected by trust authority")
        return VerificationOutcome(accepted=False, reason=FailureReason.VERIFICATION_REJECTED)
