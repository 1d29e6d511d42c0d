"""
Trust authority clients

The trust authority makes the final accept/reject decision from submitted
evidence. HttpTrustAuthority talks to a remote verification backend;
LocalTrustAuthority is an in-process stand-in for development that applies
the session, replay and timestamp checks a backend is expected to perform.
"""
import logging
import secrets
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional

import httpx

from ..exceptions import VerificationUnreachableError
from ..models.data_models import Evidence
from .challenge_state_machine import REQUIRED_CHALLENGES

logger = logging.getLogger(__name__)


def generate_session_id() -> str:
    """
    Generate an unguessable session identifier.

    Uses secrets module for cryptographically secure random generation.

    Returns:
        str: A 32-character hexadecimal identifier (128 bits)
    """
    return secrets.token_hex(16)


class TrustAuthority(ABC):
    """Interface for the external accept/reject decision."""

    @abstractmethod
    async def verify(self, session_id: str, evidence: Evidence) -> bool:
        """
        Decide whether the evidence proves liveness for the session.

        Returns:
            bool: True to accept, False to reject

        Raises:
            VerificationUnreachableError: If the decision could not be obtained
        """

    async def close(self) -> None:
        """Release any resources held by the client"""


class HttpTrustAuthority(TrustAuthority):
    """
    Submits evidence to a remote verification backend.

    The backend receives the JSON payload produced by Evidence.to_payload
    and answers with ``{"accepted": true|false}``.
    """

    VERIFY_PATH = "/api/liveness/verify"

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 10.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.base_url = base_url
        self.client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout_seconds)

    async def verify(self, session_id: str, evidence: Evidence) -> bool:
        try:
            response = await self.client.post(
                self.VERIFY_PATH,
                json=evidence.to_payload(session_id)
            )
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as e:
            raise VerificationUnreachableError(f"Trust authority request failed: {e}") from e
        except ValueError as e:
            raise VerificationUnreachableError(f"Trust authority returned invalid JSON: {e}") from e

        accepted = body.get("accepted") if isinstance(body, dict) else None
        if not isinstance(accepted, bool):
            raise VerificationUnreachableError(f"Malformed trust authority response: {body!r}")
        return accepted

    async def close(self) -> None:
        """Close the client"""
        await self.client.aclose()


class LocalTrustAuthority(TrustAuthority):
    """
    In-process trust authority.

    Issues session identifiers and accepts evidence only when:
    - the session id was issued here and has not been verified before
    - the submission timestamp is within the allowed clock skew
    - the challenges were completed in the required order
    - every proof score lies in [0, 1]
    """

    def __init__(
        self,
        max_skew_seconds: float = 30.0,
        issued_ttl_seconds: float = 3600.0,
        clock: Callable[[], float] = time.time
    ):
        self.max_skew_seconds = max_skew_seconds
        self.issued_ttl_seconds = issued_ttl_seconds
        self.clock = clock
        self._issued: Dict[str, float] = {}
        self._consumed: Dict[str, float] = {}

    def issue_session_id(self) -> str:
        """Issue a new session id and remember it for verification."""
        self._purge_expired()
        session_id = generate_session_id()
        self._issued[session_id] = self.clock()
        return session_id

    async def verify(self, session_id: str, evidence: Evidence) -> bool:
        if session_id not in self._issued:
            logger.warning(f"Rejecting evidence for unknown session {session_id}")
            return False
        if session_id in self._consumed:
            logger.warning(f"Rejecting replayed evidence for session {session_id}")
            return False
        # Consume before any further check so a rejected submission cannot be retried
        self._consumed[session_id] = self.clock()

        skew_ms = abs(self.clock() * 1000 - evidence.timestamp)
        if skew_ms > self.max_skew_seconds * 1000:
            logger.warning(f"Rejecting session {session_id}: timestamp skew {skew_ms:.0f} ms")
            return False

        if tuple(evidence.challenges) != REQUIRED_CHALLENGES:
            logger.warning(
                f"Rejecting session {session_id}: challenges "
                f"{[kind.value for kind in evidence.challenges]} out of order or incomplete"
            )
            return False

        for score in (evidence.smile_score, evidence.blink_score):
            if not 0.0 <= score <= 1.0:
                logger.warning(f"Rejecting session {session_id}: proof score {score} out of range")
                return False

        return True

    def _purge_expired(self) -> None:
        cutoff = self.clock() - self.issued_ttl_seconds
        for session_id in [sid for sid, issued_at in self._issued.items() if issued_at < cutoff]:
            del self._issued[session_id]
            self._consumed.pop(session_id, None)
