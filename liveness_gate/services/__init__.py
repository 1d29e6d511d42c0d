"""
Services for the liveness verification engine
"""
from .challenge_state_machine import transition
from .dwell_accumulator import DwellAccumulator
from .geometry_scorer import GeometryScorer
from .session_controller import SessionController
from .trust_authority import HttpTrustAuthority, LocalTrustAuthority, TrustAuthority
from .verification_handoff import VerificationHandoff

__all__ = [
    "DwellAccumulator",
    "GeometryScorer",
    "HttpTrustAuthority",
    "LocalTrustAuthority",
    "SessionController",
    "TrustAuthority",
    "VerificationHandoff",
    "transition",
]
