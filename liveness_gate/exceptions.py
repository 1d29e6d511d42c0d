"""
Error types raised by the liveness engine.

Terminal conditions are not raised to callers of the session API; they are
reported as the FAILURE state plus a FailureReason. The exceptions here are
used at the seams where an operation itself must be refused or where a
collaborator fails.
"""


class LivenessError(Exception):
    """Base class for liveness engine errors"""


class SetupFailureError(LivenessError):
    """Capture or landmark tracker could not be initialized"""


class VerificationUnreachableError(LivenessError):
    """Transport or protocol error while talking to the trust authority"""


class InvalidSessionError(LivenessError):
    """
    Operation referenced a session that is unknown or already terminal.

    Raised before any state is touched.
    """

    def __init__(self, session_id: str, unknown: bool = True):
        self.session_id = session_id
        self.unknown = unknown
        detail = "unknown" if unknown else "already terminal"
        super().__init__(f"Session {session_id} is {detail}")
