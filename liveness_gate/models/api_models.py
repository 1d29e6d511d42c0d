"""
Request and response schemas for the HTTP API
"""
from typing import List, Optional

from pydantic import BaseModel, Field


class ObservationRequest(BaseModel):
    """Precomputed frame observation plus the time since the previous tick"""
    face_detected: bool
    smile_score: float = Field(0.0, ge=0.0, le=1.0, allow_inf_nan=False)
    blink_score: float = Field(0.0, ge=0.0, le=1.0, allow_inf_nan=False)
    is_smile: bool = False
    is_blink: bool = False
    elapsed_ms: float = Field(..., ge=0.0, allow_inf_nan=False)


class LandmarksRequest(BaseModel):
    """Raw landmark set for one frame; null means no face was found"""
    landmarks: Optional[List[List[float]]] = None
    elapsed_ms: float = Field(..., ge=0.0, allow_inf_nan=False)


class SessionStatusResponse(BaseModel):
    session_id: str
    state: str
    reason: Optional[str] = None
    instruction: str
    completed: List[str] = Field(default_factory=list)
    progress: float = 0.0
    face_detected: bool = False
    smile_score: float = 0.0
    blink_score: float = 0.0


class SessionCreatedResponse(SessionStatusResponse):
    websocket_url: str
    message: str
