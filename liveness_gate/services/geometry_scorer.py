"""
Geometry Scorer: converts a frame's facial landmarks into smile/blink scores
"""
from typing import Optional, Sequence, Union

import numpy as np

from ..models.data_models import ChallengePolicy, FrameObservation

# MediaPipe FaceMesh topology
REQUIRED_LANDMARKS = 468
MOUTH_LEFT_CORNER = 61
MOUTH_RIGHT_CORNER = 291
EYE_LEFT_CORNER = 33
EYE_RIGHT_CORNER = 263
LEFT_EYE_INNER_CORNER = 133
LEFT_EYE_TOP_LID = 159
LEFT_EYE_BOTTOM_LID = 145
SCORED_LANDMARKS = [
    MOUTH_LEFT_CORNER, MOUTH_RIGHT_CORNER, EYE_LEFT_CORNER, EYE_RIGHT_CORNER,
    LEFT_EYE_INNER_CORNER, LEFT_EYE_TOP_LID, LEFT_EYE_BOTTOM_LID,
]

LandmarkInput = Optional[Union[np.ndarray, Sequence[Sequence[float]]]]


def to_landmark_array(landmarks: LandmarkInput) -> Optional[np.ndarray]:
    """
    Normalize landmark input to an (N, 3) float array.

    Accepts an array, a sequence of (x, y[, z]) sequences or a sequence of
    objects exposing ``x``/``y``/``z`` attributes (MediaPipe landmarks).

    Returns:
        (N, 3) array, or None when no landmarks were supplied

    Raises:
        ValueError: If the input is not a sequence of coordinate points
    """
    if landmarks is None:
        return None
    if isinstance(landmarks, np.ndarray):
        array = landmarks.astype(np.float64, copy=False)
    else:
        rows = []
        try:
            for point in landmarks:
                if hasattr(point, 'x'):
                    rows.append((point.x, point.y, getattr(point, 'z', 0.0)))
                else:
                    coords = tuple(point)[:3]
                    rows.append(coords + (0.0,) * (3 - len(coords)))
            array = np.array(rows, dtype=np.float64).reshape(-1, 3)
        except TypeError as e:
            raise ValueError(f"Landmarks must be a sequence of coordinate points: {e}") from e
    if array.ndim != 2 or array.shape[1] < 2:
        return None
    return array


def _distance(landmarks: np.ndarray, a: int, b: int) -> float:
    # 2-D distance; depth is not part of the ratios
    return float(np.hypot(landmarks[b, 0] - landmarks[a, 0], landmarks[b, 1] - landmarks[a, 1]))


def smile_ratio(landmarks: np.ndarray) -> float:
    """
    Mouth width relative to the distance between the eye corners.

    Normalizing by the eye distance cancels out how close the face is to
    the camera. A zero reference distance yields 0.
    """
    if landmarks.shape[0] < REQUIRED_LANDMARKS:
        return 0.0
    mouth_width = _distance(landmarks, MOUTH_LEFT_CORNER, MOUTH_RIGHT_CORNER)
    face_width = _distance(landmarks, EYE_LEFT_CORNER, EYE_RIGHT_CORNER)
    if face_width == 0:
        return 0.0
    return mouth_width / face_width


def eye_aspect_ratio(landmarks: np.ndarray) -> float:
    """
    Vertical eyelid gap over horizontal eye width (left eye).

    Eyes are treated as open (ratio 1.0) when the geometry is degenerate.
    """
    if landmarks.shape[0] < REQUIRED_LANDMARKS:
        return 1.0
    vertical = _distance(landmarks, LEFT_EYE_TOP_LID, LEFT_EYE_BOTTOM_LID)
    horizontal = _distance(landmarks, EYE_LEFT_CORNER, LEFT_EYE_INNER_CORNER)
    if horizontal == 0:
        return 1.0
    return vertical / horizontal


def smile_score_from_ratio(ratio: float, policy: ChallengePolicy) -> float:
    return float(np.clip((ratio - policy.smile_low_threshold) * policy.smile_gain, 0.0, 1.0))


def blink_score_from_ratio(ear: float, policy: ChallengePolicy) -> float:
    return float(np.clip((policy.blink_open_threshold - ear) * policy.blink_gain, 0.0, 1.0))


class GeometryScorer:
    """
    Stateless scorer turning landmark sets into FrameObservations.

    The instance only carries the immutable policy; it is safe to share
    between sessions.
    """

    def __init__(self, policy: Optional[ChallengePolicy] = None):
        self.policy = policy or ChallengePolicy()

    def score(self, landmarks: LandmarkInput) -> FrameObservation:
        """
        Score a single frame.

        Args:
            landmarks: Landmark set for one face, or None when the tracker
                reported no face

        Returns:
            FrameObservation; face_detected is False with zero scores when
            fewer than 468 landmarks are present or a scored landmark has a
            non-finite coordinate
        """
        array = to_landmark_array(landmarks)
        if array is None or array.shape[0] < REQUIRED_LANDMARKS:
            return FrameObservation.no_face()

        if not np.isfinite(array[SCORED_LANDMARKS, :2]).all():
            return FrameObservation.no_face()

        ratio = smile_ratio(array)
        ear = eye_aspect_ratio(array)

        return FrameObservation(
            face_detected=True,
            smile_score=smile_score_from_ratio(ratio, self.policy),
            blink_score=blink_score_from_ratio(ear, self.policy),
            is_smile=ratio > self.policy.smile_trigger_ratio,
            is_blink=ear < self.policy.blink_trigger_ratio,
        )
