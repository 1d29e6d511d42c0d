"""
Landmark tracker adapter around the MediaPipe Face Landmarker
"""
import asyncio
import logging
import os
from typing import Optional

import cv2
import mediapipe as mp
import numpy as np

from ..exceptions import SetupFailureError

logger = logging.getLogger(__name__)


class FaceLandmarkTracker:
    """
    Per-session face landmark tracker.

    Each session owns its own tracker so sessions never serialize on a
    shared landmarker. The model is loaded off the event loop and signals
    readiness through a one-shot future.

    Configuration for FaceLandmarker:
    - num_faces: 1 (only track single face for security)
    - min_face_detection_confidence / min_face_presence_confidence: 0.5
    - output_face_blendshapes: False (scores come from geometry)
    """

    def __init__(
        self,
        model_path: Optional[str] = None,
        min_detection_confidence: float = 0.5,
        min_presence_confidence: float = 0.5
    ):
        self.model_path = model_path
        self.min_detection_confidence = min_detection_confidence
        self.min_presence_confidence = min_presence_confidence
        self._face_landmarker = None
        self._ready: Optional[asyncio.Future] = None
        self._closed = False

    @property
    def is_ready(self) -> bool:
        return self._face_landmarker is not None

    async def initialize(self, timeout_seconds: float = 10.0) -> None:
        """
        Load the model and wait until the tracker is ready.

        Args:
            timeout_seconds: Upper bound on the readiness wait

        Raises:
            SetupFailureError: If the model is missing, fails to load or does
                not become ready in time
        """
        if self._face_landmarker is not None:
            return
        if self._ready is None:
            loop = asyncio.get_running_loop()
            self._ready = loop.run_in_executor(None, self._create_landmarker)
            self._ready.add_done_callback(self._discard_if_closed)

        try:
            landmarker = await asyncio.wait_for(asyncio.shield(self._ready), timeout_seconds)
        except asyncio.TimeoutError as e:
            raise SetupFailureError(f"Face landmarker not ready after {timeout_seconds}s") from e
        except SetupFailureError:
            raise
        except Exception as e:
            raise SetupFailureError(f"Failed to initialize MediaPipe FaceLandmarker: {e}") from e

        if self._closed:
            raise SetupFailureError("Tracker was closed during initialization")
        self._face_landmarker = landmarker
        logger.debug(f"Face landmarker ready (model={self.model_path})")

    def _discard_if_closed(self, future: asyncio.Future) -> None:
        # A model that finishes loading after close() is released here
        if self._closed and not future.cancelled() and future.exception() is None:
            future.result().close()

    def _create_landmarker(self):
        if self.model_path is None:
            raise SetupFailureError(
                "Model path not provided. "
                "Download the model using: python download_mediapipe_model.py"
            )
        if not os.path.exists(self.model_path):
            raise SetupFailureError(
                f"MediaPipe model not found at {self.model_path}. "
                "Download it using: python download_mediapipe_model.py"
            )

        base_options = mp.tasks.BaseOptions(model_asset_path=self.model_path)
        options = mp.tasks.vision.FaceLandmarkerOptions(
            base_options=base_options,
            running_mode=mp.tasks.vision.RunningMode.IMAGE,
            num_faces=1,
            min_face_detection_confidence=self.min_detection_confidence,
            min_face_presence_confidence=self.min_presence_confidence,
            output_face_blendshapes=False,
            output_facial_transformation_matrixes=False
        )
        return mp.tasks.vision.FaceLandmarker.create_from_options(options)

    def preprocess_frame(self, frame: np.ndarray, target_width: int = 640) -> np.ndarray:
        """
        Preprocess video frame for MediaPipe processing.

        Steps:
        1. Scale to the target width, keeping the aspect ratio so landmark
           distance ratios are not distorted
        2. Convert from BGR (OpenCV default) to RGB (MediaPipe requirement)

        Args:
            frame: Input frame in BGR format
            target_width: Width of the processed frame in pixels

        Returns:
            np.ndarray: Preprocessed frame in RGB format
        """
        height, width = frame.shape[:2]
        if width != target_width and width > 0:
            target_height = max(1, int(round(height * target_width / width)))
            frame = cv2.resize(frame, (target_width, target_height), interpolation=cv2.INTER_LINEAR)
        return cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)

    def detect(self, frame: np.ndarray) -> Optional[np.ndarray]:
        """
        Locate facial landmarks in a BGR frame.

        Blocking; callers on the event loop should run it in an executor.

        Returns:
            (468+, 3) landmark array for the first face, or None if no face
            was found

        Raises:
            SetupFailureError: If called before initialize() succeeded
        """
        if self._face_landmarker is None:
            raise SetupFailureError("Face landmarker used before it became ready")

        rgb_frame = self.preprocess_frame(frame)
        mp_image = mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb_frame)
        detection_result = self._face_landmarker.detect(mp_image)

        if not detection_result.face_landmarks:
            return None
        landmarks = detection_result.face_landmarks[0]
        return np.array([[lm.x, lm.y, lm.z] for lm in landmarks])

    def close(self) -> None:
        """Release the MediaPipe resources."""
        if self._closed:
            return
        self._closed = True
        if self._face_landmarker is not None:
            try:
                self._face_landmarker.close()
            except Exception as e:
                logger.error(f"Error closing face landmarker: {e}")
            self._face_landmarker = None
        elif self._ready is not None and self._ready.done():
            if not self._ready.cancelled() and self._ready.exception() is None:
                self._ready.result().close()
