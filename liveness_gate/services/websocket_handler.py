"""
WebSocket handler for real-time liveness verification.

This module provides the WebSocketHandler class that manages WebSocket
connections, receives video frames or landmark sets from the client and
streams state feedback back to the capture/render layer.
"""
from fastapi import WebSocket, WebSocketDisconnect
from typing import Any, Dict, Optional
import logging
import json
import base64
import binascii
import numpy as np
import cv2

from ..models.data_models import (
    FeedbackType,
    FrameObservation,
    SessionState,
    VerificationFeedback
)

logger = logging.getLogger(__name__)

FRAME_MESSAGE = "video_frame"
LANDMARKS_MESSAGE = "landmarks"


class WebSocketHandler:
    """
    Manages WebSocket communication for real-time verification.

    Client messages:
    - ``{"type": "video_frame", "frame": <base64 image>, "elapsed_ms": n}``
    - ``{"type": "landmarks", "landmarks": [[x, y, z], ...] | null, "elapsed_ms": n}``

    Server messages are VerificationFeedback objects serialized as
    ``{"type", "message", "data"}``.
    """

    async def handle_connection(self, websocket: WebSocket, session_id: str) -> None:
        """
        Accept the WebSocket connection for a session.

        Args:
            websocket: FastAPI WebSocket connection object
            session_id: Unique session identifier
        """
        await websocket.accept()
        logger.info(f"WebSocket connection established for session {session_id}")

    async def receive_message(self, websocket: WebSocket) -> Optional[Dict[str, Any]]:
        """
        Receive and decode one client message.

        Video frames are decoded into a BGR numpy array under the ``frame``
        key; landmark messages are passed through once they are shaped like a
        list of coordinate lists.

        Returns:
            Dict with ``type``, ``elapsed_ms`` and ``frame`` or ``landmarks``,
            or None if the message is malformed or of an unknown type

        Raises:
            WebSocketDisconnect: If the client disconnected
        """
        try:
            data = await websocket.receive_text()
            message = json.loads(data)
        except WebSocketDisconnect:
            logger.info("WebSocket disconnected while receiving message")
            raise
        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON received: {e}")
            return None

        if not isinstance(message, dict):
            logger.error("WebSocket message is not a JSON object")
            return None

        try:
            elapsed_ms = float(message.get("elapsed_ms", 0))
        except (TypeError, ValueError):
            logger.error(f"Invalid elapsed_ms: {message.get('elapsed_ms')!r}")
            return None

        message_type = message.get("type")
        if message_type == FRAME_MESSAGE:
            frame_data = message.get("frame")
            frame = self._decode_frame(frame_data) if isinstance(frame_data, str) and frame_data else None
            if frame is None:
                return None
            return {"type": FRAME_MESSAGE, "frame": frame, "elapsed_ms": elapsed_ms}

        if message_type == LANDMARKS_MESSAGE:
            landmarks = message.get("landmarks")
            if landmarks is not None and not self._is_point_list(landmarks):
                logger.error("Landmarks must be a list of coordinate lists")
                return None
            return {
                "type": LANDMARKS_MESSAGE,
                "landmarks": landmarks,
                "elapsed_ms": elapsed_ms
            }

        logger.warning(f"Ignoring unknown message type: {message_type!r}")
        return None

    async def send_state_update(
        self,
        websocket: WebSocket,
        status: Dict[str, Any],
        observation: Optional[FrameObservation] = None
    ) -> None:
        """
        Send the session's state and scores for visualization.

        Args:
            websocket: FastAPI WebSocket connection object
            status: Session status as produced by SessionController.describe
            observation: Observation derived from the last message, if any
        """
        data = dict(status)
        if observation is not None:
            data.update(
                face_detected=observation.face_detected,
                smile_score=observation.smile_score,
                blink_score=observation.blink_score
            )
        state = SessionState(status["state"])
        feedback_type = FeedbackType.VERIFICATION_RESULT if state.is_terminal else FeedbackType.STATE_UPDATE
        await self.send_feedback(
            websocket,
            VerificationFeedback(type=feedback_type, message=status["instruction"], data=data)
        )

    async def send_error(self, websocket: WebSocket, message: str) -> None:
        await self.send_feedback(websocket, VerificationFeedback(type=FeedbackType.ERROR, message=message))

    async def send_feedback(self, websocket: WebSocket, feedback: VerificationFeedback) -> None:
        """
        Serialize one feedback message onto the socket.

        Send failures are logged and re-raised so the caller's loop ends.
        """
        payload = {"type": feedback.type.value, "message": feedback.message, "data": feedback.data}
        try:
            await websocket.send_json(payload)
        except Exception as e:
            logger.error(f"Failed to send {feedback.type.value} message: {e}")
            raise
        logger.debug(f"Sent {feedback.type.value}: {feedback.message}")

    async def close_connection(
        self,
        websocket: WebSocket,
        code: int = 1000,
        reason: str = "Normal closure"
    ) -> None:
        """
        Close the socket, ignoring a peer that is already gone.

        Args:
            websocket: FastAPI WebSocket connection object
            code: Close code; 4004 marks an unknown session
            reason: Close reason sent to the client
        """
        try:
            await websocket.close(code=code, reason=reason)
        except Exception as e:
            logger.warning(f"WebSocket already closed ({reason}): {e}")
            return
        logger.info(f"WebSocket closed with code {code}: {reason}")

    @staticmethod
    def _is_point_list(landmarks: Any) -> bool:
        return isinstance(landmarks, list) and all(
            isinstance(point, list) and all(
                isinstance(coord, (int, float)) and not isinstance(coord, bool)
                for coord in point
            )
            for point in landmarks
        )

    def _decode_frame(self, frame_data: str) -> Optional[np.ndarray]:
        """
        Turn a base64 JPEG/PNG (optionally a ``data:`` URL) into a BGR array.

        Returns:
            BGR image, or None when the payload is not a decodable image
        """
        _, _, encoded = frame_data.rpartition(",")
        try:
            buffer = np.frombuffer(base64.b64decode(encoded, validate=True), dtype=np.uint8)
        except (binascii.Error, ValueError) as e:
            logger.error(f"Frame is not valid base64: {e}")
            return None
        if buffer.size == 0:
            logger.error("Frame payload is empty")
            return None

        frame = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
        if frame is None:
            logger.error("Frame payload is not a decodable image")
        return frame
