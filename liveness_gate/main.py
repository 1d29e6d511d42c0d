"""
FastAPI application exposing the liveness verification session API
"""
import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from functools import partial

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .config import Config, config
from .exceptions import InvalidSessionError, SetupFailureError
from .models.api_models import (
    LandmarksRequest,
    ObservationRequest,
    SessionCreatedResponse,
    SessionStatusResponse,
)
from .models.data_models import ChallengePolicy, FrameObservation, SessionState
from .services.session_controller import SessionController
from .services.trust_authority import HttpTrustAuthority, LocalTrustAuthority, generate_session_id
from .services.verification_handoff import VerificationHandoff
from .services.websocket_handler import FRAME_MESSAGE, WebSocketHandler

logging.basicConfig(
    level=config.LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def build_controller(cfg: Config = config) -> SessionController:
    """
    Wire a SessionController from configuration.

    Without TRUST_AUTHORITY_URL an in-process LocalTrustAuthority issues the
    session ids and decides verifications.
    """
    if cfg.TRUST_AUTHORITY_URL:
        authority = HttpTrustAuthority(cfg.TRUST_AUTHORITY_URL, timeout_seconds=cfg.VERIFICATION_TIMEOUT_SECONDS)
        session_id_factory = generate_session_id
    else:
        authority = LocalTrustAuthority(max_skew_seconds=cfg.LOCAL_AUTHORITY_MAX_SKEW_SECONDS)
        session_id_factory = authority.issue_session_id

    tracker_factory = None
    if cfg.ENABLE_SERVER_TRACKING:
        # MediaPipe is only loaded when frames are tracked server-side
        from .services.landmark_tracker import FaceLandmarkTracker
        tracker_factory = partial(FaceLandmarkTracker, cfg.MEDIAPIPE_MODEL_PATH)

    return SessionController(
        handoff=VerificationHandoff(authority, timeout_seconds=cfg.VERIFICATION_TIMEOUT_SECONDS),
        policy=ChallengePolicy.from_config(cfg),
        tracker_factory=tracker_factory,
        session_id_factory=session_id_factory,
        stage_timeout_seconds=cfg.STAGE_TIMEOUT_SECONDS,
        max_session_seconds=cfg.MAX_SESSION_DURATION_SECONDS,
        tracker_ready_timeout_seconds=cfg.TRACKER_READY_TIMEOUT_SECONDS,
        terminal_retention_seconds=cfg.TERMINAL_RETENTION_SECONDS,
    )


session_controller = build_controller()
websocket_handler = WebSocketHandler()


async def _sweep_sessions() -> None:
    while True:
        await asyncio.sleep(config.SWEEP_INTERVAL_SECONDS)
        try:
            expired = await session_controller.expire_stale_sessions()
            if expired:
                logger.info(f"Expired {expired} stale session(s)")
        except Exception:
            logger.exception("Session sweep failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweeper = asyncio.create_task(_sweep_sessions())
    yield
    sweeper.cancel()
    with suppress(asyncio.CancelledError):
        await sweeper
    await session_controller.shutdown()
    await session_controller.handoff.authority.close()


app = FastAPI(
    title="Liveness Gate API",
    description="Challenge-based liveness verification",
    version=__version__,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _raise_http(error: InvalidSessionError) -> None:
    status_code = 404 if error.unknown else 409
    raise HTTPException(status_code=status_code, detail=str(error))


@app.get("/")
async def root():
    return {
        "message": "Liveness Gate API",
        "status": "running",
        "version": __version__
    }


@app.get("/health")
async def health():
    return {
        "status": "healthy",
        "active_sessions": session_controller.active_session_count,
        "services": {
            "api": "operational",
            "tracking": "enabled" if session_controller.tracker_factory else "client"
        }
    }


@app.post("/api/sessions", response_model=SessionCreatedResponse)
async def create_session():
    session_id = await session_controller.start_session()
    status = session_controller.describe(session_id)
    return SessionCreatedResponse(
        **status,
        websocket_url=f"/ws/verify/{session_id}",
        message="Session created successfully"
    )


@app.get("/api/sessions/{session_id}", response_model=SessionStatusResponse)
async def get_session(session_id: str, wait: bool = False):
    """Session status; with ``wait=true`` blocks until a pending verification resolves."""
    try:
        if wait:
            await session_controller.wait_for_outcome(session_id)
        return SessionStatusResponse(**session_controller.describe(session_id))
    except InvalidSessionError as e:
        _raise_http(e)


@app.post("/api/sessions/{session_id}/observations", response_model=SessionStatusResponse)
async def feed_observation(session_id: str, request: ObservationRequest):
    observation = FrameObservation(
        face_detected=request.face_detected,
        smile_score=request.smile_score,
        blink_score=request.blink_score,
        is_smile=request.is_smile,
        is_blink=request.is_blink
    )
    try:
        await session_controller.feed_observation(session_id, observation, request.elapsed_ms)
        return SessionStatusResponse(**session_controller.describe(session_id))
    except InvalidSessionError as e:
        _raise_http(e)


@app.post("/api/sessions/{session_id}/landmarks", response_model=SessionStatusResponse)
async def feed_landmarks(session_id: str, request: LandmarksRequest):
    try:
        await session_controller.feed_landmarks(session_id, request.landmarks, request.elapsed_ms)
        return SessionStatusResponse(**session_controller.describe(session_id))
    except InvalidSessionError as e:
        _raise_http(e)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


@app.delete("/api/sessions/{session_id}", response_model=SessionStatusResponse)
async def cancel_session(session_id: str):
    try:
        await session_controller.cancel_session(session_id)
        return SessionStatusResponse(**session_controller.describe(session_id))
    except InvalidSessionError as e:
        _raise_http(e)


@app.websocket("/ws/verify/{session_id}")
async def verify_websocket(websocket: WebSocket, session_id: str):
    """
    Stream frames or landmark sets for a session and receive state updates.

    The connection closes once the session reaches a terminal state. A
    client that disconnects mid-session cancels it.
    """
    await websocket_handler.handle_connection(websocket, session_id)
    try:
        session_controller.get_state(session_id)
    except InvalidSessionError as e:
        await websocket_handler.send_error(websocket, str(e))
        await websocket_handler.close_connection(websocket, code=4004, reason="Invalid session")
        return

    try:
        if not session_controller.get_state(session_id).is_terminal:
            await websocket_handler.send_state_update(websocket, session_controller.describe(session_id))

        while not session_controller.get_state(session_id).is_terminal:
            if session_controller.get_state(session_id) == SessionState.VERIFYING:
                await session_controller.wait_for_outcome(session_id)
                break

            message = await websocket_handler.receive_message(websocket)
            if message is None:
                await websocket_handler.send_error(websocket, "Malformed message")
                continue

            try:
                if message["type"] == FRAME_MESSAGE:
                    _, observation = await session_controller.feed_frame(
                        session_id, message["frame"], message["elapsed_ms"]
                    )
                else:
                    _, observation = await session_controller.feed_landmarks(
                        session_id, message["landmarks"], message["elapsed_ms"]
                    )
            except InvalidSessionError:
                break
            except (SetupFailureError, ValueError) as e:
                await websocket_handler.send_error(websocket, str(e))
                continue

            if not session_controller.get_state(session_id).is_terminal:
                await websocket_handler.send_state_update(
                    websocket, session_controller.describe(session_id), observation
                )

        await websocket_handler.send_state_update(websocket, session_controller.describe(session_id))
        await websocket_handler.close_connection(websocket, reason="Verification finished")

    except WebSocketDisconnect:
        logger.info(f"Client disconnected from session {session_id}")
        with suppress(InvalidSessionError):
            await session_controller.cancel_session(session_id)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("liveness_gate.main:app", host=config.HOST, port=config.PORT)
