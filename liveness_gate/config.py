"""
Configuration management for the application
"""
import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = 'false') -> bool:
    return os.getenv(name, default).lower() == 'true'


class Config:
    """Application configuration"""
    
    # Server Configuration
    HOST = os.getenv('HOST', '0.0.0.0')
    PORT = int(os.getenv('PORT', '8000'))
    CORS_ORIGINS = os.getenv('CORS_ORIGINS', 'http://localhost:3000').split(',')
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()
    
    # Landmark Tracker Configuration
    MEDIAPIPE_MODEL_PATH = os.path.expanduser(os.getenv(
        'MEDIAPIPE_MODEL_PATH',
        str(Path.home() / '.mediapipe_models' / 'face_landmarker.task')
    ))
    ENABLE_SERVER_TRACKING = _flag('ENABLE_SERVER_TRACKING')
    TRACKER_READY_TIMEOUT_SECONDS = float(os.getenv('TRACKER_READY_TIMEOUT_SECONDS', '10'))
    
    # Trust Authority Configuration
    TRUST_AUTHORITY_URL = os.getenv('TRUST_AUTHORITY_URL', '')
    VERIFICATION_TIMEOUT_SECONDS = float(os.getenv('VERIFICATION_TIMEOUT_SECONDS', '10'))
    LOCAL_AUTHORITY_MAX_SKEW_SECONDS = float(os.getenv('LOCAL_AUTHORITY_MAX_SKEW_SECONDS', '30'))
    
    # Session Configuration
    STAGE_TIMEOUT_SECONDS = float(os.getenv('STAGE_TIMEOUT_SECONDS', '30'))
    MAX_SESSION_DURATION_SECONDS = float(os.getenv('MAX_SESSION_DURATION_SECONDS', '120'))
    TERMINAL_RETENTION_SECONDS = float(os.getenv('TERMINAL_RETENTION_SECONDS', '60'))
    SWEEP_INTERVAL_SECONDS = float(os.getenv('SWEEP_INTERVAL_SECONDS', '5'))
    
    # Challenge Policy Configuration
    SMILE_LOW_THRESHOLD = float(os.getenv('SMILE_LOW_THRESHOLD', '0.45'))
    SMILE_GAIN = float(os.getenv('SMILE_GAIN', '5'))
    SMILE_TRIGGER_RATIO = float(os.getenv('SMILE_TRIGGER_RATIO', '0.58'))
    BLINK_OPEN_THRESHOLD = float(os.getenv('BLINK_OPEN_THRESHOLD', '0.25'))
    BLINK_GAIN = float(os.getenv('BLINK_GAIN', '5'))
    BLINK_TRIGGER_RATIO = float(os.getenv('BLINK_TRIGGER_RATIO', '0.18'))
    SMILE_DWELL_MS = float(os.getenv('SMILE_DWELL_MS', '1000'))
    SMILE_DECAY_RATE = float(os.getenv('SMILE_DECAY_RATE', '2'))
    BLINK_DWELL_MS = float(os.getenv('BLINK_DWELL_MS', '300'))
    FACE_SETTLE_MS = float(os.getenv('FACE_SETTLE_MS', '500'))


config = Config()
