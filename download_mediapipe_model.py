#!/usr/bin/env python3
"""
Fetch the MediaPipe Face Landmarker model used for server-side tracking.

The file is written to MEDIAPIPE_MODEL_PATH (see .env.example). Only needed
when ENABLE_SERVER_TRACKING=true; clients that send landmark sets do not
need it.
"""
import sys
import urllib.request
from pathlib import Path

from liveness_gate.config import config

MODEL_URL = "https://storage.googleapis.com/mediapipe-models/face_landmarker/face_landmarker/float16/latest/face_landmarker.task"


def _size_mb(path: Path) -> str:
    return f"{path.stat().st_size / 1024 / 1024:.2f} MB"


def download_model(target: Path) -> bool:
    """
    Download the model to ``target`` unless it is already there.

    The download goes to a ``.part`` file first so an interrupted run never
    leaves a truncated model at the configured path.
    """
    if target.exists():
        print(f"✓ Model already present at {target} ({_size_mb(target)})")
        return True

    target.parent.mkdir(parents=True, exist_ok=True)
    partial = target.with_name(target.name + ".part")

    def report_progress(blocks, block_size, total_size):
        if total_size > 0:
            done = min(100.0, blocks * block_size * 100 / total_size)
            print(f"\r  {done:5.1f}%", end="", flush=True)

    print(f"Fetching {MODEL_URL}")
    try:
        urllib.request.urlretrieve(MODEL_URL, partial, reporthook=report_progress)
    except OSError as e:
        print(f"\n✗ Download failed: {e}")
        partial.unlink(missing_ok=True)
        return False

    partial.replace(target)
    print(f"\n✓ Saved {target} ({_size_mb(target)})")
    return True


def main() -> int:
    target = Path(config.MEDIAPIPE_MODEL_PATH)
    if not download_model(target):
        print("Check your network connection and retry.")
        return 1

    print("\nTo track faces server-side, set:")
    print("  ENABLE_SERVER_TRACKING=true")
    print(f"  MEDIAPIPE_MODEL_PATH={target}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
