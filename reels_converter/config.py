"""
Runtime configuration for the reels converter.

Values come from the environment (a local .env file is loaded first) so the
Flask app, the CLI and the engine all agree on limits and defaults.
"""

import os

from dotenv import load_dotenv

load_dotenv()

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Intake
MAX_UPLOAD_BYTES = 10 * 1024 * 1024  # per image
MAX_REQUEST_BYTES = int(os.environ.get("REELS_MAX_REQUEST_BYTES", 256 * 1024 * 1024))

# Batch duration control
MIN_DURATION = 1.0
MAX_DURATION = 10.0
DURATION_STEP = 0.1
DEFAULT_DURATION = float(os.environ.get("REELS_DEFAULT_DURATION", "3.2"))

# Single-shot endpoint
SINGLE_SHOT_DURATION = 3.2

# Bulk download
DOWNLOAD_STAGGER_SEC = 0.5

# Codec engine
FFMPEG_BIN = os.environ.get("FFMPEG_BIN", "")
FFMPEG_TIMEOUT_SEC = float(os.environ.get("REELS_FFMPEG_TIMEOUT", "300"))

# HTTP
PORT = int(os.environ.get("PORT", "6741"))
CORS_ORIGINS = [
    "http://localhost:3000",
    "https://localhost:3000",
]
if os.environ.get("CORS_ORIGINS"):
    CORS_ORIGINS.extend(
        origin.strip() for origin in os.environ.get("CORS_ORIGINS", "").split(",") if origin.strip()
    )


def normalize_duration(value) -> float:
    """Validate a duration against the 1-10s range and snap it to 0.1s steps."""
    try:
        duration = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"Duration must be a number, got {value!r}")
    if duration != duration or not MIN_DURATION <= duration <= MAX_DURATION:
        raise ValueError(
            f"Duration must be between {MIN_DURATION:g} and {MAX_DURATION:g} seconds"
        )
    return round(round(duration / DURATION_STEP) * DURATION_STEP, 1)
