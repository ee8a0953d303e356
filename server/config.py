"""Configuration settings for the upload server."""

import os
from pathlib import Path

from common.constants import (
    DEFAULT_SERVER_HOST,
    DEFAULT_SERVER_PORT,
    DEFAULT_UPLOAD_ROOT,
    REAP_INTERVAL_SECONDS,
    SESSION_MAX_AGE_SECONDS,
)


UPLOAD_ROOT = Path(os.environ.get("CHUNKMERGE_UPLOAD_ROOT", DEFAULT_UPLOAD_ROOT))

SERVER_HOST = os.environ.get("CHUNKMERGE_HOST", DEFAULT_SERVER_HOST)

SERVER_PORT = int(os.environ.get("CHUNKMERGE_PORT", str(DEFAULT_SERVER_PORT)))

SESSION_MAX_AGE = float(os.environ.get("CHUNKMERGE_SESSION_MAX_AGE", str(SESSION_MAX_AGE_SECONDS)))

REAP_INTERVAL = float(os.environ.get("CHUNKMERGE_REAP_INTERVAL", str(REAP_INTERVAL_SECONDS)))

CORS_ORIGINS = [
    origin.strip()
    for origin in os.environ.get("CHUNKMERGE_CORS_ORIGINS", "*").split(",")
    if origin.strip()
]
