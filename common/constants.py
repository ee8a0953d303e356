"""Project-wide constants (storage layout, stream sizes, defaults)."""

DEFAULT_UPLOAD_ROOT: str = "./resources"

DEFAULT_CHUNK_SIZE_BYTES: int = 10 * 1024 * 1024  # 10 MiB client-side slice
STREAM_PIECE_SIZE: int = 64 * 1024  # bounded copy buffer

KEY_DELIMITER: str = "-"
SESSION_DIR_SUFFIX: str = ".chunks"
TEMP_CHUNK_PREFIX: str = "."
TEMP_CHUNK_SUFFIX: str = ".part"
MERGE_OUTPUT_SUFFIX: str = ".merging"

DEFAULT_SERVER_HOST: str = "0.0.0.0"
DEFAULT_SERVER_PORT: int = 3001

SESSION_MAX_AGE_SECONDS: int = 24 * 3600
REAP_INTERVAL_SECONDS: int = 3600

UPLOAD_SUCCESS_CODE: int = 2000
