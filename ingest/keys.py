"""Parsing of raw chunk keys of the form ``<filename>-<fileHash>-<index>``."""

from common.constants import KEY_DELIMITER, SESSION_DIR_SUFFIX
from common.types import ChunkKey, SessionKey
from ingest.exceptions import MalformedKeyError

_RESERVED_NAMES = {".", ".."}


def make_session_key(filename: str, file_hash: str) -> SessionKey:
    """
    Build a validated session key.

    The hash may not contain the delimiter, which keeps the session directory
    name unambiguous even when the filename does.

    Args:
        filename: Target filename, a single path component
        file_hash: Client-computed file hash

    Returns:
        SessionKey

    Raises:
        MalformedKeyError: If either field is unusable
    """
    if not filename or not file_hash:
        raise MalformedKeyError("Filename and file hash must be non-empty")

    if KEY_DELIMITER in file_hash:
        raise MalformedKeyError(f"File hash may not contain '{KEY_DELIMITER}': {file_hash!r}")

    if "/" in file_hash or "\\" in file_hash or "\x00" in file_hash:
        raise MalformedKeyError(f"Invalid file hash: {file_hash!r}")

    if (
        "/" in filename
        or "\\" in filename
        or "\x00" in filename
        or filename in _RESERVED_NAMES
    ):
        raise MalformedKeyError(f"Filename must be a single path component: {filename!r}")

    if filename.endswith(SESSION_DIR_SUFFIX):
        raise MalformedKeyError(f"Filename may not end with '{SESSION_DIR_SUFFIX}': {filename!r}")

    return SessionKey(filename=filename, file_hash=file_hash)


def parse_index(value: str) -> int:
    """
    Parse a chunk index.

    Raises:
        MalformedKeyError: If value is not a non-negative decimal integer
    """
    if not value.isascii() or not value.isdigit():
        raise MalformedKeyError(f"Chunk index must be a non-negative integer: {value!r}")
    return int(value)


def parse_chunk_key(raw_key: str) -> ChunkKey:
    """
    Parse a raw chunk key into its session key and index.

    Fields are split from the right: the last field is the index, the one
    before it the file hash, and everything else the filename.

    Args:
        raw_key: Key of the form ``<filename>-<fileHash>-<index>``

    Returns:
        ChunkKey

    Raises:
        MalformedKeyError: If the key has fewer than three fields or any field is invalid
    """
    if not raw_key:
        raise MalformedKeyError("Empty chunk key")

    fields = raw_key.rsplit(KEY_DELIMITER, 2)
    if len(fields) < 3:
        raise MalformedKeyError(
            f"Chunk key must have the form <filename>{KEY_DELIMITER}<hash>{KEY_DELIMITER}<index>: {raw_key!r}"
        )

    filename, file_hash, index = fields
    return ChunkKey(
        session_key=make_session_key(filename, file_hash),
        index=parse_index(index),
    )
