"""HTTP client that slices a file into chunks, uploads them and asks for a merge."""

import hashlib
import os
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

import httpx

from cli.config import Config
from common.constants import KEY_DELIMITER, STREAM_PIECE_SIZE
from common.logging_config import get_logger

logger = get_logger(__name__)


class UploadClientError(Exception):
    """Raised when the server rejects a chunk upload or merge."""

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code


def calculate_file_hash(file_path: Path) -> str:
    """
    Calculate the SHA-256 of a file, reading it in pieces.

    Args:
        file_path: File to hash

    Returns:
        Hexadecimal digest
    """
    hasher = hashlib.sha256()
    with open(file_path, 'rb') as f:
        while True:
            piece = f.read(STREAM_PIECE_SIZE)
            if not piece:
                break
            hasher.update(piece)
    return hasher.hexdigest()


def chunk_key(filename: str, file_hash: str, index: int) -> str:
    """Build the raw chunk key ``<filename>-<fileHash>-<index>``."""
    return KEY_DELIMITER.join((filename, file_hash, str(index)))


def chunk_ranges(file_size: int, chunk_size: int) -> Iterator[Tuple[int, int, int]]:
    """
    Split a file size into chunk byte ranges.

    An empty file still yields one empty chunk so it can be merged.

    Yields:
        (index, offset, length) tuples
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")

    if file_size == 0:
        yield 0, 0, 0
        return

    for index, offset in enumerate(range(0, file_size, chunk_size)):
        yield index, offset, min(chunk_size, file_size - offset)


class ChunkUploadClient:
    """HTTP client for the chunk upload server."""

    ERROR_MESSAGES = {
        'MALFORMED_KEY': 'The server rejected the chunk key or filename.',
        'SESSION_BUSY': 'The upload is being merged; try again later.',
        'STORAGE_FAILURE': 'The server could not store the chunk.',
        'NO_CHUNKS_FOUND': 'The server has no chunks for this file.',
        'INCOMPLETE_UPLOAD': 'Some chunks never reached the server.',
        'CHUNK_SIZE_MISMATCH': 'A stored chunk does not match the chunk size.',
        'MERGE_FAILED': 'The server failed while merging the chunks.',
    }

    def __init__(self, config: Config, session: Optional[httpx.Client] = None):
        """
        Initialize upload client.

        Args:
            config: Configuration instance
            session: Preconfigured httpx client (tests pass one with a mock transport)
        """
        self.config = config
        self.session = session or httpx.Client(
            base_url=config.get_base_url(),
            timeout=config.get_timeout()
        )
        logger.info(f"Initialized ChunkUploadClient [base_url={self.session.base_url}]")

    def close(self) -> None:
        self.session.close()

    def _request(self, method: str, endpoint: str, **kwargs) -> httpx.Response:
        request_id = str(uuid.uuid4())
        headers = kwargs.pop('headers', {})
        headers['X-Request-ID'] = request_id

        try:
            response = self.session.request(method, endpoint, headers=headers, **kwargs)
        except httpx.ConnectError as e:
            raise ConnectionError("Cannot connect to upload server. Is it running?") from e
        except httpx.TimeoutException as e:
            raise ConnectionError("Request timed out. Server may be overloaded.") from e

        logger.debug(
            f"Response received: {method} {endpoint} status={response.status_code} [request_id={request_id}]"
        )

        if response.status_code >= 400:
            raise self._error_from(response)
        return response

    def _error_from(self, response: httpx.Response) -> UploadClientError:
        """
        Map an error response to an UploadClientError with a readable message.
        """
        try:
            error_data = response.json()
            detail = error_data.get('detail', 'Unknown error')
            code = error_data.get('code', 'UNKNOWN')
        except ValueError:
            detail = response.text or 'Unknown error'
            code = 'UNKNOWN'

        message = self.ERROR_MESSAGES.get(code, f"Server error {response.status_code}")
        return UploadClientError(f"{message} ({detail})", status_code=response.status_code, code=code)

    def upload_chunk(
        self,
        filename: str,
        file_hash: str,
        index: int,
        data: bytes,
        chunk_size: Optional[int] = None,
        total_size: Optional[int] = None,
    ) -> dict:
        """
        Upload a single chunk.

        Returns:
            Stored chunk description returned by the server

        Raises:
            UploadClientError: If the server rejects the chunk
            ConnectionError: If the server is unreachable
        """
        key = chunk_key(filename, file_hash, index)
        form = {}
        if chunk_size is not None:
            form['chunk_size'] = str(chunk_size)
        if total_size is not None:
            form['total_size'] = str(total_size)

        response = self._request(
            'POST',
            '/upload',
            files={key: (key, data, 'application/octet-stream')},
            data=form,
        )
        stored = response.json()['chunks'][0]
        logger.debug(f"Uploaded chunk {index} of {filename} ({stored['size']} bytes)")
        return stored

    def merge(self, filename: str, file_hash: str, chunk_size: Optional[int] = None) -> dict:
        """
        Ask the server to merge the uploaded chunks.

        Returns:
            Dictionary with 'filename', 'size' and 'chunks'
        """
        response = self._request(
            'POST',
            '/mergeChunks',
            json={'filename': filename, 'fileHash': file_hash, 'size': chunk_size},
        )
        return response.json()['data']

    def abandon(self, filename: str, file_hash: str) -> bool:
        response = self._request('DELETE', f'/upload/{filename}/{file_hash}')
        return response.json()['removed']

    def _read_and_upload(
        self,
        file_path: Path,
        filename: str,
        file_hash: str,
        index: int,
        offset: int,
        length: int,
        chunk_size: int,
        total_size: int,
    ) -> int:
        with open(file_path, 'rb') as f:
            f.seek(offset)
            data = f.read(length)
        self.upload_chunk(filename, file_hash, index, data, chunk_size, total_size)
        return index

    def upload_file(
        self,
        file_path: Path,
        filename: Optional[str] = None,
        chunk_size: Optional[int] = None,
        max_workers: Optional[int] = None,
    ) -> dict:
        """
        Upload a file chunk by chunk in parallel, then merge it.

        Each worker reads only its own chunk, so memory use is bounded by
        max_workers * chunk_size.

        Args:
            file_path: File to upload
            filename: Name to store the file under (default: file_path's name)
            chunk_size: Chunk size in bytes (default from config)
            max_workers: Parallel uploads (default from config)

        Returns:
            Merge result with 'filename', 'size' and 'chunks'

        Raises:
            UploadClientError: If a chunk or the merge is rejected
            ConnectionError: If the server is unreachable
        """
        file_path = Path(file_path)
        filename = filename or file_path.name
        chunk_size = chunk_size or self.config.get_chunk_size()
        max_workers = max_workers or self.config.get_max_workers()

        total_size = os.path.getsize(file_path)
        file_hash = calculate_file_hash(file_path)
        ranges = list(chunk_ranges(total_size, chunk_size))

        logger.info(
            f"Uploading {filename} ({total_size} bytes) in {len(ranges)} chunk(s) "
            f"[hash={file_hash[:16]}, workers={max_workers}]"
        )

        uploaded: List[int] = []
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = [
                executor.submit(
                    self._read_and_upload,
                    file_path, filename, file_hash, index, offset, length, chunk_size, total_size,
                )
                for index, offset, length in ranges
            ]
            for future in as_completed(futures):
                uploaded.append(future.result())

        logger.info(f"All {len(uploaded)} chunk(s) of {filename} uploaded, requesting merge")
        return self.merge(filename, file_hash, chunk_size)
