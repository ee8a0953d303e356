"""Shared pytest fixtures for all tests."""

import io

import pytest
from pathlib import Path

from cli.config import Config
from common.types import SessionKey
from ingest.chunk_store import ChunkStore
from ingest.context import UploadContext
from ingest.session_tracker import SessionTracker


@pytest.fixture
def upload_root(tmp_path) -> Path:
    """
    Storage root for chunk directories and merged files.
    """
    return tmp_path / 'resources'


@pytest.fixture
def store(upload_root) -> ChunkStore:
    return ChunkStore(upload_root, piece_size=4)


@pytest.fixture
def tracker() -> SessionTracker:
    return SessionTracker()


@pytest.fixture
def context(upload_root) -> UploadContext:
    return UploadContext(upload_root)


@pytest.fixture
def session_key() -> SessionKey:
    return SessionKey(filename='video.mp4', file_hash='abc123')


@pytest.fixture
def put_chunk(store, session_key):
    """
    Store raw bytes as a chunk of the default session.
    """
    def _put(index: int, data: bytes, key: SessionKey = session_key) -> int:
        return store.save(key, index, io.BytesIO(data))
    return _put


@pytest.fixture
def temp_config_dir(tmp_path):
    """
    Create temporary config directory.

    Returns:
        Path to temporary .chunkmerge directory
    """
    config_dir = tmp_path / '.chunkmerge'
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def temp_config(temp_config_dir):
    """
    Create temporary config instance pointing at a test server.
    """
    config = Config(temp_config_dir / 'config.json')
    config.set('server_host', 'test')
    config.set('server_port', 80)
    return config


@pytest.fixture
def sample_file(tmp_path):
    """
    Create a 10-byte sample file for chunked uploads.
    """
    file_path = tmp_path / 'sample.bin'
    file_path.write_bytes(b'0123456789')
    return file_path
