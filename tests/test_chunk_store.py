"""Tests for filesystem chunk storage."""

import io
import os
import threading

import pytest

from common.types import SessionKey
from ingest.chunk_store import ChunkStore
from ingest.exceptions import StorageFailureError


class FailingStream:
    """Stream that fails part way through, like a dropped connection."""

    def __init__(self, data: bytes):
        self._data = io.BytesIO(data)
        self._reads = 0

    def read(self, size=-1):
        self._reads += 1
        if self._reads > 1:
            raise OSError("connection reset")
        return self._data.read(size)


class TestSave:
    """Test chunk writes."""

    def test_save_creates_session_directory_and_chunk(self, store, session_key):
        written = store.save(session_key, 0, io.BytesIO(b'hello world'))

        assert written == 11
        assert store.session_dir(session_key).is_dir()
        assert store.chunk_path(session_key, 0).read_bytes() == b'hello world'

    def test_chunk_file_layout(self, store, session_key, upload_root):
        store.save(session_key, 3, io.BytesIO(b'x'))

        assert (upload_root / 'video.mp4-abc123.chunks' / 'abc123-3').exists()

    def test_save_overwrites_same_index(self, store, session_key, put_chunk):
        put_chunk(1, b'old bytes')
        put_chunk(1, b'new')

        assert store.chunk_path(session_key, 1).read_bytes() == b'new'
        assert store.list_indices(session_key) == [1]

    def test_save_empty_chunk(self, store, session_key, put_chunk):
        assert put_chunk(0, b'') == 0
        assert store.chunk_size(session_key, 0) == 0

    def test_failed_write_leaves_no_partial_chunk(self, store, session_key):
        with pytest.raises(StorageFailureError):
            store.save(session_key, 0, FailingStream(b'abcdefgh'))

        assert store.list_indices(session_key) == []
        assert os.listdir(store.session_dir(session_key)) == []

    def test_failed_overwrite_keeps_previous_chunk(self, store, session_key, put_chunk):
        put_chunk(0, b'good')

        with pytest.raises(StorageFailureError):
            store.save(session_key, 0, FailingStream(b'abcdefgh'))

        assert store.chunk_path(session_key, 0).read_bytes() == b'good'

    def test_concurrent_writes_to_same_index_never_tear(self, store, session_key):
        payloads = [bytes([65 + n]) * 4096 for n in range(8)]

        threads = [
            threading.Thread(target=store.save, args=(session_key, 0, io.BytesIO(payload)))
            for payload in payloads
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert store.chunk_path(session_key, 0).read_bytes() in payloads
        assert store.list_indices(session_key) == [0]


class TestListAndDelete:
    """Test index listing, deletion and purge."""

    def test_list_indices_missing_session_is_empty(self, store):
        assert store.list_indices(SessionKey('nothing.bin', 'ff')) == []

    def test_list_indices_returns_integers(self, store, session_key, put_chunk):
        for index in (10, 2, 0, 1):
            put_chunk(index, b'x')

        assert sorted(store.list_indices(session_key)) == [0, 1, 2, 10]

    def test_list_indices_ignores_temp_and_foreign_files(self, store, session_key, put_chunk):
        put_chunk(0, b'x')
        session_dir = store.session_dir(session_key)
        (session_dir / '.tmpabc.part').write_bytes(b'partial')
        (session_dir / 'abc123-notanumber').write_bytes(b'junk')
        (session_dir / 'otherhash-4').write_bytes(b'junk')

        assert store.list_indices(session_key) == [0]

    def test_sessions_do_not_collide(self, store, put_chunk):
        first = SessionKey('a-b', 'c')
        second = SessionKey('a', 'bc')
        put_chunk(0, b'first', key=first)
        put_chunk(0, b'second', key=second)

        assert store.chunk_path(first, 0).read_bytes() == b'first'
        assert store.chunk_path(second, 0).read_bytes() == b'second'

    def test_delete_single_chunk(self, store, session_key, put_chunk):
        put_chunk(0, b'a')
        put_chunk(1, b'b')

        assert store.delete(session_key, 0) is True
        assert store.delete(session_key, 0) is False
        assert store.list_indices(session_key) == [1]

    def test_purge_removes_directory(self, store, session_key, put_chunk):
        put_chunk(0, b'a')
        put_chunk(1, b'b')

        store.purge(session_key)

        assert not store.session_dir(session_key).exists()
        assert store.list_indices(session_key) == []

    def test_purge_is_idempotent(self, store, session_key):
        store.purge(session_key)
        store.purge(session_key)


class TestReadAndSessions:
    """Test streamed reads and session discovery."""

    def test_iter_chunk_streams_in_pieces(self, store, session_key, put_chunk):
        put_chunk(0, b'abcdefghij')

        pieces = list(store.iter_chunk(session_key, 0))

        assert pieces == [b'abcd', b'efgh', b'ij']

    def test_chunk_size_of_missing_chunk(self, store, session_key):
        with pytest.raises(StorageFailureError):
            store.chunk_size(session_key, 5)

    def test_list_sessions(self, store, put_chunk, upload_root):
        first = SessionKey('a.bin', 'h1')
        second = SessionKey('my-file.bin', 'h2')
        put_chunk(0, b'x', key=first)
        put_chunk(0, b'y', key=second)
        (upload_root / 'merged.bin').write_bytes(b'final output')
        (upload_root / 'stray').mkdir()

        sessions = dict(store.list_sessions())

        assert set(sessions) == {first, second}
        assert sessions[first].tzinfo is not None

    def test_list_sessions_unreadable_root(self, store, upload_root, monkeypatch):
        def failing_iterdir(self):
            raise PermissionError("permission denied")

        monkeypatch.setattr(type(upload_root), 'iterdir', failing_iterdir)

        with pytest.raises(StorageFailureError):
            store.list_sessions()

    def test_merge_path_lives_in_session_directory(self, store, session_key, put_chunk):
        put_chunk(0, b'AA')

        assert store.merge_path(session_key).parent == store.session_dir(session_key)
        assert store.list_indices(session_key) == [0]


def test_root_is_created(tmp_path):
    """Test that the storage root is created on construction."""
    root = tmp_path / 'nested' / 'root'
    ChunkStore(root)
    assert root.is_dir()


def test_unusable_root_is_fatal(tmp_path):
    """Test that a root that is a regular file aborts construction."""
    blocker = tmp_path / 'blocker'
    blocker.write_bytes(b'')

    with pytest.raises(StorageFailureError):
        ChunkStore(blocker / 'root')
