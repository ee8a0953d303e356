"""Tests for the upload server API endpoints."""

import pytest
from fastapi.testclient import TestClient

from common.types import SessionKey
from server.dependencies import get_context
from server.main import app


@pytest.fixture
def client(context):
    """Create FastAPI test client bound to a temporary upload context."""
    app.dependency_overrides[get_context] = lambda: context
    yield TestClient(app)
    app.dependency_overrides.clear()


def _upload(client, key: str, data: bytes, **form):
    return client.post('/upload', files={key: ('blob', data)}, data=form)


def test_health_endpoint(client):
    """Test health check endpoint."""
    response = client.get('/health')
    assert response.status_code == 200
    assert response.json()['status'] == 'healthy'


def test_request_id_header_is_echoed(client):
    response = client.get('/health', headers={'X-Request-ID': 'req-42'})
    assert response.headers['X-Request-ID'] == 'req-42'


def test_upload_chunk(client, context):
    """Test uploading a single chunk."""
    response = _upload(client, 'video.mp4-abc123-0', b'AA', chunk_size='2')

    assert response.status_code == 200
    body = response.json()
    assert body['code'] == 2000
    assert body['chunks'] == [
        {'filename': 'video.mp4', 'file_hash': 'abc123', 'index': 0, 'size': 2}
    ]
    key = SessionKey('video.mp4', 'abc123')
    assert context.store.list_indices(key) == [0]
    assert context.tracker.get(key).chunk_size == 2


def test_upload_several_chunks_in_one_form(client, context):
    response = client.post('/upload', files=[
        ('a.bin-h-1', ('blob', b'BB')),
        ('a.bin-h-0', ('blob', b'AA')),
    ])

    assert response.status_code == 200
    assert [chunk['index'] for chunk in response.json()['chunks']] == [1, 0]


def test_upload_form_with_one_malformed_key_stores_nothing(client, upload_root):
    response = client.post('/upload', files=[
        ('b.bin-h2-0', ('blob', b'AA')),
        ('b.bin-h2', ('blob', b'BB')),
    ])

    assert response.status_code == 400
    assert response.json()['code'] == 'MALFORMED_KEY'
    assert list(upload_root.iterdir()) == []


def test_upload_rejects_zero_chunk_size(client, upload_root):
    response = _upload(client, 'a.bin-h-0', b'AA', chunk_size='0')

    assert response.status_code == 400
    assert list(upload_root.iterdir()) == []


def test_upload_malformed_key(client, upload_root):
    """Test that a key without an index is rejected before storage."""
    response = _upload(client, 'video.mp4-abc123', b'AA')

    assert response.status_code == 400
    assert response.json()['code'] == 'MALFORMED_KEY'
    assert list(upload_root.iterdir()) == []


def test_upload_without_file_field(client):
    response = client.post('/upload', data={'chunk_size': '2'})

    assert response.status_code == 400
    assert response.json()['code'] == 'MALFORMED_KEY'


def test_upload_invalid_declared_size(client):
    response = _upload(client, 'a.bin-h-0', b'AA', chunk_size='lots')

    assert response.status_code == 400


def test_upload_while_merging(client, context):
    with context.tracker.merging(SessionKey('a.bin', 'h')):
        response = _upload(client, 'a.bin-h-0', b'AA')

    assert response.status_code == 409
    assert response.json()['code'] == 'SESSION_BUSY'


def test_upload_and_merge_out_of_order(client, context, upload_root):
    """Test the full flow: chunks arrive 3, 1, 0, 2 and merge byte-exact."""
    for index, data in [(3, b'DD'), (1, b'BB'), (0, b'AA'), (2, b'CC')]:
        assert _upload(client, f'letters.txt-abc-{index}', data).status_code == 200

    response = client.post('/mergeChunks', json={'filename': 'letters.txt', 'fileHash': 'abc', 'size': 2})

    assert response.status_code == 200
    body = response.json()
    assert body['code'] == 2000
    assert body['data'] == {'filename': 'letters.txt', 'size': 8, 'chunks': 4}
    assert (upload_root / 'letters.txt').read_bytes() == b'AABBCCDD'
    assert context.store.list_indices(SessionKey('letters.txt', 'abc')) == []


def test_merge_accepts_snake_case_hash(client):
    _upload(client, 'a.bin-h-0', b'AA')

    response = client.post('/mergeChunks', json={'filename': 'a.bin', 'file_hash': 'h'})

    assert response.status_code == 200
    assert response.json()['data']['size'] == 2


def test_merge_without_chunks(client):
    response = client.post('/mergeChunks', json={'filename': 'none.bin', 'fileHash': 'h', 'size': 2})

    assert response.status_code == 404
    assert response.json()['code'] == 'NO_CHUNKS_FOUND'


def test_merge_with_gap(client):
    for index in (0, 1, 3):
        _upload(client, f'gap.bin-h-{index}', b'xx')

    response = client.post('/mergeChunks', json={'filename': 'gap.bin', 'fileHash': 'h', 'size': 2})

    assert response.status_code == 409
    body = response.json()
    assert body['code'] == 'INCOMPLETE_UPLOAD'
    assert body['missing'] == [2]


def test_merge_with_size_mismatch(client):
    _upload(client, 'odd.bin-h-0', b'A')
    _upload(client, 'odd.bin-h-1', b'BB')

    response = client.post('/mergeChunks', json={'filename': 'odd.bin', 'fileHash': 'h', 'size': 2})

    assert response.status_code == 409
    assert response.json()['code'] == 'CHUNK_SIZE_MISMATCH'
    assert response.json()['index'] == 0


def test_merge_malformed_hash(client):
    response = client.post('/mergeChunks', json={'filename': 'a.bin', 'fileHash': 'x-y', 'size': 2})

    assert response.status_code == 400
    assert response.json()['code'] == 'MALFORMED_KEY'


def test_merge_missing_filename(client):
    response = client.post('/mergeChunks', json={'fileHash': 'h'})

    assert response.status_code == 422


@pytest.mark.parametrize('size', [0, -1])
def test_merge_rejects_non_positive_size(client, context, size):
    _upload(client, 'a.bin-h1-0', b'AA')

    response = client.post('/mergeChunks', json={'filename': 'a.bin', 'fileHash': 'h1', 'size': size})

    assert response.status_code == 422
    assert context.store.list_indices(SessionKey('a.bin', 'h1')) == [0]


def test_abandon_upload(client, context):
    _upload(client, 'a.bin-h-0', b'AA')

    response = client.delete('/upload/a.bin/h')

    assert response.status_code == 200
    assert response.json() == {'filename': 'a.bin', 'file_hash': 'h', 'removed': True}
    assert context.store.list_indices(SessionKey('a.bin', 'h')) == []


def test_storage_failure_maps_to_507(client, context, monkeypatch):
    from ingest.exceptions import StorageFailureError

    def failing_save(session_key, index, stream):
        raise StorageFailureError("disk full")

    monkeypatch.setattr(context.store, 'save', failing_save)

    response = _upload(client, 'a.bin-h-0', b'AA')

    assert response.status_code == 507
    assert response.json()['code'] == 'STORAGE_FAILURE'
