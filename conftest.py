import os
import tempfile

import pytest

# Point the store somewhere disposable before crimedesk.api runs init_db() on import.
_TMP = tempfile.mkdtemp(prefix='crimedesk-test-')
os.environ.setdefault('CRIMEDESK_DB_PATH', os.path.join(_TMP, 'bootstrap.db'))
os.environ.setdefault('CRIMEDESK_UPLOAD_DIR', os.path.join(_TMP, 'uploads'))

from crimedesk import config, db  # noqa: E402

VALID_CASE = {
    'case_number': 'CR-2024-001',
    'title': 'Armed robbery at corner store',
    'description': 'Two masked suspects robbed the store at gunpoint and fled on foot.',
    'crime_type': 'armed robbery',
    'severity': 'high',
    'location': 'sector 9',
    'primary_suspect': 'unknown male, red jacket',
    'evidence_summary': 'CCTV footage, shell casing',
}


@pytest.fixture(autouse=True)
def _isolated(tmp_path, monkeypatch):
    monkeypatch.setattr(db, 'DB_PATH', tmp_path / 'test.db')
    monkeypatch.setattr(config, 'UPLOAD_DIR', tmp_path / 'uploads')
    monkeypatch.delenv('OPENAI_API_KEY', raising=False)
    monkeypatch.delenv('GEMINI_API_KEY', raising=False)
    db.init_db()


@pytest.fixture
def conn():
    c = db.get_conn()
    yield c
    c.close()


@pytest.fixture
def case_payload():
    return dict(VALID_CASE)


@pytest.fixture
def client():
    from crimedesk.api import app
    app.config['TESTING'] = True
    return app.test_client()


def _register(client, username, role=None):
    resp = client.post('/api/auth/register', json={'username': username, 'password': 'pw-' + username})
    assert resp.status_code == 201
    body = resp.get_json()
    if role:
        with db.get_conn() as c:
            db.set_user_role(c, body['user']['id'], role)
    return {'Authorization': f"Bearer {body['jwt']}"}


@pytest.fixture
def admin_headers(client):
    return _register(client, 'chief', role='admin')


@pytest.fixture
def investigator_headers(client):
    return _register(client, 'detective')
