import importlib

import pytest

from store import MemoryBackend, RecordStore

SEED_PASSWORD = "password123"


@pytest.fixture
def store():
    s = RecordStore(MemoryBackend())
    s.init(SEED_PASSWORD)
    return s


@pytest.fixture
def app_module(monkeypatch, tmp_path):
    monkeypatch.setenv("SECRET_KEY", "x" * 40)
    monkeypatch.setenv("STORE_BACKEND", "memory")
    monkeypatch.setenv("SEED_USER_PASSWORD", SEED_PASSWORD)
    monkeypatch.setenv("RUN_STARTUP_SEED", "1")
    monkeypatch.setenv("LOG_FILE", str(tmp_path / "app.log"))
    monkeypatch.delenv("ALLOW_INSECURE_DEFAULTS", raising=False)

    import school_portal

    mod = importlib.reload(school_portal)
    mod.app.config["TESTING"] = True
    mod.app.config["WTF_CSRF_ENABLED"] = False
    return mod


@pytest.fixture
def client(app_module):
    return app_module.app.test_client()


def login_as(client, user_id):
    with client.session_transaction() as sess:
        sess["user_id"] = user_id
