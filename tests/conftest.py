import os
import sys

import pytest
from fastapi.testclient import TestClient

# Ensure the packages and the shared fakes are importable without installing
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, ROOT)
sys.path.insert(0, os.path.join(ROOT, "tests"))

from amlchain_api.config import load_settings
from amlchain_api.main import create_app
from fakes import OPERATOR_TOKEN, FakeObserver, MutableClock


@pytest.fixture
def clock():
    return MutableClock()


@pytest.fixture
def observer():
    return FakeObserver()


@pytest.fixture
def make_settings(tmp_path):
    def _make(**overrides):
        values = {
            "db_path": str(tmp_path / "amlchain.db"),
            "encoding": "typed",
            "nonce_strategy": "random_id",
            "vault_address": "",
            "operator_api_token": OPERATOR_TOKEN,
            "ledger_rpc_url": "",
            "event_log_backend": "sqlite_hash_chain",
            "log_json": False,
            "log_level": "WARNING",
        }
        values.update(overrides)
        return load_settings(**values)
    return _make


@pytest.fixture
def make_client(make_settings, observer, clock):
    clients = []

    def _make(observer=observer, **overrides):
        app = create_app(make_settings(**overrides), observer=observer, clock=clock)
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client

    yield _make
    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client):
    return make_client()
