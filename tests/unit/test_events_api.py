"""Тесты HTTP-входа для событий жизненного цикла."""

import pytest
from fastapi.testclient import TestClient

from docpersist.domains.persistence.lifecycle import LifecycleHandler
from docpersist.domains.persistence.sessions import SessionRegistry
from docpersist.main import create_app
from tests.conftest import FakeSyncEngine, RecordingPersister, make_document


@pytest.fixture
def persister():
    return RecordingPersister()


@pytest.fixture
def client(persister):
    app = create_app(use_lifespan=False)
    engine = FakeSyncEngine({"page:p1": make_document("Hello")})
    app.state.lifecycle = LifecycleHandler(SessionRegistry(), engine, persister)
    with TestClient(app) as test_client:
        yield test_client


class TestEventsEndpoint:
    def test_connect_then_disconnect(self, client, persister):
        response = client.post("/events", json={"type": "connect", "document_name": "page:p1", "user_id": "u1"})
        assert response.status_code == 200
        assert response.json()["action"] == "timer_started"
        assert response.json()["active_sessions"] == 1

        response = client.post("/events", json={"type": "disconnect", "document_name": "page:p1", "user_id": "u1"})
        assert response.status_code == 200
        body = response.json()
        assert body["action"] == "snapshot_queued"
        assert body["page_id"] == "p1"
        assert body["error"] is None
        assert persister.jobs[0].triggered_by == "u1"

    def test_destroy(self, client):
        response = client.post("/events", json={"type": "destroy", "document_name": "page:p1"})
        assert response.status_code == 200
        assert response.json()["action"] == "released"

    @pytest.mark.parametrize("payload", [
        {"document_name": "page:p1", "user_id": "u1"},
        {"type": "rename", "document_name": "page:p1"},
        {"type": "connect", "document_name": "doc-p1", "user_id": "u1"},
        {"type": "connect", "document_name": "page:", "user_id": "u1"},
        {"type": "disconnect", "document_name": "page:p1"},
    ])
    def test_invalid_events_are_rejected(self, client, persister, payload):
        response = client.post("/events", json=payload)
        assert response.status_code == 422
        assert persister.jobs == []
