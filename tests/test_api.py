import asyncio
import time

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from facefind import api
from facefind.database import PhotoModel, PhotoStore, SettingsStore
from facefind.local import LocalMatchProvider
from facefind.remote import RemoteMatchProvider
from facefind.resolver import ProviderConfigResolver
from facefind.search import SearchOrchestrator

from fakes import PROBE, FakeEmbeddingProvider, FakeResponse, FakeSession, descriptor_at, fake_loader, make_candidates

TERMINAL = {"complete", "no_face_detected", "failed"}


@pytest.fixture
def embedding():
    return FakeEmbeddingProvider({
        b"selfie": [PROBE],
        "https://cdn/a.jpg": [descriptor_at(0.1)],
        "https://cdn/b.jpg": [descriptor_at(0.9)],
        "https://cdn/c.jpg": [descriptor_at(1.5), descriptor_at(0.2)],
    })


@pytest.fixture
def remote_session():
    return FakeSession(lambda payload, i: FakeResponse(body={"matches": [{"id": "b", "score": 0.77}]}))


@pytest.fixture
def app(session_factory, embedding, remote_session):
    settings = SettingsStore(session_factory)
    photos = PhotoStore(session_factory)
    resolver = ProviderConfigResolver(settings)

    def factory(config, secure_context):
        if config.uses_remote:
            return RemoteMatchProvider(
                config.remote_endpoint, config.remote_key, secure_context,
                session=remote_session, probe_encoder=lambda probe: "c2VsZmll",
            )
        return LocalMatchProvider(embedding_provider=embedding, image_loader=fake_loader, yield_seconds=0)

    orchestrator = SearchOrchestrator(resolver, provider_factory=factory)

    with session_factory() as db:
        db.add_all([
            PhotoModel(id="a", event_id="wedding", src="https://cdn/a.jpg", created_at=1),
            PhotoModel(id="b", event_id="wedding", src="https://cdn/b.jpg", created_at=2),
            PhotoModel(id="c", event_id="wedding", src="https://cdn/c.jpg", created_at=3),
        ])
        db.commit()

    application = FastAPI()
    application.include_router(api.router)
    application.dependency_overrides[api.get_settings_store] = lambda: settings
    application.dependency_overrides[api.get_photo_store] = lambda: photos
    application.dependency_overrides[api.get_resolver] = lambda: resolver
    application.dependency_overrides[api.get_orchestrator] = lambda: orchestrator
    return application


def _wait(client, task_id):
    for _ in range(300):
        body = client.get(f"/api/face/status/{task_id}").json()
        if body["status"] in TERMINAL:
            return body
        time.sleep(0.01)
    pytest.fail("search did not finish")


def _start(client, image=b"selfie", event_id="wedding", headers=None):
    return client.post(
        "/api/face/search",
        files={"file": ("selfie.jpg", image, "image/jpeg")},
        data={"event_id": event_id},
        headers=headers or {},
    )


def test_local_search_flow(app):
    with TestClient(app) as client:
        response = _start(client)
        assert response.status_code == 200
        body = _wait(client, response.json()["task_id"])

    assert body["status"] == "complete"
    assert body["total"] == 3
    assert body["processed"] == 3
    assert [m["id"] for m in body["matches"]] == ["a", "c"]
    assert body["total_matches"] == 2
    assert body["error_kind"] is None


def test_no_face_reported_distinctly(app):
    with TestClient(app) as client:
        body = _wait(client, _start(client, image=b"landscape").json()["task_id"])

    assert body["status"] == "no_face_detected"
    assert body["error_kind"] == "no_face_detected"
    assert body["matches"] is None
    assert "face" in body["message"]


def test_remote_flow_after_config_save(app, remote_session):
    with TestClient(app) as client:
        saved = client.put("/api/face/config", json={
            "provider": "remote",
            "remote_endpoint": "https://match.example.com",
            "remote_key": "secret",
        })
        assert saved.status_code == 200
        assert saved.json() == {
            "provider": "remote",
            "remote_endpoint": "https://match.example.com",
            "has_remote_key": True,
            "loaded": True,
        }

        body = _wait(client, _start(client).json()["task_id"])

    assert body["status"] == "complete"
    assert body["matches"] == [{"id": "b", "score": 0.77}]
    assert remote_session.calls[0]["headers"]["Authorization"] == "Bearer secret"


def test_mixed_content_from_forwarded_https(app, remote_session):
    with TestClient(app) as client:
        client.put("/api/face/config", json={"provider": "remote", "remote_endpoint": "http://match.example.com"})
        task_id = _start(client, headers={"X-Forwarded-Proto": "https"}).json()["task_id"]
        body = _wait(client, task_id)

    assert body["status"] == "failed"
    assert body["error_kind"] == "security_policy_violation"
    assert remote_session.calls == []


def test_config_defaults_to_local(app):
    with TestClient(app) as client:
        body = client.get("/api/face/config").json()
    assert body["provider"] == "local"
    assert body["has_remote_key"] is False


def test_remote_config_requires_endpoint(app):
    with TestClient(app) as client:
        response = client.put("/api/face/config", json={"provider": "remote"})
    assert response.status_code == 400


def test_rejects_non_image(app):
    with TestClient(app) as client:
        response = client.post(
            "/api/face/search",
            files={"file": ("notes.txt", b"hello", "text/plain")},
            data={"event_id": "wedding"},
        )
    assert response.status_code == 400


def test_unknown_task(app):
    with TestClient(app) as client:
        assert client.get("/api/face/status/missing").status_code == 404
        assert client.delete("/api/face/search/missing").status_code == 404


def test_run_search_task_records_cancellation(embedding):
    resolver = ProviderConfigResolver(SettingsStoreStub())
    orchestrator = SearchOrchestrator(
        resolver,
        provider_factory=lambda config, secure: LocalMatchProvider(
            embedding_provider=embedding, image_loader=fake_loader, batch_size=1, yield_seconds=0
        ),
    )

    async def scenario():
        task = api.SearchTask("t1", total=3)
        task.cancel_event.set()
        await api.run_search_task(task, orchestrator, b"selfie", make_candidates(3), False)
        return task

    task = asyncio.run(scenario())
    assert task.status.value == "failed"
    assert task.error_kind == "cancelled"
    assert task.matches is None


def test_task_cache_evicts_oldest():
    cache = api.TaskCache(max_size=2)
    tasks = [api.SearchTask(f"t{i}", total=0) for i in range(3)]
    for task in tasks:
        cache.add(task)
    assert cache.get("t0") is None
    assert cache.get("t2") is tasks[2]
    assert len(cache) == 2


class SettingsStoreStub:
    def get_setting(self, key):
        return None
