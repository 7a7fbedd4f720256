# Needs: python-package:fastapi>=0.110

import json

import pytest

fastapi = pytest.importorskip("fastapi")
TestClient = pytest.importorskip("fastapi.testclient").TestClient

service = pytest.importorskip("continual_engine_service")

from continual_engine.orchestrator import Orchestrator  # noqa: E402
from continual_engine.storage import CheckpointStore  # noqa: E402


@pytest.fixture
def engine(small_config, monkeypatch):
    current = Orchestrator(small_config)
    monkeypatch.setattr(service, "engine", current)
    return current


@pytest.fixture
def store(small_config, tmp_path, monkeypatch):
    current = CheckpointStore(str(tmp_path), model_name=small_config.model_name)
    monkeypatch.setattr(service, "store", current)
    return current


def test_endpoints_require_engine(monkeypatch):
    monkeypatch.setattr(service, "engine", None)
    monkeypatch.setattr(service, "store", None)
    client = TestClient(service.app)

    assert client.get("/status").status_code == 503
    assert client.post("/epochs", json={}).status_code == 503
    assert client.post("/checkpoints").status_code == 503

    health = client.get("/health").json()
    assert health["status"] == "degraded"
    assert health["components"]["engine"] == "not_initialized"


def test_health_reports_healthy_components(engine, store):
    client = TestClient(service.app)

    payload = client.get("/health").json()

    assert payload["status"] == "healthy"
    assert payload["version"] == service.SERVICE_VERSION


def test_synthetic_epoch(engine):
    client = TestClient(service.app)

    response = client.post("/epochs", json={"synthetic_count": 12, "return_results": True})

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "completed"
    assert payload["metrics"]["epoch"] == 1
    assert len(payload["results"]) == 12
    assert engine.epoch == 1


def test_explicit_tasks_epoch(engine, small_config):
    client = TestClient(service.app)
    features = [0.1] * small_config.embedding_dim
    tasks = [{"id": f"t{i}", "difficulty": 0.2, "features": features} for i in range(6)]

    response = client.post("/epochs", json={"tasks": tasks})

    assert response.status_code == 200
    assert response.json()["results"] is None
    assert engine.buffer.total_recorded == 6


def test_epoch_with_wrong_feature_length_is_rejected(engine):
    client = TestClient(service.app)

    response = client.post("/epochs", json={"tasks": [{"id": "bad", "features": [0.1, 0.2]}]})

    assert response.status_code == 422
    assert engine.epoch == 0
    assert len(engine.buffer) == 0


def test_status_and_metrics(engine):
    client = TestClient(service.app)
    client.post("/epochs", json={"synthetic_count": 5})

    status = client.get("/status").json()
    metrics = client.get("/metrics").json()

    assert status["epoch"] == 1
    assert status["state"] == "idle"
    assert metrics["epochs"] == 1
    assert metrics["history"][0]["epoch"] == 1


def test_prometheus_exposition(engine):
    client = TestClient(service.app)
    client.post("/epochs", json={"synthetic_count": 5})

    response = client.get("/metrics/prometheus")

    assert response.status_code == 200
    assert "continual_epochs_total" in response.text


def test_similar_patterns(engine, small_config):
    client = TestClient(service.app)
    features = [0.1 * (i + 1) for i in range(small_config.embedding_dim)]
    client.post("/epochs", json={"tasks": [{"id": f"t{i}", "difficulty": 0.0, "features": features} for i in range(10)]})

    response = client.post("/patterns/similar", json={"query": features, "top_k": 2})

    assert response.status_code == 200
    payload = response.json()
    assert payload["total"] == 2
    assert payload["matches"][0]["similarity"] == pytest.approx(1.0, abs=1e-6)


def test_similar_patterns_rejects_wrong_length(engine):
    client = TestClient(service.app)

    response = client.post("/patterns/similar", json={"query": [0.1, 0.2]})

    assert response.status_code == 422


def test_checkpoint_save_list_restore(engine, store):
    client = TestClient(service.app)
    client.post("/epochs", json={"synthetic_count": 10})

    saved = client.post("/checkpoints")
    assert saved.status_code == 200
    checkpoint_id = saved.json()["checkpoint_id"]
    assert saved.json()["epoch"] == 1

    listing = client.get("/checkpoints").json()
    assert listing["total"] == 1
    assert listing["latest_checkpoint"] == checkpoint_id

    client.post("/epochs", json={"synthetic_count": 10})
    assert engine.epoch == 2

    restored = client.post("/checkpoints/restore", json={"checkpoint_id": checkpoint_id})
    assert restored.status_code == 200
    assert restored.json()["epoch"] == 1
    assert engine.epoch == 1


def test_restore_unknown_checkpoint_is_404(engine, store):
    client = TestClient(service.app)

    response = client.post("/checkpoints/restore", json={"checkpoint_id": "missing"})

    assert response.status_code == 404


def test_restore_tampered_checkpoint_is_409(engine, store):
    client = TestClient(service.app)
    client.post("/epochs", json={"synthetic_count": 10})
    saved = client.post("/checkpoints").json()

    with open(saved["path"], "r", encoding="utf-8") as fh:
        document = json.load(fh)
    document["adapter"]["scale"] = 3.0
    with open(saved["path"], "w", encoding="utf-8") as fh:
        json.dump(document, fh)

    response = client.post("/checkpoints/restore", json={"checkpoint_id": saved["checkpoint_id"]})

    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["error"] == "integrity_error"
    assert detail["expected"] == saved["state_hash"]
    assert detail["actual"] != saved["state_hash"]


def test_blocking_handlers_run_in_threadpool():
    import inspect

    for handler in (service.run_epoch, service.save_checkpoint, service.restore_checkpoint):
        assert not inspect.iscoroutinefunction(handler)
