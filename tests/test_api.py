import pytest
from fastapi.testclient import TestClient

from copyguard import config
from copyguard import main
from conftest import (
    FakeEmbeddingOracle, FakeRemediationOracle, FakeVerificationOracle, gradient_png, solid_png,
)

TARGET = gradient_png(descending=True)


@pytest.fixture
def oracles():
    return {
        "embedding": FakeEmbeddingOracle({TARGET: [1.0, 0.0]}),
        "verification": FakeVerificationOracle(default_total=70.0),
        "remediation": FakeRemediationOracle(),
    }


@pytest.fixture
def client(monkeypatch, oracles):
    monkeypatch.setattr(main, "create_embedding_oracle", lambda: oracles["embedding"])
    monkeypatch.setattr(main, "create_verification_oracle", lambda: oracles["verification"])
    monkeypatch.setattr(main, "create_remediation_oracle", lambda: oracles["remediation"])
    with TestClient(main.app) as client:
        yield client


def upload(client, *images):
    files = [("files", (name, data, "image/png")) for name, data in images]
    return client.post("/collection", files=files)


def test_root_and_health(client):
    assert client.get("/").json()["name"] == "CopyGuard API"

    health = client.get("/health").json()
    assert health["components"]["collection"] == "healthy"
    assert health["components"]["indexer"] == "healthy"


def test_upload_list_and_delete(client):
    response = upload(client, ("a.png", solid_png()), ("b.png", TARGET))
    assert response.status_code == 201
    ids = [r["id"] for r in response.json()]
    assert "embedding" not in response.json()[0]

    assert [r["id"] for r in client.get("/collection").json()] == ids

    assert client.delete(f"/collection/{ids[0]}").status_code == 204
    assert client.delete(f"/collection/{ids[0]}").status_code == 404
    assert [r["id"] for r in client.get("/collection").json()] == ids[1:]


def test_upload_rejects_unsupported_type(client):
    response = client.post("/collection", files=[("files", ("notes.txt", b"hello", "text/plain"))])
    assert response.status_code == 415


def test_upload_rejects_large_file(client, monkeypatch):
    monkeypatch.setattr(config, "MAX_FILE_SIZE", 10)
    assert upload(client, ("big.png", solid_png())).status_code == 413


def test_index_pass_fills_fingerprints(client):
    upload(client, ("a.png", solid_png()), ("b.png", TARGET))

    assert client.post("/collection/index").status_code == 200

    stats = client.get("/stats").json()["collection"]
    assert stats["total"] == 2
    assert stats["fingerprinted"] == 2
    assert stats["indexing"] == 0


def test_assessment_end_to_end(client, oracles):
    upload(client, ("a.png", solid_png()), ("copy.png", TARGET))
    client.post("/collection/index")

    response = client.post("/assessments", params={"wait": "true"},
                           files={"file": ("target.png", TARGET, "image/png")})

    assert response.status_code == 202
    run = response.json()
    assert run["status"] == "complete"
    assert run["progress"] == 100
    assert len(run["results"]) == 2
    assert run["results"][0]["fingerprint_match"] is True
    assert run["target"]["name"] == "target.png"

    assert client.get("/assessments/current").json()["run_id"] == run["run_id"]
    assert [h["id"] for h in client.get("/history").json()] == [run["run_id"]]


def test_rerun_and_reset(client):
    assert client.post("/assessments/current/run").status_code == 409

    client.post("/assessments", params={"wait": "true"}, files={"file": ("t.png", TARGET, "image/png")})
    rerun = client.post("/assessments/current/run", params={"wait": "true"})
    assert rerun.status_code == 200
    assert rerun.json()["status"] == "complete"

    reset = client.delete("/assessments/current").json()
    assert reset["status"] == "idle"
    assert reset["target"]["name"] == "t.png"
    assert len(client.get("/history").json()) == 2


def test_remediation(client, oracles):
    response = client.post("/remediation", json={"suggestion": "change the pose"})

    assert response.status_code == 200
    assert response.json()["prompt"] == oracles["remediation"].prompt
    assert oracles["remediation"].calls == ["change the pose"]

    assert client.post("/remediation", json={"suggestion": ""}).status_code == 422
