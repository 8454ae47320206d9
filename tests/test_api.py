import time

import pytest
from fastapi.testclient import TestClient

from knowledge_index.config import SettingsProvider
from knowledge_index.container import build_container
from knowledge_index.main import create_app

from conftest import hashing_resolver


def _container(runtime_settings, content_source, **upload_overrides):
    snapshot = runtime_settings
    if upload_overrides:
        snapshot = runtime_settings.model_copy(
            update={"upload": runtime_settings.upload.model_copy(update=upload_overrides)}
        )
    return build_container(
        settings_provider=SettingsProvider(snapshot),
        content_source=content_source,
        provider_resolver=hashing_resolver,
        backend="memory",
    )


@pytest.fixture
def client(runtime_settings, content_source):
    app = create_app(_container(runtime_settings, content_source))
    with TestClient(app) as c:
        yield c


def _upload(client, name="report.txt", body=b"quarterly revenue growth", **form):
    data = {"scope_id": "scope-a"}
    data.update(form)
    return client.post(
        "/documents",
        files={"file": (name, body, "text/plain")},
        data=data,
    )


def _wait_for_job(client, job_id, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        job = client.get(f"/jobs/{job_id}").json()
        if job["state"] in ("Completed", "Failed", "Cancelled"):
            return job
        time.sleep(0.02)
    raise AssertionError(f"job {job_id} did not finish")


# ---------------------------------------------------------------------
# Documents and jobs
# ---------------------------------------------------------------------

def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["storage_backend"] == "memory"
    assert body["workers_running"] is True


def test_upload_is_processed_in_background(client):
    resp = _upload(client, metadata='{"owner": "finance"}')
    assert resp.status_code == 202
    accepted = resp.json()
    assert accepted["status"] == "Queued"

    job = _wait_for_job(client, accepted["job_id"])
    assert job["state"] == "Completed"
    assert job["percent_complete"] == 100.0

    document = client.get(f"/documents/{accepted['document_id']}").json()
    assert document["status"] == "Ready"
    assert document["chunk_count"] == 1
    assert document["metadata"]["owner"] == "finance"

    listed = client.get("/documents", params={"scope_id": "scope-a"}).json()
    assert [d["id"] for d in listed] == [accepted["document_id"]]
    assert client.get("/documents", params={"scope_id": "other"}).json() == []

    jobs = client.get("/jobs").json()
    assert [j["job_id"] for j in jobs] == [accepted["job_id"]]


@pytest.mark.parametrize(
    "name, form",
    [
        ("tool.exe", {}),
        ("report.txt", {"scope_id": " "}),
        ("report.txt", {"metadata": "not json"}),
        ("report.txt", {"metadata": "[1, 2]"}),
    ],
)
def test_invalid_upload_returns_400(client, name, form):
    resp = _upload(client, name=name, **form)
    assert resp.status_code == 400
    assert resp.json()["error"] == "invalid_upload"


def test_missing_scope_is_a_validation_error(client):
    resp = client.post("/documents", files={"file": ("a.txt", b"x", "text/plain")})
    assert resp.status_code == 422


def test_unknown_document_and_job(client):
    assert client.get("/documents/missing").status_code == 404
    assert client.delete("/documents/missing").json()["error"] == "document_not_found"
    assert client.get("/jobs/missing").status_code == 404


def test_delete_document(client):
    accepted = _upload(client).json()
    _wait_for_job(client, accepted["job_id"])

    resp = client.delete(f"/documents/{accepted['document_id']}")
    assert resp.json() == {"status": "deleted", "details": {"document_id": accepted["document_id"]}}
    assert client.get(f"/documents/{accepted['document_id']}").status_code == 404

    search = client.post("/search", json={"query": "revenue", "scope_id": "scope-a"})
    assert search.json()["hits"] == []


def test_cancel_finished_job_is_not_running(client):
    accepted = _upload(client).json()
    _wait_for_job(client, accepted["job_id"])

    resp = client.post(f"/documents/{accepted['document_id']}/cancel")
    assert resp.json()["status"] == "not_running"


# ---------------------------------------------------------------------
# Search and reindex
# ---------------------------------------------------------------------

def test_search_returns_hybrid_hits(client):
    accepted = _upload(client).json()
    _wait_for_job(client, accepted["job_id"])

    resp = client.post("/search", json={"query": "revenue growth", "scope_id": "scope-a"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["total_count"] == 1
    assert body["mode"] == "Hybrid"
    [hit] = body["hits"]
    assert hit["document_id"] == accepted["document_id"]
    assert hit["metadata"]["source"] == "hybrid"


def test_search_request_validation(client):
    assert client.post("/search", json={"query": "x"}).status_code == 422
    assert client.post("/search", json={"query": "x", "scope_id": "s", "top_k": 0}).status_code == 422
    resp = client.post("/search", json={"query": "x", "scope_id": "s", "reranker": "Magic"})
    assert resp.status_code == 400


def test_reindex_and_check(client):
    accepted = _upload(client).json()
    _wait_for_job(client, accepted["job_id"])

    check = client.get(f"/documents/{accepted['document_id']}/reindex-check").json()
    assert check["needs_reindex"] is False
    assert check["reason"] == "Unchanged"

    resp = client.post("/reindex", json={"scope_id": "scope-a", "force": True})
    body = resp.json()
    assert body["total_documents"] == 1
    assert body["enqueued_count"] == 1
    assert body["reason_counts"] == {"Forced": 1}

    job_id = body["documents"][0]["job_id"]
    assert _wait_for_job(client, job_id)["state"] == "Completed"
    assert client.get(f"/jobs/{job_id}").json()["batch_id"] == body["batch_id"]


# ---------------------------------------------------------------------
# Backpressure
# ---------------------------------------------------------------------

def test_queue_full_returns_503(runtime_settings, content_source):
    # No lifespan: workers never start, so the single slot stays taken.
    app = create_app(_container(runtime_settings, content_source, queue_capacity=1))
    client = TestClient(app)

    assert _upload(client, name="a.txt").status_code == 202
    resp = _upload(client, name="b.txt")

    assert resp.status_code == 503
    assert resp.headers["Retry-After"] == "5"
    documents = client.get("/documents").json()
    failed = [d for d in documents if d["file_name"] == "b.txt"]
    assert failed[0]["status"] == "Failed"
