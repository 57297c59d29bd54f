"""Tests for the FastAPI backend."""

import json

import pytest
from fastapi.testclient import TestClient

from backend.main import create_app
from conftest import PNG_BYTES
from mediagen.schemas.models import InputAsset

RESULT_URL = "https://cdn.test/out.mp4"


@pytest.fixture
def client(settings, provider):
    app = create_app(settings, transport=provider.transport)
    with TestClient(app) as c:
        yield c


def _events(client, job_id):
    with client.stream("GET", f"/api/jobs/{job_id}/events") as response:
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        return [
            json.loads(line[len("data: "):])
            for line in response.iter_lines()
            if line.startswith("data: ")
        ]


def test_health(client, settings):
    for path in ("/health", "/api/health"):
        response = client.get(path)
        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert response.json()["data_dir"] == str(settings.data_dir)


def test_generate_video_and_follow_events(client, provider):
    provider.statuses["task-1"] = [
        (200, {"status": "IN_PROGRESS", "progress": "50%"}),
        (200, {"status": "SUCCESS", "data": {"output": RESULT_URL}}),
    ]
    provider.downloads[RESULT_URL] = (200, b"video-bytes", "video/mp4")

    response = client.post(
        "/api/videos/generate",
        json={"apiKey": "sk-test", "prompt": "a lighthouse", "model": "sora2", "aspectRatio": "9:16"},
    )
    assert response.status_code == 202
    body = response.json()
    assert body["task_id"] == "task-1"
    assert body["status"] == "processing"

    events = _events(client, body["job_id"])
    assert events[-1]["status"] == "succeeded"
    output = events[-1]["output_asset_ref"]
    assert output.startswith("videos/results/")

    record = client.get(f"/api/videos/records/{body['job_id']}").json()
    assert record["status"] == "success"
    assert record["result_asset_name"] == output
    assert "sk-test" not in json.dumps(record)

    served = client.get(f"/uploads/{output}")
    assert served.status_code == 200
    assert served.content == b"video-bytes"

    assert provider.submit_payloads()[0]["aspect_ratio"] == "9:16"


def test_generate_image_with_reference(client, provider):
    provider.submissions = [(200, {"data": [{"url": "https://cdn.test/fox.png"}]})]
    provider.downloads["https://cdn.test/fox.png"] = (200, b"png-bytes", "image/png")
    data_url = InputAsset(data=PNG_BYTES, content_type="image/png").to_data_url()

    response = client.post(
        "/api/images/generate",
        json={"api_key": "sk-test", "prompt": "a fox", "model": "nano-banana", "images": [data_url]},
    )
    assert response.status_code == 202
    job_id = response.json()["job_id"]
    assert response.json()["task_id"] == f"sync-{job_id}"
    events = _events(client, job_id)
    assert events[-1]["status"] == "succeeded"
    assert provider.submit_payloads()[0]["images"][0].startswith("http://assets.test/uploads/images/input/")


def test_error_mapping(client, provider):
    bad_model = client.post("/api/videos/generate", json={"apiKey": "k", "prompt": "x", "model": "runway"})
    assert bad_model.status_code == 400

    bad_image = client.post("/api/images/generate", json={"apiKey": "k", "prompt": "x", "images": ["data:image/png,raw"]})
    assert bad_image.status_code == 400

    no_key = client.post("/api/videos/generate", json={"prompt": "x"})
    assert no_key.status_code == 401

    provider.submissions = [(503, {"message": "overloaded"})]
    unavailable = client.post("/api/videos/generate", json={"apiKey": "k", "prompt": "x"})
    assert unavailable.status_code == 503

    provider.submissions = [(400, {"message": "prompt blocked"})]
    rejected = client.post("/api/videos/generate", json={"apiKey": "k", "prompt": "x"})
    assert rejected.status_code == 422
    assert rejected.json()["detail"] == "prompt blocked"

    assert client.get("/api/jobs/job_missing").status_code == 404
    assert client.delete("/api/jobs/job_missing").status_code == 404
    assert client.get("/api/jobs/job_missing/events").status_code == 404
    assert client.get("/api/videos/records/job_missing").status_code == 404
    assert client.get("/api/audio/history").status_code == 404


def test_status_recheck_and_history(client, provider):
    provider.statuses["task-1"] = [(200, {"status": "FAILURE", "fail_reason": "nsfw"})]
    job_id = client.post("/api/videos/generate", json={"apiKey": "k", "prompt": "x"}).json()["job_id"]
    events = _events(client, job_id)
    assert events[-1]["failure_reason"] == "nsfw"

    recheck = client.post("/api/videos/status/task-1", json={"apiKey": "k"})
    assert recheck.status_code == 200
    assert recheck.json()["provider_status"]["state"] == "failed"
    assert recheck.json()["record"]["status"] == "failed"

    assert client.post("/api/videos/status/task-404", json={"apiKey": "k"}).status_code == 404

    videos = client.get("/api/videos/history", params={"page": 1, "limit": 5}).json()
    assert videos["pagination"] == {"page": 1, "limit": 5, "total": 1}
    assert videos["records"][0]["job_id"] == job_id
    assert client.get("/api/history/videos").json()["pagination"]["total"] == 1
    assert client.get("/api/images/history").json()["records"] == []
    assert client.get("/api/history/all").json()["pagination"]["total"] == 1


def test_cancel_live_job(client, provider):
    provider.statuses["task-1"] = [(200, {"status": "IN_PROGRESS"})]
    job_id = client.post("/api/videos/generate", json={"apiKey": "k", "prompt": "x"}).json()["job_id"]
    response = client.delete(f"/api/jobs/{job_id}")
    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"
    assert client.get(f"/api/jobs/{job_id}").json()["status"] == "cancelled"
    assert client.delete(f"/api/jobs/{job_id}").status_code == 409

    provider.statuses["task-1"] = [(200, {"status": "SUCCESS", "data": {"output": RESULT_URL}})]
    provider.downloads[RESULT_URL] = (200, b"video-bytes", "video/mp4")
    recheck = client.post("/api/videos/status/task-1", json={"apiKey": "k"}).json()
    assert recheck["provider_status"]["state"] == "succeeded"
    assert recheck["record"]["cancelled"] is True
    assert recheck["record"]["result_asset_name"] is None
    assert client.get(f"/api/jobs/{job_id}").json()["status"] == "cancelled"


def test_materialize_endpoint(client, provider):
    provider.statuses["task-1"] = [(200, {"status": "SUCCESS", "data": {"output": RESULT_URL}})]
    job_id = client.post("/api/videos/generate", json={"apiKey": "k", "prompt": "x"}).json()["job_id"]
    events = _events(client, job_id)
    assert events[-1]["materialization_warning"]

    provider.downloads[RESULT_URL] = (200, b"video-bytes", "video/mp4")
    response = client.post(f"/api/jobs/{job_id}/materialize")
    assert response.status_code == 200
    assert response.json()["output_asset_ref"].startswith("videos/results/")
