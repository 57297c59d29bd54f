"""Pytest configuration and shared fixtures."""

import json

import httpx
import pytest

from mediagen.config import Settings
from mediagen.jobs import FileJobRecordStore
from mediagen.schemas.models import GenerationMode, GenerationRequest, InputAsset, MediaKind

PROVIDER_HOST = "provider.test"
ASSET_BASE_URL = "http://assets.test/uploads"

# PNG signature plus filler; nothing decodes it
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 24


class FakeProvider:
    """Scriptable provider gateway and result CDN behind an httpx.MockTransport.

    ``submissions`` and ``statuses`` are consumed front to back; the last entry
    repeats. An entry is ``(status_code, json_body)`` or the string
    ``"connect-error"``. ``downloads`` maps result URLs to
    ``(status_code, body, content_type)``.
    """

    def __init__(self):
        self.submissions = [(200, {"task_id": "task-1"})]
        self.statuses: dict[str, list] = {}
        self.downloads: dict[str, tuple[int, bytes, str]] = {}
        self.requests: list[httpx.Request] = []

    @staticmethod
    def _next(queue: list):
        return queue.pop(0) if len(queue) > 1 else queue[0]

    def _respond(self, request: httpx.Request, item) -> httpx.Response:
        if item == "connect-error":
            raise httpx.ConnectError("connection refused", request=request)
        code, body = item
        return httpx.Response(code, json=body)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == PROVIDER_HOST:
            if request.method == "POST":
                return self._respond(request, self._next(self.submissions))
            task_id = request.url.path.rsplit("/", 1)[-1]
            queue = self.statuses.get(task_id) or self.statuses.get("*")
            if not queue:
                return httpx.Response(404, json={"message": f"unknown task {task_id}"})
            return self._respond(request, self._next(queue))
        code, content, content_type = self.downloads.get(str(request.url), (404, b"", "text/plain"))
        return httpx.Response(code, content=content, headers={"content-type": content_type})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def submit_payloads(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests if r.method == "POST"]

    def status_polls(self) -> list[str]:
        return [
            r.url.path.rsplit("/", 1)[-1]
            for r in self.requests
            if r.url.host == PROVIDER_HOST and r.method == "GET"
        ]


@pytest.fixture
def settings(tmp_path):
    """Settings rooted in a temp dir, polling without delay."""
    s = Settings(
        mediagen_data_dir=str(tmp_path / "data"),
        mediagen_asset_base_url=ASSET_BASE_URL,
        provider_base_url=f"https://{PROVIDER_HOST}",
        poll_interval_seconds=0,
        mediagen_database_url=None,
    )
    s.ensure_dirs()
    return s


@pytest.fixture
def record_store(settings):
    return FileJobRecordStore(settings.jobs_dir)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def png_asset():
    return InputAsset(data=PNG_BYTES, content_type="image/png")


def video_request(**overrides) -> GenerationRequest:
    fields = dict(
        kind=MediaKind.VIDEO,
        provider_id="sora2",
        sub_model="sora-2",
        prompt="a lighthouse in a storm",
        parameters={"aspect_ratio": "16:9"},
        mode=GenerationMode.TEXT,
        credential="sk-test",
    )
    fields.update(overrides)
    return GenerationRequest(**fields)


def image_request(**overrides) -> GenerationRequest:
    fields = dict(
        kind=MediaKind.IMAGE,
        provider_id="nano-banana",
        sub_model="nano-banana",
        prompt="a red fox, watercolor",
        parameters={"aspect_ratio": "1:1"},
        credential="sk-test",
    )
    fields.update(overrides)
    return GenerationRequest(**fields)
