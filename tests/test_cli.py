"""Tests for the mediagen CLI."""

import pytest
from typer.testing import CliRunner

from mediagen.cli import app
from mediagen.jobs import JobRecord, RecordStatus, store
from mediagen.schemas.models import MediaKind

runner = CliRunner()


@pytest.fixture
def data_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("MEDIAGEN_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setattr(store, "_store", None)
    return tmp_path / "data"


def test_providers_lists_sub_models():
    result = runner.invoke(app, ["providers"])
    assert result.exit_code == 0
    assert "sora-2-pro" in result.output
    assert "nano-banana-hd" in result.output


def test_history_lists_records(data_dir):
    store.get_record_store().create(
        JobRecord(
            job_id="job_00000000000000c1",
            kind=MediaKind.IMAGE,
            prompt="a red fox",
            model="nano-banana",
            sub_model="nano-banana",
            correlation_id="task-c1",
            status=RecordStatus.SUCCESS,
        )
    )
    result = runner.invoke(app, ["history", "--kind", "image"])
    assert result.exit_code == 0
    assert "1 total" in result.output
    assert "success" in result.output


def test_missing_reference_image(data_dir, tmp_path):
    result = runner.invoke(app, ["image", "a fox", "--image", str(tmp_path / "nope.png"), "--api-key", "k"])
    assert result.exit_code == 1
    assert "image not found" in result.output


def test_missing_api_key_exits_with_credential_error(data_dir, monkeypatch):
    monkeypatch.delenv("MEDIAGEN_API_KEY", raising=False)
    result = runner.invoke(app, ["video", "a lighthouse"])
    assert result.exit_code == 2
    assert "Credential error" in result.output
