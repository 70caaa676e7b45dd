"""Tests for the command line interface."""

import json
import os

import pytest
from click.testing import CliRunner

from cacheprog.app.cli import main as cli_main
from cacheprog.core import StorageError


@pytest.fixture
def runner(monkeypatch, storage, logger):
    for name in list(os.environ):
        if name.startswith("CACHEPROG_"):
            monkeypatch.delenv(name)
    monkeypatch.setattr(cli_main, "create_storage", lambda config: storage)
    monkeypatch.setattr(cli_main, "create_logger", lambda config: logger)
    return CliRunner()


def test_check_reachable(runner):
    result = runner.invoke(cli_main.cli, ["check", "--bucket", "cache-bucket"])
    assert result.exit_code == 0, result.output
    doc = json.loads(result.stdout)
    assert doc["bucket"] == "cache-bucket"
    assert doc["reachable"] is True


def test_check_unreachable_exits_nonzero(runner, storage):
    storage.failures["check"] = StorageError("Bucket not found: cache-bucket")
    result = runner.invoke(cli_main.cli, ["check", "--bucket", "cache-bucket"])
    assert result.exit_code == 1
    assert json.loads(result.stdout)["reachable"] is False


def test_missing_bucket_is_config_error(runner):
    result = runner.invoke(cli_main.cli, ["check"])
    assert result.exit_code == 2
    assert "bucket is required" in result.output


def test_stats(runner, storage):
    storage.objects.update({"ci/action/aa": b"r" * 5, "ci/object/bb": b"x" * 7})
    result = runner.invoke(cli_main.cli, ["stats", "--bucket", "b", "--prefix", "ci", "--top", "1"])
    assert result.exit_code == 0, result.output
    doc = json.loads(result.stdout)
    assert doc["actions"] == {"count": 1, "bytes": 5}
    assert doc["largest_objects"] == [{"key": "ci/object/bb", "size": 7}]


def test_stats_listing_failure(runner, storage):
    storage.failures["list"] = StorageError("AccessDenied")
    result = runner.invoke(cli_main.cli, ["stats", "--bucket", "b"])
    assert result.exit_code == 1
    assert "Failed to list objects" in result.output


def test_serve_passes_config_to_runner(runner, monkeypatch, tmp_path):
    seen = []

    def fake_run(config):
        seen.append(config)
        return 0

    monkeypatch.setattr(cli_main, "run", fake_run)
    result = runner.invoke(
        cli_main.cli,
        ["--debug", "serve", "--bucket", "b", "--prefix", "go", "--stage-dir", str(tmp_path / "s")],
    )
    assert result.exit_code == 0, result.output
    [config] = seen
    assert config.bucket == "b"
    assert config.prefix == "go"
    assert config.stage_dir == tmp_path / "s"
    assert config.log_level == "DEBUG"


def test_serve_propagates_exit_status(runner, monkeypatch):
    monkeypatch.setattr(cli_main, "run", lambda config: 3)
    result = runner.invoke(cli_main.cli, ["serve", "--bucket", "b"])
    assert result.exit_code == 3
