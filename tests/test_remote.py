"""Tests for the remote store retry and concurrency policy."""

import asyncio
import random

import pytest

from cacheprog.adapters import NoopMetricsAdapter
from cacheprog.core import RemoteStore, RemoteStoreError, StorageError, TransientStorageError


def make_remote(storage, logger, **kwargs):
    kwargs.setdefault("max_attempts", 3)
    kwargs.setdefault("backoff_base", 0.0)
    kwargs.setdefault("backoff_max", 0.0)
    kwargs.setdefault("op_timeout", 2.0)
    return RemoteStore(storage, logger, NoopMetricsAdapter(), **kwargs)


@pytest.mark.asyncio
async def test_read_and_not_found(storage, logger):
    storage.objects["ci/action/aa"] = b"record"
    remote = make_remote(storage, logger)

    assert await remote.read("ci/action/aa") == b"record"
    assert await remote.read("ci/action/bb") is None


@pytest.mark.asyncio
async def test_download_writes_destination(storage, logger, tmp_path):
    storage.objects["ci/object/aa"] = b"x" * 3_000_000
    remote = make_remote(storage, logger)
    dest = tmp_path / "dest"

    assert await remote.download("ci/object/aa", dest) == 3_000_000
    assert dest.read_bytes() == b"x" * 3_000_000
    assert [p.name for p in tmp_path.iterdir()] == ["dest"]


@pytest.mark.asyncio
async def test_download_missing(storage, logger, tmp_path):
    remote = make_remote(storage, logger)
    assert await remote.download("ci/object/none", tmp_path / "dest") is None
    assert not (tmp_path / "dest").exists()


@pytest.mark.asyncio
async def test_exists_reports_size(storage, logger):
    storage.objects["k"] = b"12345"
    remote = make_remote(storage, logger)
    assert await remote.exists("k") == 5
    assert await remote.exists("missing") is None


@pytest.mark.asyncio
async def test_write_bytes_and_path(storage, logger, tmp_path):
    remote = make_remote(storage, logger)
    source = tmp_path / "src"
    source.write_bytes(b"from disk")

    await remote.write("a", b"inline", {"object": "ff"})
    await remote.write("b", source)
    assert storage.objects == {"a": b"inline", "b": b"from disk"}
    assert storage.metadata["a"] == {"object": "ff"}


@pytest.mark.asyncio
async def test_transient_errors_are_retried(storage, logger):
    storage.objects["k"] = b"v"
    storage.failures["get"] = TransientStorageError("SlowDown")
    storage.fail_times["get"] = 2
    remote = make_remote(storage, logger, max_attempts=3)

    assert await remote.read("k") == b"v"
    assert storage.calls["get"] == 3
    assert "Retrying remote operation" in logger.messages("debug")


@pytest.mark.asyncio
async def test_retry_budget_exhausted(storage, logger):
    storage.failures["put"] = TransientStorageError("503")
    remote = make_remote(storage, logger, max_attempts=3)

    with pytest.raises(RemoteStoreError) as exc_info:
        await remote.write("k", b"v")
    assert exc_info.value.attempts == 3
    assert exc_info.value.op == "write"
    assert isinstance(exc_info.value.cause, TransientStorageError)
    assert storage.calls["put"] == 3


@pytest.mark.asyncio
async def test_terminal_errors_are_not_retried(storage, logger):
    storage.failures["get"] = StorageError("AccessDenied")
    remote = make_remote(storage, logger, max_attempts=5)

    with pytest.raises(StorageError, match="AccessDenied"):
        await remote.read("k")
    assert storage.calls["get"] == 1


@pytest.mark.asyncio
async def test_timeouts_are_retried_then_fail(storage, logger):
    storage.delays["head"] = 0.3
    remote = make_remote(storage, logger, max_attempts=2, op_timeout=0.05)

    with pytest.raises(RemoteStoreError) as exc_info:
        await remote.exists("k")
    assert isinstance(exc_info.value.cause, asyncio.TimeoutError)
    assert exc_info.value.attempts == 2


@pytest.mark.asyncio
async def test_concurrency_is_bounded(storage, logger):
    storage.delays["head"] = 0.05
    remote = make_remote(storage, logger, max_concurrency=2)

    await asyncio.gather(*(remote.exists(f"k{i}") for i in range(8)))
    assert storage.max_active <= 2
    assert storage.calls["head"] == 8


@pytest.mark.asyncio
async def test_concurrency_is_bounded_when_attempts_time_out(storage, logger):
    storage.objects["k"] = b"v"
    storage.delays["get"] = 0.2
    remote = make_remote(storage, logger, max_concurrency=1, max_attempts=3, op_timeout=0.05)

    with pytest.raises(RemoteStoreError):
        await remote.read("k")
    assert storage.calls["get"] == 3
    assert storage.max_active == 1

    # The slot comes back once the abandoned call finishes
    storage.delays.clear()
    assert await asyncio.wait_for(remote.read("k"), 1.0) == b"v"
    remote.close()


@pytest.mark.asyncio
async def test_check_is_single_attempt(storage, logger):
    storage.failures["check"] = TransientStorageError("unreachable")
    remote = make_remote(storage, logger, max_attempts=4)

    with pytest.raises(TransientStorageError):
        await remote.check()
    assert storage.calls["check"] == 1


def test_backoff_delay_is_capped_full_jitter(storage, logger):
    remote = make_remote(storage, logger, backoff_base=0.1, backoff_max=1.0, rng=random.Random(7))
    for attempt in range(1, 10):
        cap = min(1.0, 0.1 * 2 ** (attempt - 1))
        for _ in range(20):
            assert 0 <= remote.backoff_delay(attempt) <= cap
