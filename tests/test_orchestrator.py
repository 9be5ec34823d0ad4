import asyncio

import pytest

from quizshot.errors import ResourceBusyError, ResourceNotReadyError
from quizshot.screenshot.models import BatchOutcome
from quizshot.screenshot.orchestrator import BatchOrchestrator, wait_until_ready
from quizshot.screenshot.store import ImageStore

from conftest import FakeVideoSource, make_entry


def _orchestrator(cfg, tmp_path):
    return BatchOrchestrator(cfg, ImageStore(tmp_path / "spool"))


def test_one_failure_does_not_abort_run(capture_cfg, tmp_path):
    entries = [make_entry(t) for t in (1.0, 2.0, 3.0, 4.0)]
    source = FakeVideoSource(behaviors={3.0: "error"})
    progress = []

    run = asyncio.run(_orchestrator(capture_cfg, tmp_path).run(source, entries, on_progress=progress.append))

    assert len(run.results) == 3
    assert len(run.failures) == 1
    assert run.failures[0].source_timestamp == "t=3.0"
    assert run.failures[0].kind == "ResourceError"
    assert progress == [0.25, 0.5, 0.75, 1.0]
    assert run.progress == 1.0
    assert run.outcome == BatchOutcome.PARTIAL
    assert run.summary() == "仅成功截取 3/4 张截图"
    assert len(run.errors) == 1


def test_jobs_run_sequentially_in_entry_order(capture_cfg, tmp_path):
    times = [5.0, 1.0, 3.0, 1.0]
    source = FakeVideoSource()

    run = asyncio.run(_orchestrator(capture_cfg, tmp_path).run(source, [make_entry(t) for t in times]))

    assert source.seeks == times
    assert source.max_outstanding == 1
    assert [r.source_time_in_seconds for r in run.results] == times
    assert run.outcome == BatchOutcome.COMPLETE
    assert run.summary() is None


def test_filenames_and_ids_are_unique(capture_cfg, tmp_path):
    source = FakeVideoSource()
    run = asyncio.run(_orchestrator(capture_cfg, tmp_path).run(source, [make_entry(2.0)] * 5))

    assert len({r.filename for r in run.results}) == 5
    assert len({r.id for r in run.results}) == 5


def test_run_ids_differ_between_runs(capture_cfg, tmp_path):
    orch = _orchestrator(capture_cfg, tmp_path)
    first = asyncio.run(orch.run(FakeVideoSource(), [make_entry(1.0)]))
    second = asyncio.run(orch.run(FakeVideoSource(), [make_entry(1.0)]))
    assert first.results[0].id != second.results[0].id


def test_all_failures_reported_as_empty(capture_cfg, tmp_path):
    source = FakeVideoSource(duration=1.0)
    run = asyncio.run(_orchestrator(capture_cfg, tmp_path).run(source, [make_entry(5.0), make_entry(6.0)]))

    assert run.results == []
    assert run.outcome == BatchOutcome.EMPTY
    assert run.summary() == "未能成功截取任何截图"
    assert [f.kind for f in run.failures] == ["OutOfRangeError", "OutOfRangeError"]
    assert source.seeks == []


def test_settle_delay_between_jobs(capture_cfg, tmp_path, monkeypatch):
    cfg = capture_cfg.model_copy(update={"settle_delay_sec": 0.1})
    delays = []
    real_sleep = asyncio.sleep

    async def fake_sleep(delay, *args, **kwargs):
        delays.append(delay)
        await real_sleep(0)

    monkeypatch.setattr(asyncio, "sleep", fake_sleep)
    asyncio.run(_orchestrator(cfg, tmp_path).run(FakeVideoSource(), [make_entry(t) for t in (1.0, 2.0, 3.0)]))

    assert delays == [0.1, 0.1]


def test_waits_for_readiness(capture_cfg, tmp_path):
    source = FakeVideoSource(ready=False)

    async def scenario():
        source.load()
        return await _orchestrator(capture_cfg, tmp_path).run(source, [make_entry(1.0)])

    run = asyncio.run(scenario())
    assert len(run.results) == 1


def test_not_ready_aborts_run(tmp_path, capture_cfg):
    cfg = capture_cfg.model_copy(update={"ready_timeout_sec": 0.05})
    source = FakeVideoSource(ready=False, ready_on_load=False)

    with pytest.raises(ResourceNotReadyError):
        asyncio.run(_orchestrator(cfg, tmp_path).run(source, [make_entry(1.0)]))
    assert source.seeks == []
    assert source.listener_count() == 0


def test_wait_until_ready_error_signal():
    source = FakeVideoSource(ready=False, ready_on_load=False)

    async def scenario():
        asyncio.get_running_loop().call_soon(source._emit, "error", RuntimeError("bad file"))
        await wait_until_ready(source, 1.0)

    with pytest.raises(ResourceNotReadyError):
        asyncio.run(scenario())


def test_other_writers_blocked_during_run(capture_cfg, tmp_path):
    source = FakeVideoSource()
    blocked = []

    def on_progress(_):
        with pytest.raises(ResourceBusyError):
            source.seek(0.0)
        blocked.append(True)

    asyncio.run(_orchestrator(capture_cfg, tmp_path).run(source, [make_entry(1.0), make_entry(2.0)], on_progress=on_progress))

    assert blocked == [True, True]
    assert source.writer is None

    async def free_seek():
        source.seek(0.5)

    asyncio.run(free_seek())
    assert source.position == 0.5


def test_cancel_releases_partial_results(capture_cfg, tmp_path):
    cfg = capture_cfg.model_copy(update={"seek_timeout_sec": 5.0})
    source = FakeVideoSource(behaviors={2.0: "hang"})
    produced = []

    async def scenario():
        task = asyncio.ensure_future(
            _orchestrator(cfg, tmp_path).run(source, [make_entry(1.0), make_entry(2.0)], on_result=produced.append)
        )
        while not produced:
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())

    assert len(produced) == 1
    assert produced[0].image.released
    assert source.listener_count() == 0
    assert source.writer is None


def test_empty_entries_rejected(capture_cfg, tmp_path):
    with pytest.raises(ValueError):
        asyncio.run(_orchestrator(capture_cfg, tmp_path).run(FakeVideoSource(), []))


def test_store_write_failure_is_recorded_per_job(capture_cfg, tmp_path, monkeypatch):
    real_put = ImageStore.put

    def flaky_put(self, name, data):
        if name.startswith("screenshot_002"):
            raise OSError(28, "No space left on device")
        return real_put(self, name, data)

    monkeypatch.setattr(ImageStore, "put", flaky_put)
    entries = [make_entry(t) for t in (1.0, 2.0, 3.0)]

    run = asyncio.run(_orchestrator(capture_cfg, tmp_path).run(FakeVideoSource(), entries))

    assert len(run.results) == 2
    assert [f.kind for f in run.failures] == ["EncodeError"]
    assert run.failures[0].time_in_seconds == 2.0
    assert run.outcome == BatchOutcome.PARTIAL
    assert not any(r.image.released for r in run.results)


def test_unexpected_error_releases_produced_handles(capture_cfg, tmp_path):
    produced = []

    def on_result(result):
        produced.append(result)
        if len(produced) == 2:
            raise RuntimeError("consumer crashed")

    source = FakeVideoSource()
    entries = [make_entry(t) for t in (1.0, 2.0, 3.0)]

    with pytest.raises(RuntimeError):
        asyncio.run(_orchestrator(capture_cfg, tmp_path).run(source, entries, on_result=on_result))

    assert len(produced) == 2
    assert all(r.image.released for r in produced)
    assert not any(r.image.path.exists() for r in produced)
    assert source.seeks == [1.0, 2.0]
    assert source.writer is None
    assert source.listener_count() == 0
