"""Tests for the job manager: subscriptions, cancellation, re-checks, resume, concurrency."""

import asyncio
import threading

import pytest

from conftest import video_request
from mediagen.errors import CredentialError, InvalidTransition, JobNotFound
from mediagen.jobs import FileJobRecordStore, JobManager, JobRecord, RecordStatus
from mediagen.schemas.models import JobState, MediaKind, ProviderState

RESULT_URL = "https://cdn.test/out.mp4"


def _manager(settings, record_store, provider):
    return JobManager(settings, record_store=record_store, transport=provider.transport)


def _processing_record(record_store, task_id="task-9") -> JobRecord:
    return record_store.create(
        JobRecord(
            job_id="job_00000000000000a9",
            kind=MediaKind.VIDEO,
            prompt="a lighthouse",
            model="sora2",
            sub_model="sora-2",
            correlation_id=task_id,
            status=RecordStatus.PROCESSING,
            progress=20,
        )
    )


def test_subscribe_streams_until_terminal(settings, record_store, provider):
    provider.statuses["task-1"] = [
        (200, {"status": "IN_PROGRESS", "progress": "40%"}),
        (200, {"status": "IN_PROGRESS", "progress": "70%"}),
        (200, {"status": "SUCCESS", "data": {"output": RESULT_URL}}),
    ]
    provider.downloads[RESULT_URL] = (200, b"video-bytes", "video/mp4")

    async def scenario():
        async with _manager(settings, record_store, provider) as manager:
            handle = await manager.submit(video_request())
            return [snapshot async for snapshot in manager.subscribe(handle.id)]

    snapshots = asyncio.run(scenario())
    assert [s.progress_percent for s in snapshots] == [0, 40, 70, 100]
    assert snapshots[-1].status == JobState.SUCCEEDED
    assert all(not s.is_terminal for s in snapshots[:-1])


def test_subscribe_to_finished_job_yields_once(settings, record_store, provider):
    provider.statuses["task-1"] = [(200, {"status": "FAILURE"})]

    async def scenario():
        async with _manager(settings, record_store, provider) as manager:
            handle = await manager.submit(video_request())
            await handle.wait()
            return [snapshot async for snapshot in manager.subscribe(handle.id)]

    snapshots = asyncio.run(scenario())
    assert len(snapshots) == 1
    assert snapshots[0].status == JobState.FAILED


def test_cancel_stops_polling(settings, record_store, provider):
    provider.statuses["task-1"] = [(200, {"status": "IN_PROGRESS", "progress": "5%"})]

    async def scenario():
        async with _manager(settings, record_store, provider) as manager:
            handle = await manager.submit(video_request())
            await asyncio.sleep(0.01)
            manager.cancel(handle.id)
            job = await handle.wait()
            polls = len(provider.status_polls())
            await asyncio.sleep(0.01)
            return job, polls

    job, polls = asyncio.run(scenario())
    assert job.status == JobState.CANCELLED
    assert len(provider.status_polls()) == polls
    # the provider task is still running, so the record stays re-checkable
    assert record_store.get(job.id).status == RecordStatus.PROCESSING
    assert record_store.get(job.id).cancelled


def test_unknown_job(settings, record_store, provider):
    async def scenario():
        async with _manager(settings, record_store, provider) as manager:
            with pytest.raises(JobNotFound):
                manager.get("job_nope")
            with pytest.raises(JobNotFound):
                manager.cancel("job_nope")
            with pytest.raises(JobNotFound):
                manager.record("job_nope")

    asyncio.run(scenario())


def test_check_status_updates_record_and_stores_result(settings, record_store, provider):
    _processing_record(record_store)
    provider.statuses["task-9"] = [(200, {"status": "SUCCESS", "data": {"output": RESULT_URL}})]
    provider.downloads[RESULT_URL] = (200, b"video-bytes", "video/mp4")

    async def scenario():
        async with _manager(settings, record_store, provider) as manager:
            return await manager.check_status("video", "task-9", "sk-test")

    record, status = asyncio.run(scenario())
    assert status.state == ProviderState.SUCCEEDED
    assert record.status == RecordStatus.SUCCESS
    assert record.result_asset_name.startswith("videos/results/")
    assert record_store.get(record.job_id).result_asset_name == record.result_asset_name


def test_check_status_pending_keeps_processing(settings, record_store, provider):
    _processing_record(record_store)
    provider.statuses["task-9"] = [(200, {"status": "IN_PROGRESS", "progress": "65%"})]

    async def scenario():
        async with _manager(settings, record_store, provider) as manager:
            return await manager.check_status(MediaKind.VIDEO, "task-9", "sk-test")

    record, status = asyncio.run(scenario())
    assert status.progress_percent == 65
    assert record.status == RecordStatus.PROCESSING
    assert record.progress == 65


def test_check_status_errors(settings, record_store, provider):
    async def scenario():
        async with _manager(settings, record_store, provider) as manager:
            with pytest.raises(CredentialError):
                await manager.check_status("video", "task-9", "")
            with pytest.raises(JobNotFound):
                await manager.check_status("video", "task-404", "sk-test")

    asyncio.run(scenario())


def test_resume_processing_record(settings, record_store, provider):
    record = _processing_record(record_store)
    provider.statuses["task-9"] = [(200, {"status": "FAILURE", "fail_reason": "gpu lost"})]

    async def scenario():
        async with _manager(settings, record_store, provider) as manager:
            handle = await manager.resume(record.job_id, "sk-test")
            job = await handle.wait()
            with pytest.raises(InvalidTransition):
                await manager.resume(record.job_id, "sk-test")
            return job

    job = asyncio.run(scenario())
    assert job.status == JobState.FAILED
    assert record_store.get(record.job_id).failure_reason == "gpu lost"


def test_retry_materialization(settings, record_store, provider):
    provider.statuses["task-1"] = [(200, {"status": "SUCCESS", "data": {"output": RESULT_URL}})]

    async def scenario():
        async with _manager(settings, record_store, provider) as manager:
            handle = await manager.submit(video_request())
            job = await handle.wait()
            assert job.materialization_warning
            provider.downloads[RESULT_URL] = (200, b"video-bytes", "video/mp4")
            return await manager.retry_materialization(job.id)

    job = asyncio.run(scenario())
    assert job.output_asset_ref.startswith("videos/results/")
    assert job.materialization_warning is None
    record = record_store.get(job.id)
    assert record.result_asset_name == job.output_asset_ref
    assert record.materialization_warning is None


def test_retry_materialization_needs_success(settings, record_store, provider):
    provider.statuses["task-1"] = [(200, {"status": "FAILURE"})]

    async def scenario():
        async with _manager(settings, record_store, provider) as manager:
            handle = await manager.submit(video_request())
            await handle.wait()
            with pytest.raises(InvalidTransition):
                await manager.retry_materialization(handle.id)

    asyncio.run(scenario())


def test_concurrency_bound_serializes_polling(settings, record_store, provider):
    settings.max_concurrent_polls = 1
    provider.submissions = [(200, {"task_id": "task-a"}), (200, {"task_id": "task-b"})]
    provider.statuses["*"] = [
        (200, {"status": "IN_PROGRESS"}),
        (200, {"status": "IN_PROGRESS"}),
        (200, {"status": "FAILURE"}),
    ]
    provider.statuses["task-a"] = list(provider.statuses["*"])
    provider.statuses["task-b"] = list(provider.statuses["*"])

    async def scenario():
        async with _manager(settings, record_store, provider) as manager:
            first = await manager.submit(video_request())
            second = await manager.submit(video_request())
            await asyncio.gather(first.wait(), second.wait())

    asyncio.run(scenario())
    polls = provider.status_polls()
    assert polls == ["task-a"] * 3 + ["task-b"] * 3


def test_history_through_manager(settings, record_store, provider):
    provider.statuses["task-1"] = [(200, {"status": "FAILURE"})]

    async def scenario():
        async with _manager(settings, record_store, provider) as manager:
            handle = await manager.submit(video_request())
            await handle.wait()
            return manager.history("video"), manager.history("image")

    videos, images = asyncio.run(scenario())
    assert videos.pagination.total == 1
    assert videos.records[0].status == RecordStatus.FAILED
    assert images.records == []


def _cancel_while_pending(manager, provider):
    async def cancelled_job():
        handle = await manager.submit(video_request())
        await asyncio.sleep(0.01)
        manager.cancel(handle.id)
        job = await handle.wait()
        provider.statuses["task-1"] = [(200, {"status": "SUCCESS", "data": {"output": RESULT_URL}})]
        provider.downloads[RESULT_URL] = (200, b"video-bytes", "video/mp4")
        return job

    return cancelled_job()


def test_status_check_does_not_revive_cancelled_job(settings, record_store, provider):
    provider.statuses["task-1"] = [(200, {"status": "IN_PROGRESS"})]

    async def scenario():
        async with _manager(settings, record_store, provider) as manager:
            job = await _cancel_while_pending(manager, provider)
            record, status = await manager.check_status("video", "task-1", "sk-test")
            return job, record, status, manager.get(job.id)

    job, record, status, current = asyncio.run(scenario())
    assert status.state == ProviderState.SUCCEEDED
    assert record.status == RecordStatus.PROCESSING
    assert record.cancelled
    assert record.result_asset_name is None
    assert current.status == JobState.CANCELLED
    assert not list((settings.uploads_dir / "videos").rglob("*.mp4"))


def test_cancelled_job_cannot_resume(settings, record_store, provider):
    provider.statuses["task-1"] = [(200, {"status": "IN_PROGRESS"})]

    async def scenario():
        async with _manager(settings, record_store, provider) as manager:
            job = await _cancel_while_pending(manager, provider)
            with pytest.raises(InvalidTransition):
                await manager.resume(job.id, "sk-test")
            return job

    job = asyncio.run(scenario())

    async def restarted():
        async with _manager(settings, record_store, provider) as manager:
            with pytest.raises(InvalidTransition):
                await manager.resume(job.id, "sk-test")
            record, _ = await manager.check_status("video", "task-1", "sk-test")
            return record, manager.get(job.id)

    record, current = asyncio.run(restarted())
    assert record.cancelled
    assert record.result_asset_name is None
    assert current.status == JobState.CANCELLED


def test_cancel_unpolled_record_blocks_resume(settings, record_store, provider):
    record = _processing_record(record_store)

    async def cancel():
        async with _manager(settings, record_store, provider) as manager:
            return manager.cancel(record.job_id)

    assert asyncio.run(cancel()).status == JobState.CANCELLED
    assert record_store.get(record.job_id).cancelled

    async def cancel_again():
        async with _manager(settings, record_store, provider) as manager:
            with pytest.raises(InvalidTransition):
                manager.cancel(record.job_id)
            with pytest.raises(InvalidTransition):
                await manager.resume(record.job_id, "sk-test")

    asyncio.run(cancel_again())


def test_shutdown_leaves_polling_records_resumable(settings, record_store, provider):
    provider.statuses["task-1"] = [(200, {"status": "IN_PROGRESS", "progress": "30%"})]

    async def first_process():
        async with _manager(settings, record_store, provider) as manager:
            handle = await manager.submit(video_request())
            await asyncio.sleep(0.01)
            return handle.id

    job_id = asyncio.run(first_process())
    stored = record_store.get(job_id)
    assert stored.status == RecordStatus.PROCESSING
    assert not stored.cancelled

    provider.statuses["task-1"] = [(200, {"status": "FAILURE", "fail_reason": "gpu lost"})]

    async def second_process():
        async with _manager(settings, record_store, provider) as manager:
            handle = await manager.resume(job_id, "sk-test")
            return await handle.wait()

    assert asyncio.run(second_process()).status == JobState.FAILED
    assert record_store.get(job_id).failure_reason == "gpu lost"


class _ThreadRecordingStore(FileJobRecordStore):
    def __init__(self, jobs_dir):
        super().__init__(jobs_dir)
        self.update_threads: set[int] = set()

    def update(self, record):
        self.update_threads.add(threading.get_ident())
        super().update(record)


def test_record_writes_run_off_the_event_loop(settings, provider):
    store = _ThreadRecordingStore(settings.jobs_dir)
    provider.statuses["task-1"] = [
        (200, {"status": "IN_PROGRESS", "progress": "50%"}),
        (200, {"status": "FAILURE"}),
    ]

    async def scenario():
        async with _manager(settings, store, provider) as manager:
            handle = await manager.submit(video_request())
            await handle.wait()
            return threading.get_ident()

    loop_thread = asyncio.run(scenario())
    assert store.update_threads
    assert loop_thread not in store.update_threads
    assert store.get_by_correlation_id("video", "task-1").status == RecordStatus.FAILED


def test_finished_jobs_are_served_from_records(settings, record_store, provider):
    provider.statuses["task-1"] = [
        (200, {"status": "IN_PROGRESS", "progress": "50%"}),
        (200, {"status": "FAILURE", "fail_reason": "nsfw"}),
    ]

    async def scenario():
        async with _manager(settings, record_store, provider) as manager:
            handle = await manager.submit(video_request())
            streamed = [snapshot async for snapshot in manager.subscribe(handle.id)]
            await handle.wait()
            replay = [snapshot async for snapshot in manager.subscribe(handle.id)]
            return manager, streamed, replay, manager.get(handle.id)

    manager, streamed, replay, current = asyncio.run(scenario())
    assert manager.live_count() == 0
    assert not manager._handles
    assert not manager._subscribers
    assert streamed[-1].status == JobState.FAILED
    assert [s.status for s in replay] == [JobState.FAILED]
    assert current.failure_reason == "nsfw"
