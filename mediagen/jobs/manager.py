"""Caller-facing facade over submission, polling, records and status streams."""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator

import httpx

from mediagen.assets import AssetStore
from mediagen.config import Settings, get_settings
from mediagen.errors import CredentialError, InvalidTransition, JobNotFound
from mediagen.jobs.models import HistoryPage, JobRecord, RecordStatus
from mediagen.jobs.poller import StatusPoller
from mediagen.jobs.store import JobRecordStore, get_record_store
from mediagen.jobs.submitter import JobSubmitter
from mediagen.providers import ProviderAdapter, get_adapter
from mediagen.schemas.models import (
    GenerationRequest,
    Job,
    JobState,
    MediaKind,
    NormalizedStatus,
    ProviderState,
    Submission,
)

logger = logging.getLogger(__name__)


class JobHandle:
    """A submitted job and the task polling it."""

    def __init__(self, job: Job, task: asyncio.Task):
        self.job = job
        self._task = task

    @property
    def id(self) -> str:
        return self.job.id

    def done(self) -> bool:
        return self._task.done()

    async def wait(self) -> Job:
        """Wait until polling has finished and the final record is written."""
        await asyncio.wait({self._task})
        return self.job


class JobManager:
    """Owns the HTTP client, the live job handles and the subscriber queues.

    Record writes run in worker threads, one job's writes in order, and a
    snapshot reaches subscribers only after its record is written. A handle is
    dropped once its job is finished; later reads are served from the record.

    Use as an async context manager, or call ``aclose()`` when done; closing
    stops every poll still running but leaves those records resumable.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        record_store: JobRecordStore | None = None,
        asset_store: AssetStore | None = None,
        client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._settings = settings or get_settings()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=self._settings.request_timeout_seconds,
            follow_redirects=True,
            transport=transport,
        )
        self._records = record_store or get_record_store(settings)
        self._assets = asset_store or AssetStore(
            self._settings.uploads_dir,
            self._settings.asset_base_url,
            client=self._client,
            timeout=self._settings.request_timeout_seconds,
        )
        limit = self._settings.max_concurrent_polls
        semaphore = asyncio.Semaphore(limit) if limit else None
        self._submitter = JobSubmitter(self._settings, self._assets, self._client)
        self._poller = StatusPoller(self._settings, self._assets, self._client, semaphore)
        self._handles: dict[str, JobHandle] = {}
        self._latest: dict[str, Job] = {}
        self._subscribers: dict[str, set[asyncio.Queue]] = {}
        self._writes: dict[str, asyncio.Task] = {}
        self._closing = False

    @property
    def assets(self) -> AssetStore:
        return self._assets

    @property
    def records(self) -> JobRecordStore:
        return self._records

    async def __aenter__(self) -> "JobManager":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        self._closing = True
        running = [h for h in self._handles.values() if not h.done()]
        for handle in running:
            handle._task.cancel()
        if running:
            await asyncio.gather(*(h._task for h in running), return_exceptions=True)
        if self._writes:
            await asyncio.gather(*list(self._writes.values()), return_exceptions=True)
        if self._owns_client:
            await self._client.aclose()

    # -- change propagation -----------------------------------------------

    def _on_change(self, job: Job) -> None:
        snapshot = job.model_copy(deep=True)
        # Stopping for shutdown is not a caller's cancel: the record stays resumable
        persist = not (self._closing and snapshot.status == JobState.CANCELLED)
        previous = self._writes.get(job.id)
        self._writes[job.id] = asyncio.create_task(
            self._persist(snapshot, previous, persist), name=f"record-{job.id}"
        )

    async def _persist(self, snapshot: Job, previous: asyncio.Task | None, persist: bool) -> None:
        if previous is not None:
            await asyncio.wait({previous})
        if persist:
            try:
                await asyncio.to_thread(self._write_record, snapshot)
            except Exception:
                logger.exception("Could not write record for job %s", snapshot.id)
        self._publish(snapshot)
        if self._writes.get(snapshot.id) is asyncio.current_task():
            del self._writes[snapshot.id]

    def _write_record(self, job: Job) -> None:
        record = self._records.get(job.id)
        if record is not None:
            record.apply(job)
            self._records.update(record)

    def _publish(self, snapshot: Job) -> None:
        if snapshot.id in self._handles:
            self._latest[snapshot.id] = snapshot
        for queue in list(self._subscribers.get(snapshot.id, ())):
            queue.put_nowait(snapshot)

    async def _flush(self, job_id: str) -> None:
        pending = self._writes.get(job_id)
        if pending is not None:
            await asyncio.wait({pending})

    def _start(
        self,
        job: Job,
        adapter: ProviderAdapter,
        credential: str,
        initial: Submission | None,
    ) -> JobHandle:
        task = asyncio.create_task(
            self._drive(job, adapter, credential, initial),
            name=f"poll-{job.id}",
        )
        handle = JobHandle(job, task)
        self._handles[job.id] = handle
        self._latest[job.id] = job.model_copy(deep=True)
        task.add_done_callback(self._log_finished)
        task.add_done_callback(lambda t: self._forget(job.id, t))
        return handle

    async def _drive(
        self,
        job: Job,
        adapter: ProviderAdapter,
        credential: str,
        initial: Submission | None,
    ) -> Job:
        try:
            return await self._poller.run(
                job, adapter, credential, initial=initial, on_change=self._on_change
            )
        finally:
            await self._flush(job.id)

    def _forget(self, job_id: str, task: asyncio.Task) -> None:
        handle = self._handles.get(job_id)
        if handle is not None and handle._task is task:
            del self._handles[job_id]
            self._latest.pop(job_id, None)

    @staticmethod
    def _log_finished(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Polling task %s ended with %r", task.get_name(), error)

    # -- lifecycle --------------------------------------------------------

    async def submit(self, request: GenerationRequest) -> JobHandle:
        """Submit and start polling. Raises before any job exists if submission fails."""
        job, submission = await self._submitter.submit(request)
        await asyncio.to_thread(self._records.create, JobRecord.from_job(job, request))
        adapter = self._submitter.adapter_for(request)
        credential = request.credential.get_secret_value().strip()
        return self._start(job, adapter, credential, submission)

    def get(self, job_id: str) -> Job:
        """The live job, or the job its record projects once polling has ended."""
        handle = self._handles.get(job_id)
        if handle is not None:
            return handle.job
        return self.record(job_id).to_job()

    def live_count(self) -> int:
        """Jobs whose polling task is still running."""
        return sum(1 for h in self._handles.values() if not h.done())

    def cancel(self, job_id: str) -> Job:
        """Stop polling. No further state change is applied, even from an in-flight call.

        A processing record nobody is polling is marked cancelled too, so it is
        never resumed.
        """
        handle = self._handles.get(job_id)
        job = handle.job if handle is not None else self.record(job_id).to_job()
        job.cancel()
        self._on_change(job)
        if handle is not None:
            handle._task.cancel()
        logger.info("Job %s cancelled", job_id)
        return job

    async def subscribe(self, job_id: str) -> AsyncIterator[Job]:
        """Yield job snapshots, starting with the current one, until a terminal snapshot.

        A job that is no longer polled yields its recorded state once.
        """
        handle = self._handles.get(job_id)
        if handle is None:
            yield self.record(job_id).to_job()
            return
        queue: asyncio.Queue = asyncio.Queue()
        subscribers = self._subscribers.setdefault(job_id, set())
        subscribers.add(queue)
        try:
            current = self._latest.get(job_id) or handle.job.model_copy(deep=True)
            yield current
            if current.is_terminal:
                return
            while True:
                snapshot = await queue.get()
                yield snapshot
                if snapshot.is_terminal:
                    return
        finally:
            subscribers.discard(queue)
            if not subscribers and self._subscribers.get(job_id) is subscribers:
                del self._subscribers[job_id]

    async def resume(self, job_id: str, credential: str) -> JobHandle:
        """Restart polling for a persisted job still marked processing."""
        existing = self._handles.get(job_id)
        if existing is not None:
            if not existing.done():
                return existing
            await existing.wait()
        record = await asyncio.to_thread(self.record, job_id)
        if record.cancelled:
            raise InvalidTransition(f"Job {job_id} was cancelled; submit a new job instead")
        if record.status != RecordStatus.PROCESSING:
            raise InvalidTransition(f"Job {job_id} is {record.status.value}; only processing jobs resume")
        if not credential.strip():
            raise CredentialError("No API key supplied")
        job = record.to_job()
        adapter = get_adapter(job.kind, job.provider_id, strict=self._settings.strict_parameters)
        logger.info("Resuming polling for job %s (%s)", job.id, job.correlation_id)
        return self._start(job, adapter, credential.strip(), None)

    # -- one-shot status re-check -----------------------------------------

    async def check_status(
        self, kind: MediaKind | str, task_id: str, credential: str
    ) -> tuple[JobRecord, NormalizedStatus]:
        """Poll the provider once for a persisted task and fold the answer into its record.

        Finished jobs, cancelled ones included, are never changed by the answer,
        except that a succeeded job whose result was not stored gets it now.
        """
        kind = MediaKind(kind)
        if not credential.strip():
            raise CredentialError("No API key supplied")
        record = await asyncio.to_thread(self._records.get_by_correlation_id, kind, task_id)
        if record is None:
            raise JobNotFound(f"No {kind.value} job with task id {task_id}")
        adapter = get_adapter(kind, record.model, strict=self._settings.strict_parameters)

        live = self._handles.get(record.job_id)
        if live is not None and not live.done():
            # The running loop owns the state; it will apply its own ticks
            status = await self._poller.poll_once(live.job, adapter, credential.strip())
            return self.record(record.job_id), status

        job = live.job if live is not None else record.to_job()
        status = await self._poller.poll_once(job, adapter, credential.strip())
        if job.status == JobState.POLLING:
            await self._poller.apply(job, job.last_tick + 1, status, adapter, on_change=self._on_change)
        elif (
            job.status == JobState.SUCCEEDED
            and job.output_asset_ref is None
            and status.state == ProviderState.SUCCEEDED
            and status.result_url
        ):
            job.result_url = status.result_url
            await self._rematerialize(job, adapter)
        await self._flush(job.id)
        return self.record(record.job_id), status

    # -- materialization --------------------------------------------------

    async def _rematerialize(self, job: Job, adapter: ProviderAdapter) -> Job:
        asset = await self._assets.materialize(job.result_url, adapter.result_category)
        job.attach_output(asset.relative_path)
        self._on_change(job)
        await self._flush(job.id)
        return job

    async def retry_materialization(self, job_id: str) -> Job:
        """Re-fetch the result of a succeeded job whose first download failed."""
        job = self.get(job_id)
        if job.status != JobState.SUCCEEDED or not job.result_url:
            raise InvalidTransition(f"Job {job_id} has no provider result to materialize")
        if job.output_asset_ref is not None:
            return job
        adapter = get_adapter(job.kind, job.provider_id)
        return await self._rematerialize(job, adapter)

    # -- records ------------------------------------------------------------

    def record(self, job_id: str) -> JobRecord:
        record = self._records.get(job_id)
        if record is None:
            raise JobNotFound(f"No job record {job_id}")
        return record

    def history(self, kind: MediaKind | str | None = None, page: int = 1, limit: int = 10) -> HistoryPage:
        return self._records.list(MediaKind(kind) if kind else None, page=page, limit=limit)
