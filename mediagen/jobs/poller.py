"""Status polling: one generic loop for every provider, driven by its adapter.

A tick is one status call. Ticks are numbered; a result is applied only while
the job is still ``polling`` and only if no later tick has been applied, so a
slow response can never overwrite a newer state, and nothing lands on a
cancelled job.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

import httpx

from mediagen.assets import AssetStore
from mediagen.config import Settings
from mediagen.errors import (
    CredentialError,
    MaterializationError,
    ProtocolError,
    ProviderReportedFailure,
    TransientNetworkError,
)
from mediagen.providers import ProviderAdapter
from mediagen.providers.http import request_json
from mediagen.schemas.models import Job, JobState, NormalizedStatus, ProviderState, Submission

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[Job], None]


class StatusPoller:
    def __init__(
        self,
        settings: Settings,
        asset_store: AssetStore,
        client: httpx.AsyncClient,
        semaphore: asyncio.Semaphore | None = None,
    ):
        self._settings = settings
        self._assets = asset_store
        self._client = client
        self._semaphore = semaphore

    def _url(self, path: str) -> str:
        return f"{self._settings.provider_base_url.rstrip('/')}{path}"

    async def poll_once(self, job: Job, adapter: ProviderAdapter, credential: str) -> NormalizedStatus:
        """One status call for the job's correlation id, normalized by the adapter."""
        raw = await request_json(
            self._client,
            "GET",
            self._url(adapter.status_path(job.correlation_id)),
            credential,
            timeout=self._settings.request_timeout_seconds,
        )
        return adapter.parse_status(raw)

    @staticmethod
    def _accepts(job: Job, tick: int) -> bool:
        return job.status == JobState.POLLING and tick > job.last_tick

    async def apply(
        self,
        job: Job,
        tick: int,
        status: NormalizedStatus,
        adapter: ProviderAdapter,
        on_change: ChangeCallback | None = None,
    ) -> bool:
        """Apply one tick's status to the job. Returns False when the tick was discarded.

        On success the result is materialized before the job flips, so a
        succeeded job always has either a stored asset or a materialization warning.
        Raises ProtocolError when the provider claims success without a result URL.
        """
        if not self._accepts(job, tick):
            logger.debug("Discarding tick %d for job %s (%s)", tick, job.id, job.status.value)
            return False

        if status.state == ProviderState.PENDING:
            job.record_progress(tick, status.progress_percent)
        elif status.state == ProviderState.FAILED:
            job.fail(status.failure_message or "provider reported failure", tick=tick)
            logger.info("Job %s failed at provider: %s", job.id, job.failure_reason)
        else:
            if not status.result_url:
                raise ProtocolError("Provider reported success without a result URL")
            output_ref: str | None = None
            warning: str | None = None
            try:
                asset = await self._assets.materialize(status.result_url, adapter.result_category)
                output_ref = asset.relative_path
            except MaterializationError as e:
                warning = str(e)
                logger.warning("Job %s succeeded but result was not stored: %s", job.id, e)
            if not self._accepts(job, tick):
                logger.debug("Job %s changed during materialization; dropping tick %d", job.id, tick)
                return False
            job.succeed(tick, status.result_url, output_ref, warning)
            logger.info("Job %s succeeded (%s)", job.id, output_ref or "not materialized")

        if on_change is not None:
            on_change(job)
        return True

    def _fail(self, job: Job, reason: str, tick: int, on_change: ChangeCallback | None) -> None:
        if job.status != JobState.POLLING:
            return
        job.fail(reason, tick=tick)
        logger.warning("Job %s failed: %s", job.id, reason)
        if on_change is not None:
            on_change(job)

    async def run(
        self,
        job: Job,
        adapter: ProviderAdapter,
        credential: str,
        initial: Submission | None = None,
        on_change: ChangeCallback | None = None,
    ) -> Job:
        """Poll until the job is terminal. Never raises except on cancellation."""
        if self._semaphore is None:
            return await self._loop(job, adapter, credential, initial, on_change)
        async with self._semaphore:
            return await self._loop(job, adapter, credential, initial, on_change)

    async def _loop(
        self,
        job: Job,
        adapter: ProviderAdapter,
        credential: str,
        initial: Submission | None,
        on_change: ChangeCallback | None,
    ) -> Job:
        loop = asyncio.get_running_loop()
        started = loop.time()
        interval = self._settings.poll_interval_seconds
        budget = self._settings.job_timeout_seconds
        max_failures = self._settings.max_consecutive_poll_failures
        tick = max(job.last_tick, 0)
        failures = 0

        try:
            if initial is not None and initial.result_url and job.status == JobState.POLLING:
                # Synchronous submission: the result is tick 0, no status call needed
                done = NormalizedStatus(
                    state=ProviderState.SUCCEEDED, progress_percent=100, result_url=initial.result_url
                )
                await self.apply(job, 0, done, adapter, on_change)

            while job.status == JobState.POLLING:
                if budget is not None and loop.time() - started >= budget:
                    self._fail(job, f"timeout: no result after {budget:g}s", tick, on_change)
                    break
                await asyncio.sleep(interval)
                if job.status != JobState.POLLING:
                    break
                tick += 1
                try:
                    status = await self.poll_once(job, adapter, credential)
                    await self.apply(job, tick, status, adapter, on_change)
                except CredentialError as e:
                    self._fail(job, f"credential rejected while polling: {e}", tick, on_change)
                    break
                except ProviderReportedFailure as e:
                    self._fail(job, str(e), tick, on_change)
                    break
                except (TransientNetworkError, ProtocolError) as e:
                    failures += 1
                    logger.warning(
                        "Poll %d for job %s failed (%d/%d tolerated): %s",
                        tick, job.id, failures, max_failures, e,
                    )
                    if failures > max_failures:
                        what = "network" if isinstance(e, TransientNetworkError) else "protocol"
                        self._fail(
                            job,
                            f"{what} retries exhausted after {failures} consecutive failed polls: {e}",
                            tick,
                            on_change,
                        )
                        break
                    continue
                failures = 0
        except asyncio.CancelledError:
            if job.status == JobState.POLLING:
                job.cancel()
                if on_change is not None:
                    on_change(job)
            raise
        except Exception as e:
            logger.exception("Polling loop for job %s crashed", job.id)
            self._fail(job, f"internal error: {e}", tick, on_change)
        return job
