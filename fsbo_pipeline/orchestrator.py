from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import requests

from fsbo_pipeline.errors import (
    RemoteClientError,
    RemoteJobCancelled,
    RemoteJobFailed,
    RemoteJobTimeout,
    RemoteTransientError,
    ResultsPageError,
)
from fsbo_pipeline.lobstr_client import LobstrClient, ResultsPage

LOGGER = logging.getLogger(__name__)

TRANSIENT_ERRORS = (requests.RequestException, RemoteTransientError)


class RunStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


PENDING_STATUSES = frozenset({"pending"})
RUNNING_STATUSES = frozenset({"started", "processing", "running"})
COMPLETED_STATUSES = frozenset({"completed", "success"})
FAILED_STATUSES = frozenset({"aborted", "failed", "error", "timeout"})


def classify_status(raw_status: Any) -> RunStatus:
    # Unknown vendor statuses keep the job RUNNING; max_wait still bounds polling.
    value = str(raw_status or "").strip().lower()
    if value in PENDING_STATUSES:
        return RunStatus.PENDING
    if value in COMPLETED_STATUSES:
        return RunStatus.COMPLETED
    if value in FAILED_STATUSES:
        return RunStatus.FAILED
    return RunStatus.RUNNING


def is_known_status(raw_status: Any) -> bool:
    value = str(raw_status or "").strip().lower()
    return value in PENDING_STATUSES | RUNNING_STATUSES | COMPLETED_STATUSES | FAILED_STATUSES


@dataclass
class RemoteJob:
    task_id: str
    run_id: str
    squid_id: str
    status: RunStatus = RunStatus.PENDING
    raw_status: str = "pending"


class RemoteJobOrchestrator:
    def __init__(
        self,
        client: LobstrClient,
        *,
        squid_id: str = "",
        squid_keyword: str = "",
        poll_interval: float = 5.0,
        max_wait: float = 300.0,
        page_size: int = 100,
        page_delay: float = 1.0,
        page_retries: int = 2,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.squid_id = squid_id
        self.squid_keyword = squid_keyword
        self.poll_interval = poll_interval
        self.max_wait = max_wait
        self.page_size = page_size
        self.page_delay = page_delay
        self.page_retries = page_retries
        self._sleep = sleep
        self._clock = clock

    async def run(
        self,
        search_url: str | None = None,
        max_results: int | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> list[dict[str, Any]]:
        _check_max_results(max_results)
        job = await self.start(search_url)
        await self.wait_for_completion(job, cancel_event=cancel_event)
        return await self.fetch_all_results(job, max_results=max_results, cancel_event=cancel_event)

    async def start(self, search_url: str | None = None) -> RemoteJob:
        squid_id = await self._resolve_squid()
        task_id = await self._call(self.client.create_task, squid_id, search_url)
        run_id, raw_status = await self._call(self.client.create_run, squid_id)
        job = RemoteJob(
            task_id=task_id,
            run_id=run_id,
            squid_id=squid_id,
            status=classify_status(raw_status),
            raw_status=raw_status,
        )
        LOGGER.info("Started remote job task=%s run=%s status=%s", task_id, run_id, raw_status)
        return job

    async def wait_for_completion(
        self, job: RemoteJob, cancel_event: asyncio.Event | None = None
    ) -> dict[str, Any]:
        started_at = self._clock()
        attempts = 0

        while True:
            _raise_if_cancelled(job, cancel_event)
            elapsed = self._clock() - started_at
            if elapsed > self.max_wait:
                raise RemoteJobTimeout(
                    f"Run {job.run_id} did not finish within {self.max_wait:g}s "
                    f"(last status: {job.raw_status})",
                    run_id=job.run_id,
                    status=job.raw_status,
                    waited_seconds=elapsed,
                )

            attempts += 1
            try:
                run = await self._call(self.client.get_run, job.run_id)
            except TRANSIENT_ERRORS as exc:
                LOGGER.warning("Poll #%s of run %s failed, retrying: %s", attempts, job.run_id, exc)
            else:
                run = run if isinstance(run, dict) else {}
                raw_status = str(run.get("status") or run.get("state") or "unknown")
                job.raw_status = raw_status
                job.status = classify_status(raw_status)
                LOGGER.info(
                    "Run %s status=%s (poll #%s, %.0fs elapsed)",
                    job.run_id,
                    raw_status,
                    attempts,
                    elapsed,
                )

                if job.status is RunStatus.COMPLETED:
                    return run
                if job.status is RunStatus.FAILED:
                    detail = run.get("error") or run.get("message") or f"run was {raw_status}"
                    raise RemoteJobFailed(
                        f"Run {job.run_id} ended with status '{raw_status}': {detail}",
                        run_id=job.run_id,
                        status=raw_status,
                    )
                if not is_known_status(raw_status):
                    LOGGER.warning("Unknown status %r for run %s, still polling", raw_status, job.run_id)

            await self._sleep(self.poll_interval)

    async def fetch_all_results(
        self,
        job: RemoteJob,
        max_results: int | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> list[dict[str, Any]]:
        _check_max_results(max_results)
        results: list[dict[str, Any]] = []
        page = 1

        while True:
            _raise_if_cancelled(job, cancel_event)
            page_data = await self._fetch_page(job, page)
            results.extend(page_data.results)

            if max_results is not None and len(results) >= max_results:
                LOGGER.info("Reached max_results=%s for run %s", max_results, job.run_id)
                return results[:max_results]

            if not page_data.results or not page_data.has_more:
                break

            page += 1
            await self._sleep(self.page_delay)

        LOGGER.info("Fetched %s result(s) from run %s", len(results), job.run_id)
        return results

    async def _fetch_page(self, job: RemoteJob, page: int) -> ResultsPage:
        failures = 0
        while True:
            try:
                return await self._call(
                    self.client.get_results, job.squid_id, job.run_id, page, self.page_size
                )
            except TRANSIENT_ERRORS as exc:
                failures += 1
                if failures > self.page_retries:
                    raise ResultsPageError(
                        f"Results page {page} of run {job.run_id} failed after "
                        f"{failures} attempt(s): {exc}",
                        run_id=job.run_id,
                        page=page,
                    ) from exc
                LOGGER.warning(
                    "Results page %s of run %s failed (attempt %s), retrying: %s",
                    page,
                    job.run_id,
                    failures,
                    exc,
                )
                await self._sleep(self.page_delay)

    async def _resolve_squid(self) -> str:
        if self.squid_id:
            return self.squid_id
        if not self.squid_keyword:
            raise RemoteClientError("No squid id configured and no keyword to look one up")
        squid_id = await self._call(self.client.find_squid, self.squid_keyword)
        if not squid_id:
            raise RemoteClientError(f"No squid found matching {self.squid_keyword!r}")
        self.squid_id = squid_id
        return squid_id

    @staticmethod
    async def _call(func: Callable[..., Any], *args: Any) -> Any:
        return await asyncio.to_thread(func, *args)


def _check_max_results(max_results: int | None) -> None:
    if max_results is not None and max_results < 1:
        raise ValueError(f"max_results must be >= 1, got {max_results}")


def _raise_if_cancelled(job: RemoteJob, cancel_event: asyncio.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise RemoteJobCancelled(
            f"Run {job.run_id} cancelled (last status: {job.raw_status})",
            run_id=job.run_id,
            status=job.raw_status,
        )
