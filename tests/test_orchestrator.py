import asyncio

import pytest
import requests

from fsbo_pipeline.errors import (
    RemoteClientError,
    RemoteJobCancelled,
    RemoteJobFailed,
    RemoteJobTimeout,
    RemoteTransientError,
    ResultsPageError,
)
from fsbo_pipeline.lobstr_client import ResultsPage
from fsbo_pipeline.orchestrator import (
    RemoteJob,
    RemoteJobOrchestrator,
    RunStatus,
    classify_status,
)


class FakeTimer:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def clock(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class FakeLobstrClient:
    def __init__(self, statuses=("completed",), pages=(), page_size=2, page_failures=None, squids=None):
        self.statuses = list(statuses)
        self.pages = [list(page) for page in pages]
        self.page_size = page_size
        self.page_failures = dict(page_failures or {})
        self.squids = squids or {}
        self.run_calls = 0
        self.page_calls = []
        self.created_tasks = []

    def find_squid(self, keyword):
        return self.squids.get(keyword)

    def create_task(self, squid_id, search_url=None):
        self.created_tasks.append((squid_id, search_url))
        return "task-1"

    def create_run(self, squid_id):
        return "run-1", "pending"

    def get_run(self, run_id):
        index = min(self.run_calls, len(self.statuses) - 1)
        self.run_calls += 1
        status = self.statuses[index]
        if isinstance(status, Exception):
            raise status
        return {"id": run_id, "status": status}

    def get_results(self, squid_id, run_id, page, page_size):
        self.page_calls.append(page)
        if self.page_failures.get(page, 0) > 0:
            self.page_failures[page] -= 1
            raise RemoteTransientError(f"page {page} unavailable")
        results = self.pages[page - 1] if page <= len(self.pages) else []
        return ResultsPage(page=page, page_size=page_size, results=results, total=len(results))


def _orchestrator(client, timer, **kwargs):
    options = {
        "squid_id": "squid-1",
        "poll_interval": 5.0,
        "max_wait": 300.0,
        "page_size": client.page_size,
        "page_delay": 1.0,
        "page_retries": 2,
        "sleep": timer.sleep,
        "clock": timer.clock,
    }
    options.update(kwargs)
    return RemoteJobOrchestrator(client, **options)


def _job():
    return RemoteJob(task_id="task-1", run_id="run-1", squid_id="squid-1")


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("pending", RunStatus.PENDING),
        ("started", RunStatus.RUNNING),
        ("processing", RunStatus.RUNNING),
        ("running", RunStatus.RUNNING),
        ("queued_on_new_worker", RunStatus.RUNNING),
        (None, RunStatus.RUNNING),
        ("completed", RunStatus.COMPLETED),
        ("SUCCESS", RunStatus.COMPLETED),
        ("aborted", RunStatus.FAILED),
        ("failed", RunStatus.FAILED),
        ("error", RunStatus.FAILED),
        ("timeout", RunStatus.FAILED),
    ],
)
def test_classify_status(raw, expected):
    assert classify_status(raw) is expected


def test_polling_resolves_on_third_poll():
    client = FakeLobstrClient(statuses=["pending", "started", "completed"])
    timer = FakeTimer()
    job = _job()

    run = asyncio.run(_orchestrator(client, timer).wait_for_completion(job))

    assert run["status"] == "completed"
    assert client.run_calls == 3
    assert timer.sleeps == [5.0, 5.0]
    assert job.status is RunStatus.COMPLETED


def test_failed_status_raises_without_further_polls():
    client = FakeLobstrClient(statuses=["pending", "failed", "completed"])
    timer = FakeTimer()

    with pytest.raises(RemoteJobFailed) as excinfo:
        asyncio.run(_orchestrator(client, timer).wait_for_completion(_job()))

    assert client.run_calls == 2
    assert excinfo.value.run_id == "run-1"
    assert excinfo.value.status == "failed"


def test_never_terminal_raises_timeout():
    client = FakeLobstrClient(statuses=["running"])
    timer = FakeTimer()

    with pytest.raises(RemoteJobTimeout) as excinfo:
        asyncio.run(_orchestrator(client, timer, max_wait=12.0).wait_for_completion(_job()))

    assert not isinstance(excinfo.value, RemoteJobFailed)
    assert client.run_calls == 3
    assert excinfo.value.status == "running"
    assert excinfo.value.waited_seconds > 12.0


def test_transient_poll_errors_are_retried():
    client = FakeLobstrClient(
        statuses=[requests.ConnectionError("reset"), RemoteTransientError("502"), "completed"]
    )
    timer = FakeTimer()
    job = _job()

    asyncio.run(_orchestrator(client, timer).wait_for_completion(job))

    assert client.run_calls == 3
    assert job.status is RunStatus.COMPLETED


def test_client_errors_propagate_from_polling():
    client = FakeLobstrClient(statuses=[RemoteClientError("404")])

    with pytest.raises(RemoteClientError):
        asyncio.run(_orchestrator(client, FakeTimer()).wait_for_completion(_job()))
    assert client.run_calls == 1


def test_unknown_status_keeps_polling():
    client = FakeLobstrClient(statuses=["warming_up", "completed"])

    asyncio.run(_orchestrator(client, FakeTimer()).wait_for_completion(_job()))

    assert client.run_calls == 2


def test_cancellation_is_distinct_from_timeout():
    client = FakeLobstrClient(statuses=["running"])
    timer = FakeTimer()

    async def scenario():
        cancel = asyncio.Event()
        orchestrator = _orchestrator(client, timer)

        async def sleep_then_cancel(seconds):
            await timer.sleep(seconds)
            cancel.set()

        orchestrator._sleep = sleep_then_cancel
        await orchestrator.wait_for_completion(_job(), cancel_event=cancel)

    with pytest.raises(RemoteJobCancelled) as excinfo:
        asyncio.run(scenario())

    assert not isinstance(excinfo.value, RemoteJobTimeout)
    assert client.run_calls == 1


def test_pagination_concatenates_pages_in_order():
    pages = [["a1", "a2"], ["b1", "b2"], ["c1", "c2"]]
    client = FakeLobstrClient(pages=[[{"id": item} for item in page] for page in pages])
    timer = FakeTimer()

    results = asyncio.run(_orchestrator(client, timer).fetch_all_results(_job()))

    assert [item["id"] for item in results] == ["a1", "a2", "b1", "b2", "c1", "c2"]
    assert client.page_calls == [1, 2, 3, 4]
    assert timer.sleeps == [1.0, 1.0, 1.0]


def test_pagination_truncates_to_max_results():
    client = FakeLobstrClient(pages=[[{"id": 1}, {"id": 2}], [{"id": 3}, {"id": 4}], [{"id": 5}, {"id": 6}]])

    results = asyncio.run(_orchestrator(client, FakeTimer()).fetch_all_results(_job(), max_results=3))

    assert [item["id"] for item in results] == [1, 2, 3]
    assert client.page_calls == [1, 2]


def test_pagination_stops_on_short_page():
    client = FakeLobstrClient(pages=[[{"id": 1}, {"id": 2}], [{"id": 3}]])

    results = asyncio.run(_orchestrator(client, FakeTimer()).fetch_all_results(_job()))

    assert len(results) == 3
    assert client.page_calls == [1, 2]


def test_page_fetch_is_retried_before_escalating():
    client = FakeLobstrClient(pages=[[{"id": 1}, {"id": 2}], [{"id": 3}]], page_failures={2: 1})

    results = asyncio.run(_orchestrator(client, FakeTimer()).fetch_all_results(_job()))

    assert len(results) == 3
    assert client.page_calls == [1, 2, 2]


def test_page_failure_without_retries_is_fatal():
    client = FakeLobstrClient(pages=[[{"id": 1}, {"id": 2}], [{"id": 3}]], page_failures={2: 1})

    with pytest.raises(ResultsPageError) as excinfo:
        asyncio.run(_orchestrator(client, FakeTimer(), page_retries=0).fetch_all_results(_job()))

    assert excinfo.value.page == 2


def test_run_threads_identifiers_through_the_whole_job():
    client = FakeLobstrClient(
        statuses=["pending", "completed"], pages=[[{"id": 1}]], squids={"idealista": "squid-9"}
    )
    orchestrator = _orchestrator(client, FakeTimer(), squid_id="", squid_keyword="idealista")

    results = asyncio.run(orchestrator.run(search_url="https://www.idealista.pt/comprar-casas/lisboa/"))

    assert results == [{"id": 1}]
    assert client.created_tasks == [("squid-9", "https://www.idealista.pt/comprar-casas/lisboa/")]


def test_missing_squid_is_a_client_error():
    orchestrator = _orchestrator(FakeLobstrClient(), FakeTimer(), squid_id="", squid_keyword="idealista")

    with pytest.raises(RemoteClientError):
        asyncio.run(orchestrator.start())


@pytest.mark.parametrize("max_results", [0, -1])
def test_max_results_below_one_is_rejected_before_any_call(max_results):
    client = FakeLobstrClient(pages=[[{"id": 1}, {"id": 2}]])
    orchestrator = _orchestrator(client, FakeTimer())

    with pytest.raises(ValueError):
        asyncio.run(orchestrator.run(max_results=max_results))
    with pytest.raises(ValueError):
        asyncio.run(orchestrator.fetch_all_results(_job(), max_results=max_results))

    assert client.created_tasks == []
    assert client.page_calls == []
