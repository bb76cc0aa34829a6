from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from fsbo_pipeline.errors import RemoteClientError, RemoteTransientError

LOGGER = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = frozenset({429, 500, 502, 503, 504})
LIST_KEYS = ("results", "squids", "runs", "data", "items")


@dataclass(frozen=True)
class ResultsPage:
    page: int
    page_size: int
    results: list[dict[str, Any]] = field(default_factory=list)
    total: int = 0
    next: str | None = None

    @property
    def has_more(self) -> bool:
        return self.next is not None or (self.page_size > 0 and len(self.results) >= self.page_size)


class LobstrClient:
    """Thin blocking client for the Lobstr squid / task / run / results API."""

    def __init__(
        self,
        *,
        api_key: str,
        api_base: str,
        timeout_seconds: int,
        max_retries: int,
    ) -> None:
        self.api_base = api_base.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.session = requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Token {api_key}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            }
        )
        retry = Retry(
            total=max_retries,
            backoff_factor=1.0,
            status_forcelist=sorted(TRANSIENT_STATUS_CODES),
            allowed_methods=frozenset(["GET"]),
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry)
        self.session.mount("https://", adapter)
        self.session.mount("http://", adapter)

    def list_squids(self) -> list[dict[str, Any]]:
        data = self._request("GET", "/squids")
        squids = [item for item in _extract_list(data) if isinstance(item, dict)]
        LOGGER.info("Found %s squid(s)", len(squids))
        return squids

    def find_squid(self, keyword: str) -> str | None:
        keyword = keyword.lower()
        for squid in self.list_squids():
            haystack = " ".join(
                str(squid.get(key) or "") for key in ("name", "slug", "description")
            ).lower()
            if keyword in haystack:
                squid_id = _first_present(squid, ("id", "uuid", "squid_id"))
                if squid_id:
                    LOGGER.info("Using squid %s matching %r", squid_id, keyword)
                    return str(squid_id)
        LOGGER.warning("No squid matches keyword %r", keyword)
        return None

    def create_task(self, squid_id: str, search_url: str | None = None) -> str:
        body: dict[str, Any] = {"squid": squid_id}
        if search_url:
            body["tasks"] = [{"url": search_url}]
        data = self._request("POST", "/tasks", json=body)
        if not isinstance(data, dict):
            raise RemoteClientError(f"Unexpected create-task response: {data}")

        task_id = _first_present(data, ("id", "task_id", "taskId"))
        if not task_id and isinstance(data.get("task"), dict):
            task_id = data["task"].get("id")
        if not task_id and isinstance(data.get("tasks"), list) and data["tasks"]:
            first = data["tasks"][0]
            task_id = first.get("id") if isinstance(first, dict) else None
        if not task_id:
            raise RemoteClientError(f"Task id missing from create-task response: {data}")

        LOGGER.info("Created task %s for squid %s", task_id, squid_id)
        return str(task_id)

    def create_run(self, squid_id: str) -> tuple[str, str]:
        data = self._request("POST", "/runs", json={"squid": squid_id})
        if not isinstance(data, dict):
            raise RemoteClientError(f"Unexpected create-run response: {data}")

        run_id = _first_present(data, ("id", "run_id", "runId"))
        if not run_id and isinstance(data.get("run"), dict):
            run_id = data["run"].get("id")
        if not run_id:
            raise RemoteClientError(f"Run id missing from create-run response: {data}")

        status = str(_first_present(data, ("status", "state")) or "pending")
        LOGGER.info("Created run %s (status=%s)", run_id, status)
        return str(run_id), status

    def get_run(self, run_id: str) -> dict[str, Any]:
        return self._request("GET", f"/runs/{run_id}")

    def get_results(self, squid_id: str, run_id: str, page: int, page_size: int) -> ResultsPage:
        data = self._request(
            "GET",
            "/results",
            params={"squid": squid_id, "run": run_id, "page": page, "page_size": page_size},
        )
        results = [item for item in _extract_list(data) if isinstance(item, dict)]
        total = _first_present(data, ("total", "count")) if isinstance(data, dict) else None
        next_page = data.get("next") if isinstance(data, dict) else None
        page_result = ResultsPage(
            page=page,
            page_size=page_size,
            results=results,
            total=int(total) if isinstance(total, (int, float)) else len(results),
            next=str(next_page) if next_page else None,
        )
        LOGGER.debug(
            "Results page %s of run %s: %s item(s), has_more=%s",
            page,
            run_id,
            len(results),
            page_result.has_more,
        )
        return page_result

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        response = self.session.request(
            method, f"{self.api_base}{path}", timeout=self.timeout_seconds, **kwargs
        )
        if response.status_code in TRANSIENT_STATUS_CODES or response.status_code >= 500:
            raise RemoteTransientError(
                f"{method} {path} returned {response.status_code}: {response.text[:300]}"
            )
        if response.status_code >= 400:
            LOGGER.error(
                "Lobstr %s %s failed status=%s body=%s",
                method,
                path,
                response.status_code,
                response.text,
            )
            raise RemoteClientError(f"{method} {path} returned {response.status_code}")
        try:
            return response.json()
        except ValueError as exc:
            raise RemoteTransientError(f"{method} {path} returned a non-JSON body") from exc


def _extract_list(data: Any) -> list[Any]:
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in LIST_KEYS:
            value = data.get(key)
            if isinstance(value, list):
                return value
    return []


def _first_present(data: Any, keys: tuple[str, ...]) -> Any:
    if not isinstance(data, dict):
        return None
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return None
