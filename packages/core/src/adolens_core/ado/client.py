"""Thin Azure DevOps REST client used for every read the session performs.

Pageable list endpoints go through query(), which pages with $top/$skip.
Thread and work item lists ignore $top/$skip and return the whole collection,
so they are fetched with one request through get_list(). Reads are never
retried: a failing page aborts the whole query with RemoteQueryFailed.
Writes (thread and comment mutations) live in adolens_core.ado.threads and
use request() directly so they can treat failures as non-fatal.
"""

from __future__ import annotations

import logging
from typing import Callable

import requests

from adolens_core.ado.auth import build_auth_header
from adolens_core.errors import RemoteQueryFailed
from adolens_core.models import Credential, PullRequestRef, Thread

logger = logging.getLogger(__name__)

_DEFAULT_API_VERSION = "7.1"
_DEFAULT_PAGE_SIZE = 100
_REQUEST_TIMEOUT = 30


def error_detail(response: requests.Response) -> str:
    """Best-effort message from an error response body."""
    try:
        data = response.json()
    except ValueError:
        return (response.text or "")[:500]
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return str(data)[:500]


class AzureDevOpsClient:
    def __init__(
        self,
        credential: Credential,
        api_version: str = _DEFAULT_API_VERSION,
        page_size: int = _DEFAULT_PAGE_SIZE,
        session: requests.Session | None = None,
    ):
        if page_size < 1:
            raise ValueError(f"page_size must be positive, got {page_size}")
        self.api_version = api_version
        self.page_size = page_size
        self._session = session if session is not None else requests.Session()
        self._session.headers.update(build_auth_header(credential))
        self._session.headers.update({"Accept": "application/json"})

    def request(self, method: str, url: str, params: dict | None = None, json: dict | None = None):
        merged = {**(params or {}), "api-version": self.api_version}
        logger.debug("%s %s", method, url)
        return self._session.request(method, url, params=merged, json=json, timeout=_REQUEST_TIMEOUT)

    def get_json(self, url: str, params: dict | None = None, page_index: int = 0) -> dict:
        try:
            response = self.request("GET", url, params=params)
        except requests.RequestException as e:
            raise RemoteQueryFailed(f"Request to the review service failed: {e}", url, page_index) from e
        if not response.ok:
            raise RemoteQueryFailed(
                f"Review service returned an error: {error_detail(response)}",
                url,
                page_index,
                response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise RemoteQueryFailed("Review service returned invalid JSON", url, page_index, response.status_code) from e

    def query(
        self,
        url: str,
        page_size: int | None = None,
        max_results: int | None = None,
        until: Callable[[dict], bool] | None = None,
        params: dict | None = None,
        records_key: str = "value",
    ) -> list[dict]:
        """Fetch a collection page by page.

        Stops at the first page whose length differs from page_size, or that
        repeats the previous page, so an endpoint that ignores $top/$skip
        still ends after its first or second request. When ``until`` is
        given, returns ``[record]`` as soon as a record satisfies it, without
        requesting further pages. ``max_results`` truncates the accumulated
        records client-side.
        """
        size = page_size or self.page_size
        records: list[dict] = []
        previous: list[dict] | None = None
        page_index = 0
        while True:
            page_params = {**(params or {}), "$top": size, "$skip": page_index * size}
            data = self.get_json(url, params=page_params, page_index=page_index)
            page = data.get(records_key) or []
            logger.debug("Page %d of %s: %d record(s)", page_index, url, len(page))

            if page and page == previous:
                logger.debug("Page %d of %s repeats the previous page; the endpoint does not page", page_index, url)
                return records

            if until is not None:
                for record in page:
                    if until(record):
                        return [record]

            records.extend(page)
            if max_results is not None and len(records) >= max_results:
                return records[:max_results]
            # Short: the collection ended. Oversized: the endpoint ignored $top.
            if len(page) != size:
                return records
            previous = page
            page_index += 1

    # ------------------------------------------------------------------ #
    # Pull request reads                                                  #
    # ------------------------------------------------------------------ #

    def get_list(self, url: str, records_key: str = "value") -> list[dict]:
        """Fetch a collection the service always returns whole, in one request."""
        return self.get_json(url).get(records_key) or []

    def get_pull_request(self, ref: PullRequestRef) -> dict:
        return self.get_json(ref.pull_request_url)

    def get_latest_iteration(self, ref: PullRequestRef) -> dict:
        """Return the newest iteration (push) of the pull request."""
        url = f"{ref.pull_request_url}/iterations"
        iterations = self.get_json(url).get("value") or []
        if not iterations:
            raise RemoteQueryFailed(f"Pull request {ref.pr_id} has no iterations", url)
        latest = max(iterations, key=lambda it: it.get("id") or 0)
        if not latest.get("id"):
            raise RemoteQueryFailed(f"Latest iteration of pull request {ref.pr_id} has no id", url)
        return latest

    def get_iteration_changes(self, ref: PullRequestRef, iteration_id: int) -> list[dict]:
        url = f"{ref.pull_request_url}/iterations/{iteration_id}/changes"
        return self.query(url, records_key="changeEntries")

    def get_work_items(self, ref: PullRequestRef) -> list[dict]:
        return self.get_list(f"{ref.pull_request_url}/workitems")

    def list_threads(self, ref: PullRequestRef) -> list[Thread]:
        return [Thread.from_api(t) for t in self.get_list(ref.threads_url)]

    def find_thread(self, ref: PullRequestRef, predicate: Callable[[dict], bool]) -> Thread | None:
        """Return the first thread whose raw record satisfies predicate, or None."""
        for record in self.get_list(ref.threads_url):
            if predicate(record):
                return Thread.from_api(record)
        return None
