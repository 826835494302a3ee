"""Comment thread mutations applied on behalf of the review agent.

Every operation returns a MutationResult instead of raising. The review
service only lets an identity edit its own threads, so a 401/403/404 here
usually means the agent touched somebody else's comment; that must never fail
the review. Callers pass failed results to log_failure() and continue.
"""

from __future__ import annotations

import logging

import requests

from adolens_core.ado.client import AzureDevOpsClient, error_detail
from adolens_core.models import FileAnchor, MutationFailure, MutationResult, PullRequestRef, Thread, ThreadStatus

logger = logging.getLogger(__name__)

_EXPECTED_REJECTIONS = {401, 403, 404}

# Comment ids are numbered per thread starting at 1; comment 1 opens the
# thread and carries its file anchor.
FIRST_COMMENT_ID = 1


def _send(client: AzureDevOpsClient, operation: str, method: str, url: str, payload: dict | None = None):
    """Issue one mutation request; return (response, None) or (None, failure)."""
    try:
        response = client.request(method, url, json=payload)
    except requests.RequestException as e:
        return None, MutationFailure(operation=operation, message=str(e))
    if not response.ok:
        return None, MutationFailure(
            operation=operation,
            message=error_detail(response),
            status_code=response.status_code,
            body=(response.text or "")[:2000],
        )
    return response, None


def log_failure(result: MutationResult) -> None:
    """Log a failed mutation with whatever context the service returned."""
    failure = result.failure
    if failure is None:
        return
    if failure.status_code in _EXPECTED_REJECTIONS:
        logger.warning(
            "%s was rejected (HTTP %s): %s. This usually means the thread belongs to another identity.",
            failure.operation,
            failure.status_code,
            failure.message,
        )
    else:
        logger.error(
            "%s failed%s: %s",
            failure.operation,
            f" (HTTP {failure.status_code})" if failure.status_code is not None else "",
            failure.message,
        )
    if failure.body:
        logger.debug("%s response body: %s", failure.operation, failure.body)


def create_thread(
    client: AzureDevOpsClient,
    ref: PullRequestRef,
    content: str,
    status: ThreadStatus = ThreadStatus.ACTIVE,
    anchor: FileAnchor | None = None,
    iteration_id: int | None = None,
) -> MutationResult:
    """Create a PR-level thread, or an inline one when anchor is given.

    Returns the new thread id as ``result.value``.
    """
    payload: dict = {
        "comments": [{"parentCommentId": 0, "content": content, "commentType": 1}],
        "status": status.value,
    }
    if anchor is not None:
        payload["threadContext"] = {
            "filePath": anchor.path,
            "rightFileStart": {"line": anchor.start_line, "offset": 1},
            "rightFileEnd": {"line": anchor.end_line, "offset": 1},
        }
        if iteration_id is not None:
            payload["pullRequestThreadContext"] = {
                "iterationContext": {
                    "firstComparingIteration": iteration_id,
                    "secondComparingIteration": iteration_id,
                }
            }

    response, failure = _send(client, "CreateThread", "POST", ref.threads_url, payload)
    if failure is not None:
        return MutationResult(failure=failure)
    try:
        thread_id = response.json().get("id")
    except ValueError:
        thread_id = None
    logger.info(
        "Created %s thread %s with status %s",
        f"inline ({anchor.path}:{anchor.start_line}-{anchor.end_line})" if anchor else "PR-level",
        thread_id,
        status.value,
    )
    return MutationResult(value=thread_id)


def update_thread(
    client: AzureDevOpsClient,
    ref: PullRequestRef,
    thread_id: int,
    status: ThreadStatus | None = None,
    comment_id: int | None = None,
    content: str | None = None,
) -> MutationResult:
    """Change a thread's status and/or one comment's content.

    The two changes are applied independently; a failure of the first does
    not prevent the second. With neither supplied the call does nothing.
    """
    wants_content = comment_id is not None and content is not None
    if status is None and not wants_content:
        logger.info("UpdateThread %s: nothing to change.", thread_id)
        return MutationResult(value=thread_id)

    thread_url = f"{ref.threads_url}/{thread_id}"
    failures: list[MutationFailure] = []

    if status is not None:
        _, failure = _send(client, "UpdateThread", "PATCH", thread_url, {"status": status.value})
        if failure is None:
            logger.info("Thread %s status set to %s", thread_id, status.value)
        else:
            failures.append(failure)

    if wants_content:
        _, failure = _send(client, "UpdateComment", "PATCH", f"{thread_url}/comments/{comment_id}", {"content": content})
        if failure is None:
            logger.info("Comment %s in thread %s updated", comment_id, thread_id)
        else:
            failures.append(failure)

    # Only the first failure travels back to the caller.
    for extra in failures[1:]:
        log_failure(MutationResult(failure=extra))
    return MutationResult(value=thread_id, failure=failures[0] if failures else None)


def delete_comment(client: AzureDevOpsClient, ref: PullRequestRef, thread_id: int, comment_id: int) -> MutationResult:
    """Delete one reply. The thread and its first comment are never deleted."""
    if comment_id <= FIRST_COMMENT_ID:
        return MutationResult(
            failure=MutationFailure(
                operation="DeleteComment",
                message=(
                    f"Comment {comment_id} opens thread {thread_id} and is not deleted; "
                    "update its content or the thread status instead"
                ),
            )
        )
    url = f"{ref.threads_url}/{thread_id}/comments/{comment_id}"
    _, failure = _send(client, "DeleteComment", "DELETE", url)
    if failure is not None:
        return MutationResult(failure=failure)
    logger.info("Deleted comment %s from thread %s", comment_id, thread_id)
    return MutationResult(value=comment_id)


def find_duplicate_thread(
    client: AzureDevOpsClient,
    ref: PullRequestRef,
    content: str,
    anchor: FileAnchor | None = None,
) -> Thread | None:
    """Return an existing thread that already opens with this comment at this place.

    Stops paging as soon as a match is found. Raises RemoteQueryFailed like
    any other read.
    """
    text = content.strip()

    def _matches(record: dict) -> bool:
        comments = record.get("comments") or []
        if not comments or (comments[0].get("content") or "").strip() != text:
            return False
        context = record.get("threadContext") or {}
        if anchor is None:
            return not context.get("filePath")
        start = (context.get("rightFileStart") or {}).get("line")
        return context.get("filePath") == anchor.path and start == anchor.start_line

    return client.find_thread(ref, _matches)
