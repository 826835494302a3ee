"""Tests for comment thread mutations."""

import logging
from unittest.mock import MagicMock

import requests

from adolens_core.ado.client import AzureDevOpsClient
from adolens_core.ado.threads import create_thread, delete_comment, find_duplicate_thread, log_failure, update_thread
from adolens_core.models import Credential, FileAnchor, PullRequestRef, ThreadStatus

REF = PullRequestRef(collection_uri="https://dev.azure.com/org", project="Proj", repository="repo", pr_id=7)
THREADS_URL = "https://dev.azure.com/org/Proj/_apis/git/repositories/repo/pullRequests/7/threads"


def _response(payload=None, status=200, text=""):
    r = MagicMock()
    r.ok = status < 400
    r.status_code = status
    r.json.return_value = payload
    r.text = text
    return r


def _client(*responses):
    session = MagicMock()
    session.headers = {}
    session.request.side_effect = list(responses)
    return AzureDevOpsClient(Credential("pat"), session=session), session


class TestCreateThread:
    def test_pr_level_thread(self):
        client, session = _client(_response({"id": 42}))
        result = create_thread(client, REF, "Looks good", status=ThreadStatus.CLOSED)

        assert result.ok
        assert result.value == 42
        method, url = session.request.call_args.args
        payload = session.request.call_args.kwargs["json"]
        assert (method, url) == ("POST", THREADS_URL)
        assert payload["status"] == "closed"
        assert payload["comments"][0]["content"] == "Looks good"
        assert payload["comments"][0]["parentCommentId"] == 0
        assert "threadContext" not in payload

    def test_inline_thread_end_line_defaults_to_start(self):
        client, session = _client(_response({"id": 1}))
        create_thread(client, REF, "Fix", anchor=FileAnchor(path="src/app.py", start_line=12), iteration_id=3)

        payload = session.request.call_args.kwargs["json"]
        assert payload["status"] == "active"
        assert payload["threadContext"] == {
            "filePath": "/src/app.py",
            "rightFileStart": {"line": 12, "offset": 1},
            "rightFileEnd": {"line": 12, "offset": 1},
        }
        iteration = payload["pullRequestThreadContext"]["iterationContext"]
        assert iteration == {"firstComparingIteration": 3, "secondComparingIteration": 3}

    def test_inline_thread_without_iteration(self):
        client, session = _client(_response({"id": 1}))
        create_thread(client, REF, "Fix", anchor=FileAnchor(path="/a.py", start_line=1, end_line=4))

        payload = session.request.call_args.kwargs["json"]
        assert payload["threadContext"]["rightFileEnd"]["line"] == 4
        assert "pullRequestThreadContext" not in payload

    def test_rejection_is_returned_not_raised(self):
        client, _ = _client(_response({"message": "Access denied"}, status=403, text="Access denied"))
        result = create_thread(client, REF, "x")

        assert not result.ok
        assert result.failure.kind == "NonFatal"
        assert result.failure.status_code == 403
        assert result.failure.message == "Access denied"

    def test_transport_error_is_returned_not_raised(self):
        client, _ = _client(requests.ConnectionError("reset"))
        result = create_thread(client, REF, "x")

        assert not result.ok
        assert result.failure.status_code is None


class TestUpdateThread:
    def test_no_changes_is_a_noop(self):
        client, session = _client()
        result = update_thread(client, REF, 5)

        assert result.ok
        session.request.assert_not_called()

    def test_content_without_comment_id_is_a_noop(self):
        client, session = _client()
        update_thread(client, REF, 5, content="new text")
        session.request.assert_not_called()

    def test_status_only(self):
        client, session = _client(_response({}))
        result = update_thread(client, REF, 5, status=ThreadStatus.FIXED)

        assert result.ok
        method, url = session.request.call_args.args
        assert (method, url) == ("PATCH", f"{THREADS_URL}/5")
        assert session.request.call_args.kwargs["json"] == {"status": "fixed"}

    def test_content_only(self):
        client, session = _client(_response({}))
        update_thread(client, REF, 5, comment_id=2, content="Updated")

        method, url = session.request.call_args.args
        assert (method, url) == ("PATCH", f"{THREADS_URL}/5/comments/2")
        assert session.request.call_args.kwargs["json"] == {"content": "Updated"}

    def test_changes_are_applied_independently(self):
        client, session = _client(_response({"message": "nope"}, status=403), _response({}))
        result = update_thread(client, REF, 5, status=ThreadStatus.CLOSED, comment_id=2, content="Updated")

        assert session.request.call_count == 2
        assert not result.ok
        assert result.failure.operation == "UpdateThread"


class TestDeleteComment:
    def test_deletes_only_the_comment(self):
        client, session = _client(_response(None))
        result = delete_comment(client, REF, 5, 2)

        assert result.ok
        session.request.assert_called_once()
        method, url = session.request.call_args.args
        assert (method, url) == ("DELETE", f"{THREADS_URL}/5/comments/2")

    def test_authorization_failure_is_non_fatal(self):
        client, _ = _client(_response({"message": "not yours"}, status=401))
        result = delete_comment(client, REF, 5, 3)

        assert not result.ok
        assert result.failure.status_code == 401

    def test_first_comment_is_never_deleted(self):
        client, session = _client()
        result = delete_comment(client, REF, 5, 1)

        assert not result.ok
        assert result.failure.kind == "NonFatal"
        assert result.failure.operation == "DeleteComment"
        assert result.failure.status_code is None
        assert session.request.call_count == 0


class TestLogFailure:
    def test_expected_rejection_logged_as_warning(self, caplog):
        client, _ = _client(_response({"message": "denied"}, status=403))
        result = delete_comment(client, REF, 5, 2)

        with caplog.at_level(logging.WARNING, logger="adolens_core.ado.threads"):
            log_failure(result)

        assert any(r.levelno == logging.WARNING and "403" in r.getMessage() for r in caplog.records)

    def test_server_error_logged_as_error(self, caplog):
        client, _ = _client(_response({"message": "oops"}, status=500))
        result = create_thread(client, REF, "x")

        with caplog.at_level(logging.ERROR, logger="adolens_core.ado.threads"):
            log_failure(result)

        assert any(r.levelno == logging.ERROR and "oops" in r.getMessage() for r in caplog.records)

    def test_success_logs_nothing(self, caplog):
        client, _ = _client(_response({"id": 1}))
        result = create_thread(client, REF, "x")
        with caplog.at_level(logging.DEBUG, logger="adolens_core.ado.threads"):
            caplog.clear()
            log_failure(result)
        assert caplog.records == []


class TestFindDuplicateThread:
    def _thread(self, thread_id, content, path=None, line=None):
        record = {"id": thread_id, "status": "active", "comments": [{"id": 1, "content": content}]}
        if path:
            record["threadContext"] = {"filePath": path, "rightFileStart": {"line": line}}
        return record

    def test_matches_inline_thread_by_content_and_place(self):
        page = {"value": [self._thread(1, "Other"), self._thread(2, "Fix null check", "/a.py", 10)]}
        client, _ = _client(_response(page))

        found = find_duplicate_thread(client, REF, "Fix null check\n", FileAnchor(path="/a.py", start_line=10))
        assert found.id == 2

    def test_same_text_on_other_line_is_not_a_duplicate(self):
        page = {"value": [self._thread(2, "Fix null check", "/a.py", 10)]}
        client, _ = _client(_response(page))

        assert find_duplicate_thread(client, REF, "Fix null check", FileAnchor(path="/a.py", start_line=11)) is None

    def test_pr_level_match_ignores_inline_threads(self):
        page = {"value": [self._thread(2, "Summary", "/a.py", 1), self._thread(3, "Summary")]}
        client, _ = _client(_response(page))

        assert find_duplicate_thread(client, REF, "Summary").id == 3
