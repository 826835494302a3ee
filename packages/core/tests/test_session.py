"""Tests for review session orchestration."""

import os
from unittest.mock import MagicMock

import pytest

from adolens_core.agent import AgentResult, AgentState
from adolens_core.ado.client import AzureDevOpsClient
from adolens_core.ado.threads import delete_comment
from adolens_core.errors import PreconditionError, RemoteQueryFailed
from adolens_core.models import Comment, Credential, FileAnchor, PullRequestRef, ReviewPolicy, Thread
from adolens_core.session import (
    ITERATION_DETAILS_FILENAME,
    PR_DETAILS_FILENAME,
    SessionSettings,
    author_allowed,
    format_iteration_details,
    format_pr_details,
    run_session,
)

REF = PullRequestRef(collection_uri="https://dev.azure.com/org", project="Proj", repository="repo", pr_id=7)

PR = {
    "pullRequestId": 7,
    "title": "Add retry to uploader",
    "status": "active",
    "createdBy": {"displayName": "Dana", "uniqueName": "dana@example.com"},
    "sourceRefName": "refs/heads/feature/retry",
    "targetRefName": "refs/heads/main",
    "description": "Retries uploads three times.",
}
ITERATION = {"id": 4, "sourceRefCommit": {"commitId": "abc123"}, "targetRefCommit": {"commitId": "def456"}}
CHANGES = [
    {"changeType": "edit", "item": {"path": "/src/upload.py"}},
    {"changeType": "add", "item": {"path": "/src", "isFolder": True}},
]


@pytest.fixture(autouse=True)
def agent_installed(mocker):
    return mocker.patch("adolens_core.session.check_agent_available", return_value="/usr/bin/copilot")


def _client():
    client = MagicMock()
    client.get_pull_request.return_value = PR
    client.get_work_items.return_value = [{"id": 101}]
    client.list_threads.return_value = []
    client.get_latest_iteration.return_value = ITERATION
    client.get_iteration_changes.return_value = CHANGES
    return client


def _settings(tmp_path, **kwargs):
    defaults = dict(ref=REF, credential=Credential("pat"), working_dir=str(tmp_path), timeout_minutes=2)
    defaults.update(kwargs)
    return SessionSettings(**defaults)


def _runner(state=AgentState.SUCCEEDED, exit_code=0, error=None):
    return MagicMock(return_value=AgentResult(state=state, exit_code=exit_code, elapsed=12.0, error=error))


class TestRunSession:
    def test_success_writes_context_files_and_runs_agent(self, tmp_path):
        client, runner = _client(), _runner()
        outcome = run_session(_settings(tmp_path, model="gpt-5"), client=client, runner=runner)

        assert outcome.succeeded
        assert "PR #7" in outcome.message
        assert "Add retry to uploader" in (tmp_path / PR_DETAILS_FILENAME).read_text()
        assert "/src/upload.py" in (tmp_path / ITERATION_DETAILS_FILENAME).read_text()
        client.get_iteration_changes.assert_called_once_with(REF, 4)

        prompt_path, model, working_dir, timeout = runner.call_args.args
        assert prompt_path.read_text(encoding="utf-8")
        assert (model, working_dir, timeout) == ("gpt-5", str(tmp_path), 120)
        assert runner.call_args.kwargs["binary"] == "copilot"

    def test_agent_environment_carries_context(self, tmp_path, monkeypatch):
        monkeypatch.delenv("PRID", raising=False)
        runner = _runner()
        run_session(
            _settings(tmp_path, policy=ReviewPolicy(whole_diff=True), github_token="gh"),
            client=_client(),
            runner=runner,
        )

        env = runner.call_args.kwargs["env"]
        assert env["AZUREDEVOPS_TOKEN"] == "pat"
        assert env["AZUREDEVOPS_AUTH_TYPE"] == "Basic"
        assert env["PRID"] == "7"
        assert env["ITERATION_ID"] == "4"
        assert env["REVIEW_WHOLE_DIFF_AT_ONCE"] == "true"
        assert env["GH_TOKEN"] == "gh"
        assert "PRID" not in os.environ

    def test_whole_diff_prompt_is_staged(self, tmp_path):
        runner = _runner()
        run_session(_settings(tmp_path, policy=ReviewPolicy(whole_diff=True)), client=_client(), runner=runner)
        assert "WHOLE-DIFF MODE IS ENABLED" in runner.call_args.args[0].read_text(encoding="utf-8")

    def test_timeout_outcome(self, tmp_path):
        runner = _runner(state=AgentState.TIMED_OUT, exit_code=None)
        outcome = run_session(_settings(tmp_path), client=_client(), runner=runner)

        assert not outcome.succeeded
        assert "timed out after 2 minute(s)" in outcome.message

    def test_non_zero_exit_outcome(self, tmp_path):
        runner = _runner(state=AgentState.FAILED, exit_code=3)
        outcome = run_session(_settings(tmp_path), client=_client(), runner=runner)

        assert not outcome.succeeded
        assert "exited with code 3" in outcome.message

    def test_start_failure_outcome(self, tmp_path):
        runner = _runner(state=AgentState.FAILED, exit_code=None, error="Failed to start copilot: denied")
        outcome = run_session(_settings(tmp_path), client=_client(), runner=runner)
        assert outcome.message == "Failed to start copilot: denied"

    def test_remote_failure_aborts_before_agent(self, tmp_path):
        client = _client()
        client.get_pull_request.side_effect = RemoteQueryFailed("Request failed", url="https://x", status_code=401)
        runner = _runner()

        outcome = run_session(_settings(tmp_path), client=client, runner=runner)

        assert not outcome.succeeded
        assert "HTTP 401" in outcome.message
        runner.assert_not_called()
        assert not (tmp_path / PR_DETAILS_FILENAME).exists()

    def test_iteration_failure_aborts_before_agent(self, tmp_path):
        client = _client()
        client.get_latest_iteration.side_effect = RemoteQueryFailed("No iterations", url="https://x")
        runner = _runner()

        outcome = run_session(_settings(tmp_path), client=client, runner=runner)

        assert not outcome.succeeded
        runner.assert_not_called()

    def test_missing_agent_fails_first(self, tmp_path, agent_installed):
        agent_installed.side_effect = PreconditionError("The review agent 'copilot' was not found on PATH.")
        client, runner = _client(), _runner()

        outcome = run_session(_settings(tmp_path), client=client, runner=runner)

        assert not outcome.succeeded
        assert "not found on PATH" in outcome.message
        client.get_pull_request.assert_not_called()
        runner.assert_not_called()

    def test_author_filter_skips(self, tmp_path):
        client, runner = _client(), _runner()
        settings = _settings(tmp_path, authors=("lead@example.com",), requested_for_email="someone@example.com")

        outcome = run_session(settings, client=client, runner=runner)

        assert outcome.succeeded
        assert outcome.skipped
        client.get_pull_request.assert_not_called()
        runner.assert_not_called()

    def test_rejected_comment_mutation_does_not_fail_the_session(self, tmp_path):
        rejected = MagicMock(ok=False, status_code=403, text="forbidden")
        rejected.json.return_value = {"message": "forbidden"}
        http = MagicMock()
        http.headers = {}
        http.request.return_value = rejected
        agent_client = AzureDevOpsClient(Credential("pat"), session=http)

        def _agent(*args, **kwargs):
            assert not delete_comment(agent_client, REF, 5, 2).ok
            return AgentResult(state=AgentState.SUCCEEDED, exit_code=0)

        outcome = run_session(_settings(tmp_path), client=_client(), runner=_agent)
        assert outcome.succeeded


class TestAuthorAllowed:
    def test_no_filter(self):
        assert author_allowed((), None)

    def test_case_insensitive_match(self):
        assert author_allowed(["Lead@Example.com"], "lead@example.com ")

    def test_not_listed(self):
        assert not author_allowed(["lead@example.com"], "other@example.com")
        assert not author_allowed(["lead@example.com"], None)


class TestFormatting:
    def test_pr_details(self):
        threads = [
            Thread(id=9, status="active", comments=(Comment(1, "Bot", "**Status:** ❌ Not Passed\nFix it", 9),)),
            Thread(id=10, status="closed", anchor=FileAnchor("/a.py", 3)),
        ]
        text = format_pr_details(PR, [{"id": 101}], threads)

        assert "Pull Request #7: Add retry to uploader" in text
        assert "Source branch: feature/retry" in text
        assert "Target branch: main" in text
        assert "- #101" in text
        assert "Thread 9 [active] PR-level" in text
        assert "Comment 1 by Bot: **Status:** ❌ Not Passed" in text
        # Threads whose comments are all deleted are not listed.
        assert "Thread 10" not in text

    def test_pr_details_without_extras(self):
        text = format_pr_details({"pullRequestId": 1, "title": "t"}, [], [])
        assert "(no description)" in text
        assert text.count("(none)") == 2

    def test_iteration_details_skip_folders(self):
        text = format_iteration_details(ITERATION, CHANGES)
        assert "Iteration: 4" in text
        assert "Source commit: abc123" in text
        assert "- [edit] /src/upload.py" in text
        assert "- [add] /src\n" not in text
