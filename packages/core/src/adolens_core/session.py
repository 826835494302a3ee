"""Review session orchestration.

One session reviews one pull request, strictly in sequence:

    fetch PR detail → fetch latest iteration → compile prompt → run agent

While the agent runs it posts, updates and deletes comment threads itself
through `adolens comment`. Nothing here is retried; the first error ends the
session and is reported in the returned SessionOutcome.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from rich.console import Console

from adolens_core.ado.client import AzureDevOpsClient
from adolens_core.agent import DEFAULT_AGENT_BINARY, AgentResult, AgentState, check_agent_available, run_agent
from adolens_core.environment import AgentEnvironment
from adolens_core.errors import AdolensError
from adolens_core.models import Credential, PullRequestRef, ReviewPolicy, Thread
from adolens_core.prompt import PromptSource, build_prompt_document, stage_prompt

console = Console()
logger = logging.getLogger(__name__)

PR_DETAILS_FILENAME = "PR_Details.txt"
ITERATION_DETAILS_FILENAME = "Iteration_Details.txt"


@dataclass(frozen=True)
class SessionSettings:
    ref: PullRequestRef
    credential: Credential
    policy: ReviewPolicy = field(default_factory=ReviewPolicy)
    prompt_source: PromptSource = field(default_factory=PromptSource)
    timeout_minutes: float = 15
    model: str | None = None
    working_dir: str = "."
    agent_binary: str = DEFAULT_AGENT_BINARY
    page_size: int = 100
    api_version: str = "7.1"
    github_token: str | None = field(default=None, repr=False)
    authors: tuple[str, ...] = ()
    requested_for_email: str | None = None


@dataclass(frozen=True)
class SessionOutcome:
    succeeded: bool
    message: str
    skipped: bool = False


def author_allowed(authors: tuple[str, ...] | list[str], email: str | None) -> bool:
    """True when no author filter is set or the requester is on the list."""
    if not authors:
        return True
    wanted = {a.strip().lower() for a in authors if a.strip()}
    return (email or "").strip().lower() in wanted


def _branch(ref_name: str | None) -> str:
    return (ref_name or "").removeprefix("refs/heads/")


def format_pr_details(pr: dict, work_items: list[dict], threads: list[Thread]) -> str:
    created_by = pr.get("createdBy") or {}
    lines = [
        f"Pull Request #{pr.get('pullRequestId', '')}: {pr.get('title', '')}",
        f"Status: {pr.get('status', '')}{' (draft)' if pr.get('isDraft') else ''}",
        f"Author: {created_by.get('displayName', '')} <{created_by.get('uniqueName', '')}>",
        f"Source branch: {_branch(pr.get('sourceRefName'))}",
        f"Target branch: {_branch(pr.get('targetRefName'))}",
        "",
        "Description:",
        pr.get("description") or "(no description)",
        "",
        "Linked work items:",
    ]
    if work_items:
        lines.extend(f"- #{w.get('id', '')}" for w in work_items)
    else:
        lines.append("(none)")

    lines += ["", "Existing comment threads:"]
    visible = [t for t in threads if t.comments]
    if not visible:
        lines.append("(none)")
    for t in visible:
        where = f"{t.anchor.path}:{t.anchor.start_line}-{t.anchor.end_line}" if t.anchor else "PR-level"
        lines.append(f"- Thread {t.id} [{t.status}] {where}")
        for c in t.comments:
            first_line = c.content.strip().splitlines()[0] if c.content.strip() else ""
            lines.append(f"    - Comment {c.id} by {c.author}: {first_line}")
    return "\n".join(lines) + "\n"


def format_iteration_details(iteration: dict, changes: list[dict]) -> str:
    source = (iteration.get("sourceRefCommit") or {}).get("commitId", "")
    target = (iteration.get("targetRefCommit") or {}).get("commitId", "")
    lines = [
        f"Iteration: {iteration.get('id', '')}",
        f"Source commit: {source}",
        f"Target commit: {target}",
        "",
        "Changed files:",
    ]
    files = [c for c in changes if not (c.get("item") or {}).get("isFolder")]
    if not files:
        lines.append("(none)")
    for change in files:
        item = change.get("item") or {}
        path = item.get("path") or change.get("originalPath", "")
        lines.append(f"- [{change.get('changeType', 'edit')}] {path}")
    return "\n".join(lines) + "\n"


def _failure_message(result: AgentResult, timeout_minutes: float) -> str:
    if result.state is AgentState.TIMED_OUT:
        return f"Review agent timed out after {timeout_minutes:g} minute(s) and was terminated."
    if result.error:
        return result.error
    return f"Review agent exited with code {result.exit_code}."


def run_session(
    settings: SessionSettings,
    client: AzureDevOpsClient | None = None,
    runner: Callable[..., AgentResult] = run_agent,
) -> SessionOutcome:
    """Run one review session and return its single terminal outcome."""
    try:
        return _run(settings, client, runner)
    except (AdolensError, OSError) as e:
        logger.debug("Session aborted", exc_info=True)
        return SessionOutcome(succeeded=False, message=str(e))


def _run(settings: SessionSettings, client: AzureDevOpsClient | None, runner) -> SessionOutcome:
    ref = settings.ref
    check_agent_available(settings.agent_binary)

    if not author_allowed(settings.authors, settings.requested_for_email):
        console.print(
            f"[yellow]PR requester {settings.requested_for_email or '(unknown)'} is not in the configured "
            "authors list. Skipping review.[/yellow]"
        )
        return SessionOutcome(succeeded=True, message="Skipped: PR author not in configured authors list.", skipped=True)

    if client is None:
        client = AzureDevOpsClient(settings.credential, api_version=settings.api_version, page_size=settings.page_size)
    working_dir = Path(settings.working_dir)

    console.print("\n[bold][Step 1/3][/bold] Fetching pull request details...")
    pr = client.get_pull_request(ref)
    work_items = client.get_work_items(ref)
    threads = client.list_threads(ref)
    details_path = working_dir / PR_DETAILS_FILENAME
    details_path.write_text(format_pr_details(pr, work_items, threads), encoding="utf-8")
    console.print(f"PR details saved to: {details_path}")

    console.print("\n[bold][Step 2/3][/bold] Fetching pull request changes...")
    iteration = client.get_latest_iteration(ref)
    iteration_id = iteration["id"]
    changes = client.get_iteration_changes(ref, iteration_id)
    iteration_path = working_dir / ITERATION_DETAILS_FILENAME
    iteration_path.write_text(format_iteration_details(iteration, changes), encoding="utf-8")
    console.print(f"Iteration {iteration_id}: {len(changes)} change(s) saved to: {iteration_path}")

    console.print("\n[bold][Step 3/3][/bold] Running review agent...")
    document = build_prompt_document(settings.prompt_source, settings.policy)
    prompt_path = stage_prompt(document, working_dir)
    logger.info("Prompt (%s mode) staged at %s", document.mode.value, prompt_path)

    agent_env = AgentEnvironment(
        credential=settings.credential,
        ref=ref,
        iteration_id=iteration_id,
        whole_diff=settings.policy.whole_diff,
        github_token=settings.github_token,
    )
    result = runner(
        prompt_path,
        settings.model,
        str(working_dir),
        settings.timeout_minutes * 60,
        env=agent_env.to_env(),
        binary=settings.agent_binary,
    )

    if not result.succeeded:
        return SessionOutcome(succeeded=False, message=_failure_message(result, settings.timeout_minutes))
    return SessionOutcome(succeeded=True, message=f"Review of PR #{ref.pr_id} completed in {result.elapsed:.0f}s.")
