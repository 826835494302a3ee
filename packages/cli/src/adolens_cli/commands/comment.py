"""comment commands — reconcile the agent's output into PR comment threads.

These are called by the review agent while `adolens review` runs. The pull
request and credential come from the environment the session hands to the
agent (see adolens_core.environment).

Mutation failures are logged and the command still exits 0: a rejected update
usually means the thread belongs to another identity, and that must not look
like a broken review to the agent.
"""

from __future__ import annotations

import logging
from pathlib import Path

import click
from rich.console import Console

from adolens_core.ado.client import AzureDevOpsClient
from adolens_core.ado.threads import create_thread, delete_comment, find_duplicate_thread, log_failure, update_thread
from adolens_core.classifier import is_no_comment, status_for_verdict, verdict_for
from adolens_core.environment import AgentEnvironment
from adolens_core.errors import PreconditionError, RemoteQueryFailed
from adolens_core.models import FileAnchor, ThreadStatus

console = Console()
logger = logging.getLogger(__name__)

_STATUS_CHOICE = click.Choice([s.value for s in ThreadStatus], case_sensitive=False)


def _load_environment() -> AgentEnvironment:
    try:
        return AgentEnvironment.from_env()
    except PreconditionError as e:
        raise click.UsageError(str(e))


def _client(agent_env: AgentEnvironment) -> AzureDevOpsClient:
    return AzureDevOpsClient(agent_env.credential)


def _read_text(text: str | None, path: str | None, label: str) -> str | None:
    if text is not None and path is not None:
        raise click.UsageError(f"Use either --{label} or --{label}-file, not both.")
    if path is not None:
        return Path(path).read_text(encoding="utf-8")
    return text


@click.group("comment")
def comment_cmd():
    """Manage pull request comment threads (used by the review agent)."""


@comment_cmd.command("add")
@click.option("--comment", "comment_text", default=None, help="Comment markdown.")
@click.option(
    "--comment-file",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="File containing the comment markdown.",
)
@click.option("--status", default=None, type=_STATUS_CHOICE, help="Thread status. Derived from the comment when omitted.")
@click.option("--file-path", default=None, help="File to anchor an inline comment to, e.g. /src/App.cs.")
@click.option("--start-line", type=click.IntRange(min=1), default=None, help="First line of the inline comment.")
@click.option("--end-line", type=click.IntRange(min=1), default=None, help="Last line. Defaults to --start-line.")
def add_cmd(
    comment_text: str | None,
    comment_file: str | None,
    status: str | None,
    file_path: str | None,
    start_line: int | None,
    end_line: int | None,
):
    """Create a new PR-level or inline comment thread."""
    content = _read_text(comment_text, comment_file, "comment")
    if not content or not content.strip():
        raise click.UsageError("A comment is required. Pass --comment or --comment-file.")
    if is_no_comment(content):
        console.print("NO_COMMENT: nothing to post.")
        return
    if file_path and start_line is None:
        raise click.UsageError("--start-line is required with --file-path.")
    if start_line is not None and not file_path:
        raise click.UsageError("--file-path is required with --start-line.")

    agent_env = _load_environment()
    anchor = FileAnchor(path=file_path, start_line=start_line, end_line=end_line) if file_path else None

    if status is not None:
        thread_status = ThreadStatus.parse(status)
    else:
        thread_status = status_for_verdict(verdict_for(content, anchor))
        console.print(f"[dim]No --status given; derived '{thread_status.value}' from the comment.[/dim]")

    client = _client(agent_env)
    try:
        existing = find_duplicate_thread(client, agent_env.ref, content, anchor)
    except RemoteQueryFailed as e:
        logger.warning("Could not check for an existing thread; posting anyway: %s", e)
        existing = None
    if existing is not None:
        console.print(f"Thread {existing.id} already contains this comment; not posting it again.")
        return

    result = create_thread(
        client,
        agent_env.ref,
        content,
        status=thread_status,
        anchor=anchor,
        iteration_id=agent_env.iteration_id,
    )
    if result.ok:
        console.print(f"Created thread {result.value} ({thread_status.value}).")
    else:
        log_failure(result)


@comment_cmd.command("update")
@click.option("--thread-id", type=int, required=True, help="Thread to update.")
@click.option("--status", default=None, type=_STATUS_CHOICE, help="New thread status.")
@click.option("--comment-id", type=int, default=None, help="Comment whose content is replaced.")
@click.option("--content", default=None, help="New comment markdown.")
@click.option(
    "--content-file",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="File containing the new comment markdown.",
)
def update_cmd(
    thread_id: int,
    status: str | None,
    comment_id: int | None,
    content: str | None,
    content_file: str | None,
):
    """Change a thread's status and/or the content of one of its comments."""
    new_content = _read_text(content, content_file, "content")
    if (comment_id is None) != (new_content is None):
        raise click.UsageError("--comment-id and --content (or --content-file) must be given together.")
    if status is None and comment_id is None:
        console.print("[yellow]Nothing to update: pass --status and/or --comment-id with --content.[/yellow]")
        return

    agent_env = _load_environment()
    result = update_thread(
        _client(agent_env),
        agent_env.ref,
        thread_id,
        status=ThreadStatus.parse(status) if status else None,
        comment_id=comment_id,
        content=new_content,
    )
    if result.ok:
        console.print(f"Updated thread {thread_id}.")
    else:
        log_failure(result)


@comment_cmd.command("delete")
@click.option("--thread-id", type=int, required=True, help="Thread containing the comment.")
@click.option("--comment-id", type=int, required=True, help="Comment to delete.")
def delete_cmd(thread_id: int, comment_id: int):
    """Delete one comment. The thread itself is never deleted."""
    agent_env = _load_environment()
    result = delete_comment(_client(agent_env), agent_env.ref, thread_id, comment_id)
    if result.ok:
        console.print(f"Deleted comment {comment_id} from thread {thread_id}.")
    else:
        log_failure(result)


@comment_cmd.command("list")
@click.option("--status", default=None, type=_STATUS_CHOICE, help="Only show threads with this status.")
def list_cmd(status: str | None):
    """List the pull request's comment threads and their comments."""
    agent_env = _load_environment()
    try:
        threads = _client(agent_env).list_threads(agent_env.ref)
    except RemoteQueryFailed as e:
        raise click.ClickException(str(e))

    wanted = ThreadStatus.parse(status).value.lower() if status else None
    shown = 0
    for thread in threads:
        if not thread.comments:
            continue
        if wanted and str(thread.status).lower() != wanted:
            continue
        shown += 1
        where = (
            f"{thread.anchor.path}:{thread.anchor.start_line}-{thread.anchor.end_line}" if thread.anchor else "PR-level"
        )
        click.echo(f"Thread {thread.id} [{thread.status}] {where}")
        for c in thread.comments:
            click.echo(f"  Comment {c.id} by {c.author}:")
            for line in c.content.splitlines() or [""]:
                click.echo(f"    {line}")
    if shown == 0:
        click.echo("No comment threads found.")
