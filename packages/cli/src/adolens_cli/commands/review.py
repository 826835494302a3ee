"""review command — run one AI review session on a pull request."""

from __future__ import annotations

import click
from rich.console import Console

from adolens_cli.auth import SystemTokenUnavailable, resolve_credential
from adolens_core.config import build_policy, load_config, pipeline_value, resolve_collection_uri
from adolens_core.errors import PreconditionError
from adolens_core.models import PullRequestRef
from adolens_core.prompt import parse_additional_prompts, resolve_prompt_source
from adolens_core.session import SessionSettings, run_session

console = Console()


def _flag(value: bool) -> bool | None:
    """Flags left unset must not override the config file."""
    return True if value else None


@click.command("review")
@click.option("--collection-uri", default=None, help="Collection URI, e.g. https://dev.azure.com/org.")
@click.option("--organization", default=None, help="Organization name; used when --collection-uri is omitted.")
@click.option("--project", default=None, help="Project name. Defaults to System.TeamProject.")
@click.option("--repository", default=None, help="Repository name. Defaults to Build.Repository.Name.")
@click.option(
    "--pr",
    "pr_id",
    type=int,
    default=None,
    help="Pull request id. Defaults to System.PullRequest.PullRequestId.",
)
@click.option("--timeout", "timeout_minutes", type=click.IntRange(min=1), default=None, help="Agent timeout in minutes.")
@click.option("--model", default=None, help="Model passed to the review agent.")
@click.option("--review-bugs", is_flag=True, help="Ask the agent to highlight bugs.")
@click.option("--review-performance", is_flag=True, help="Ask the agent to highlight performance problems.")
@click.option("--review-best-practices", is_flag=True, help="Ask the agent to flag missed best practices.")
@click.option("--whole-diff", is_flag=True, help="Post one consolidated review instead of per-file comments.")
@click.option("--additional-prompts", default=None, help="Extra focus directives, comma or newline separated.")
@click.option("--prompt", default=None, help="Custom instructions merged into the prompt template.")
@click.option("--prompt-file", default=None, help="File with custom instructions merged into the prompt template.")
@click.option("--prompt-raw", default=None, help="Complete prompt passed to the agent unchanged.")
@click.option("--prompt-file-raw", default=None, help="File with a complete prompt passed to the agent unchanged.")
@click.option("--authors", default=None, help="Comma-separated emails; only their PRs are reviewed.")
@click.option(
    "--working-dir",
    default=None,
    help="Checkout the agent runs in. Defaults to System.DefaultWorkingDirectory or the current directory.",
)
@click.option("--pat", default=None, help="Azure DevOps personal access token. Prefer AZURE_DEVOPS_PAT.")
@click.option("--use-system-token", is_flag=True, help="Authenticate with the pipeline's System.AccessToken.")
@click.pass_context
def review_cmd(
    ctx,
    collection_uri: str | None,
    organization: str | None,
    project: str | None,
    repository: str | None,
    pr_id: int | None,
    timeout_minutes: int | None,
    model: str | None,
    review_bugs: bool,
    review_performance: bool,
    review_best_practices: bool,
    whole_diff: bool,
    additional_prompts: str | None,
    prompt: str | None,
    prompt_file: str | None,
    prompt_raw: str | None,
    prompt_file_raw: str | None,
    authors: str | None,
    working_dir: str | None,
    pat: str | None,
    use_system_token: bool,
):
    """Review an Azure DevOps pull request with an AI agent.

    Fetches the pull request, compiles the review prompt and runs the agent,
    which posts its findings as comment threads.

    \b
    Environment variables:
      AZURE_DEVOPS_PAT     Azure DevOps personal access token (or use az CLI)
      SYSTEM_ACCESSTOKEN   Pipeline OAuth token, with --use-system-token
      GH_TOKEN             GitHub token used by the Copilot CLI agent
    """
    config_path = (ctx.obj or {}).get("config_path", ".adolens.yml")
    config = load_config(
        config_path,
        cli_overrides={
            "timeout_minutes": timeout_minutes,
            "model": model,
            "review_bugs": _flag(review_bugs),
            "review_performance": _flag(review_performance),
            "review_best_practices": _flag(review_best_practices),
            "review_whole_diff": _flag(whole_diff),
            "additional_prompts": parse_additional_prompts(additional_prompts) if additional_prompts else None,
            "authors": authors,
        },
    )

    try:
        credential = resolve_credential(pat=pat, use_system_token=use_system_token)
    except SystemTokenUnavailable as e:
        raise click.UsageError(str(e))
    if credential is None:
        raise click.UsageError(
            "Azure DevOps authentication is required. Set AZURE_DEVOPS_PAT, pass --use-system-token "
            "in a pipeline, or run `az login` first."
        )

    resolved_uri = resolve_collection_uri(
        collection_uri or config.get("collection_uri"), organization or config.get("organization")
    )
    if not resolved_uri:
        raise click.UsageError(
            "Collection URI could not be determined. Provide --collection-uri, --organization, "
            "or run inside a pipeline where System.CollectionUri is available."
        )
    project = project or config.get("project") or pipeline_value("project")
    if not project:
        raise click.UsageError("Project is required. Provide --project or run inside a pipeline.")
    repository = repository or config.get("repository") or pipeline_value("repository")
    if not repository:
        raise click.UsageError("Repository is required. Provide --repository or run inside a pipeline.")

    if pr_id is None:
        from_pipeline = pipeline_value("pr_id")
        if not from_pipeline or not from_pipeline.isdigit():
            raise click.UsageError(
                "Pull request id is required. Provide --pr or run this command in a PR validation build."
            )
        pr_id = int(from_pipeline)

    try:
        prompt_source = resolve_prompt_source(prompt, prompt_file, prompt_raw, prompt_file_raw)
    except PreconditionError as e:
        raise click.UsageError(str(e))

    if not config.get("github_token"):
        console.print("[yellow]GH_TOKEN is not set; the agent must already be signed in.[/yellow]")

    ref = PullRequestRef(collection_uri=resolved_uri, project=project, repository=repository, pr_id=pr_id)
    policy = build_policy(config)

    console.print("=" * 60)
    console.print(f"Collection URI: {ref.collection_uri}")
    console.print(f"Project: {ref.project}")
    console.print(f"Repository: {ref.repository}")
    console.print(f"Pull Request ID: {ref.pr_id}")
    console.print(f"Timeout: {config['timeout_minutes']} minutes")
    if config.get("model"):
        console.print(f"Model: {config['model']}")
    console.print(f"Review bugs: {policy.review_bugs}")
    console.print(f"Review performance: {policy.review_performance}")
    console.print(f"Review best practices: {policy.review_best_practices}")
    console.print(f"Review whole diff at once: {policy.whole_diff}")
    if policy.additional_prompts:
        console.print(f"Additional prompts: {' | '.join(policy.additional_prompts)}")
    console.print("=" * 60)

    settings = SessionSettings(
        ref=ref,
        credential=credential,
        policy=policy,
        prompt_source=prompt_source,
        timeout_minutes=config["timeout_minutes"],
        model=config.get("model"),
        working_dir=working_dir or pipeline_value("working_dir") or ".",
        agent_binary=config["agent_binary"],
        page_size=config["page_size"],
        api_version=str(config["api_version"]),
        github_token=config.get("github_token"),
        authors=tuple(config.get("authors") or ()),
        requested_for_email=pipeline_value("requested_for_email"),
    )

    outcome = run_session(settings)
    if not outcome.succeeded:
        raise click.ClickException(f"Review failed: {outcome.message}")
    console.print(f"\n[green]{outcome.message}[/green]")
