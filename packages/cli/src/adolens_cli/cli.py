"""CLI entry point for adolens.

Commands:
  review   — run one AI review session on an Azure DevOps pull request
  comment  — add, update, delete or list PR comment threads; called by the
             review agent while a session is running
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from adolens_cli.commands.comment import comment_cmd
from adolens_cli.commands.review import review_cmd

console = Console()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False, rich_tracebacks=True)],
        force=True,
    )
    # urllib3 logs every request URL at DEBUG; keep it quiet.
    logging.getLogger("urllib3").setLevel(logging.WARNING)


@click.group()
@click.version_option(
    version=importlib.metadata.version("adolens"),
    prog_name="adolens",
)
@click.option(
    "--config",
    "config_path",
    default=".adolens.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="ADOLENS_CONFIG",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def main(ctx: click.Context, config_path: str, verbose: bool):
    """AI-assisted code review for Azure DevOps pull requests."""
    _configure_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


main.add_command(review_cmd)
main.add_command(comment_cmd)
