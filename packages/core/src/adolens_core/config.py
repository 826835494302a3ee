import os
from pathlib import Path
from typing import Mapping, Optional

import yaml

from adolens_core.models import ReviewPolicy
from adolens_core.prompt import parse_additional_prompts

DEFAULT_CONFIG: dict = {
    "collection_uri": None,  # None = organization or the pipeline's System.CollectionUri
    "organization": None,
    "project": None,
    "repository": None,
    "timeout_minutes": 15,
    "model": None,  # None = let the agent pick its default model
    "agent_binary": "copilot",
    "review_bugs": False,
    "review_performance": False,
    "review_best_practices": False,
    "review_whole_diff": False,
    "additional_prompts": [],  # extra focus directives, in order
    "authors": [],  # when set, only PRs requested by these emails are reviewed
    "page_size": 100,
    "api_version": "7.1",
}

# Azure Pipelines exposes predefined variables as upper-cased environment
# variables with dots replaced by underscores.
PIPELINE_VARIABLES = {
    "collection_uri": "SYSTEM_COLLECTIONURI",
    "project": "SYSTEM_TEAMPROJECT",
    "repository": "BUILD_REPOSITORY_NAME",
    "pr_id": "SYSTEM_PULLREQUEST_PULLREQUESTID",
    "working_dir": "SYSTEM_DEFAULTWORKINGDIRECTORY",
    "requested_for_email": "BUILD_REQUESTEDFOREMAIL",
}


def load_config(config_path: str = ".adolens.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .adolens.yml in the current directory
      3. CLI argument overrides
    """
    config = {
        **DEFAULT_CONFIG,
        "additional_prompts": list(DEFAULT_CONFIG["additional_prompts"]),
        "authors": list(DEFAULT_CONFIG["authors"]),
    }

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        config.update(file_config)

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    # A single string is accepted for list settings, split like the CLI input.
    if isinstance(config.get("additional_prompts"), str):
        config["additional_prompts"] = parse_additional_prompts(config["additional_prompts"])
    if isinstance(config.get("authors"), str):
        config["authors"] = [a.strip() for a in config["authors"].split(",") if a.strip()]

    # Resolve credentials from environment variables
    config["azure_devops_pat"] = os.environ.get("AZURE_DEVOPS_PAT")
    config["system_access_token"] = os.environ.get("SYSTEM_ACCESSTOKEN")
    config["github_token"] = os.environ.get("GH_TOKEN") or os.environ.get("GITHUB_TOKEN")

    return config


def pipeline_value(name: str, env: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """Return a predefined pipeline variable by its logical name, or None."""
    env = os.environ if env is None else env
    value = env.get(PIPELINE_VARIABLES[name])
    return value or None


def resolve_collection_uri(
    collection_uri: Optional[str] = None,
    organization: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
) -> Optional[str]:
    """
    Resolve the collection URI, in order of precedence:
      1. An explicit collection URI
      2. https://dev.azure.com/{organization}
      3. The pipeline's System.CollectionUri
    """
    if collection_uri:
        return collection_uri.rstrip("/")
    if organization:
        return f"https://dev.azure.com/{organization}"
    from_pipeline = pipeline_value("collection_uri", env)
    if from_pipeline:
        return from_pipeline.rstrip("/")
    return None


def build_policy(config: dict) -> ReviewPolicy:
    return ReviewPolicy(
        review_bugs=bool(config.get("review_bugs")),
        review_performance=bool(config.get("review_performance")),
        review_best_practices=bool(config.get("review_best_practices")),
        whole_diff=bool(config.get("review_whole_diff")),
        additional_prompts=tuple(config.get("additional_prompts") or ()),
    )
