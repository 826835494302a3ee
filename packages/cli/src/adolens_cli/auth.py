"""Azure DevOps credential resolution with Azure CLI fallback.

Resolution order (stops at first success):
  1. --use-system-token: the pipeline's SYSTEM_ACCESSTOKEN, sent as Bearer
  2. An explicit PAT (--pat) or AZURE_DEVOPS_PAT, sent as Basic
  3. `az account get-access-token` for the Azure DevOps resource, sent as Bearer
     (works after `az login` on a developer machine)
"""

from __future__ import annotations

import logging
import os
import subprocess

from adolens_core.models import AuthScheme, Credential

logger = logging.getLogger(__name__)

# Well-known application id of Azure DevOps in Microsoft Entra ID.
AZURE_DEVOPS_RESOURCE = "499b84ac-1321-427f-aa17-267ca6975798"


class SystemTokenUnavailable(Exception):
    """--use-system-token was requested but SYSTEM_ACCESSTOKEN is not set."""


def resolve_credential(pat: str | None = None, use_system_token: bool = False) -> Credential | None:
    """Return a Credential or None if no source is available.

    Raises SystemTokenUnavailable only when the system token was explicitly
    requested, so callers can explain the pipeline mapping that is missing.
    """
    if use_system_token:
        token = os.environ.get("SYSTEM_ACCESSTOKEN")
        if not token:
            raise SystemTokenUnavailable(
                "SYSTEM_ACCESSTOKEN is not available. Ensure the pipeline has access to the OAuth token. "
                "In YAML pipelines, map it explicitly: env: SYSTEM_ACCESSTOKEN: $(System.AccessToken)"
            )
        logger.debug("Using System.AccessToken (OAuth) for Azure DevOps authentication.")
        return Credential(secret=token, scheme=AuthScheme.BEARER)

    token = pat or os.environ.get("AZURE_DEVOPS_PAT")
    if token:
        logger.debug("Using a personal access token for Azure DevOps authentication.")
        return Credential(secret=token, scheme=AuthScheme.BASIC)

    try:
        result = subprocess.run(
            [
                "az",
                "account",
                "get-access-token",
                "--resource",
                AZURE_DEVOPS_RESOURCE,
                "--query",
                "accessToken",
                "--output",
                "tsv",
            ],
            capture_output=True,
            text=True,
            timeout=15,
        )
        if result.returncode == 0:
            az_token = result.stdout.strip()
            if az_token:
                logger.debug("Resolved Azure DevOps token via az CLI session.")
                return Credential(secret=az_token, scheme=AuthScheme.BEARER)
    except (FileNotFoundError, subprocess.TimeoutExpired):
        # az is not installed or timed out; fall through.
        pass

    return None
