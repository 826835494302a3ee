"""Authorization header construction for the Azure DevOps REST API.

Two schemes are supported:
  Basic  — a personal access token, sent as base64(":" + token)
  Bearer — an OAuth token such as the pipeline's System.AccessToken
"""

from __future__ import annotations

import base64

from adolens_core.models import AuthScheme, Credential


def build_auth_header(credential: Credential) -> dict[str, str]:
    if credential.scheme is AuthScheme.BEARER:
        return {"Authorization": f"Bearer {credential.secret}"}
    encoded = base64.b64encode(f":{credential.secret}".encode()).decode()
    return {"Authorization": f"Basic {encoded}"}
