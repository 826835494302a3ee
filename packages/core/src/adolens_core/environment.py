"""Context handed from the review session to the agent process.

The agent calls `adolens comment …` as ordinary subprocesses, so the context
those calls need travels as environment variables. The session builds an
AgentEnvironment explicitly and passes its materialised copy to the agent;
the session's own os.environ is never modified.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping

from adolens_core.errors import PreconditionError
from adolens_core.models import AuthScheme, Credential, PullRequestRef

ENV_TOKEN = "AZUREDEVOPS_TOKEN"
ENV_AUTH_TYPE = "AZUREDEVOPS_AUTH_TYPE"
ENV_COLLECTION_URI = "AZUREDEVOPS_COLLECTION_URI"
ENV_PROJECT = "PROJECT"
ENV_REPOSITORY = "REPOSITORY"
ENV_PR_ID = "PRID"
ENV_ITERATION_ID = "ITERATION_ID"
ENV_WHOLE_DIFF = "REVIEW_WHOLE_DIFF_AT_ONCE"
ENV_GITHUB_TOKEN = "GH_TOKEN"


@dataclass(frozen=True)
class AgentEnvironment:
    credential: Credential
    ref: PullRequestRef
    iteration_id: int | None = None
    whole_diff: bool = False
    github_token: str | None = field(default=None, repr=False)

    def to_env(self, base: Mapping[str, str] | None = None) -> dict[str, str]:
        """Return a new environment mapping: base (default os.environ) plus this context."""
        env = dict(os.environ if base is None else base)
        env.update(
            {
                ENV_TOKEN: self.credential.secret,
                ENV_AUTH_TYPE: self.credential.scheme.value,
                ENV_COLLECTION_URI: self.ref.collection_uri,
                ENV_PROJECT: self.ref.project,
                ENV_REPOSITORY: self.ref.repository,
                ENV_PR_ID: str(self.ref.pr_id),
                ENV_WHOLE_DIFF: "true" if self.whole_diff else "false",
            }
        )
        if self.iteration_id is not None:
            env[ENV_ITERATION_ID] = str(self.iteration_id)
        if self.github_token:
            env[ENV_GITHUB_TOKEN] = self.github_token
        return env

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "AgentEnvironment":
        """Rebuild the context inside an `adolens comment` call."""
        env = os.environ if env is None else env
        required = (ENV_TOKEN, ENV_COLLECTION_URI, ENV_PROJECT, ENV_REPOSITORY, ENV_PR_ID)
        missing = [name for name in required if not env.get(name)]
        if missing:
            raise PreconditionError(
                f"Missing environment variable(s): {', '.join(missing)}. "
                "`adolens comment` is meant to be called by the agent started by `adolens review`."
            )
        try:
            pr_id = int(env[ENV_PR_ID])
        except ValueError:
            raise PreconditionError(f"{ENV_PR_ID} must be an integer, got {env[ENV_PR_ID]!r}")

        try:
            scheme = AuthScheme.parse(env.get(ENV_AUTH_TYPE) or AuthScheme.BASIC.value)
        except ValueError as e:
            raise PreconditionError(str(e))

        iteration_raw = env.get(ENV_ITERATION_ID)
        iteration_id = int(iteration_raw) if iteration_raw and iteration_raw.isdigit() else None

        return cls(
            credential=Credential(secret=env[ENV_TOKEN], scheme=scheme),
            ref=PullRequestRef(
                collection_uri=env[ENV_COLLECTION_URI],
                project=env[ENV_PROJECT],
                repository=env[ENV_REPOSITORY],
                pr_id=pr_id,
            ),
            iteration_id=iteration_id,
            whole_diff=(env.get(ENV_WHOLE_DIFF) or "").strip().lower() == "true",
            github_token=env.get(ENV_GITHUB_TOKEN) or None,
        )
