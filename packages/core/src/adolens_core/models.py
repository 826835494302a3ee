"""Data model shared by the review session core.

Everything here is immutable once built: a session resolves its inputs into
these objects at start-up and passes them down unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from urllib.parse import quote


class AuthScheme(str, Enum):
    BASIC = "Basic"
    BEARER = "Bearer"

    @classmethod
    def parse(cls, value: str) -> "AuthScheme":
        for scheme in cls:
            if scheme.value.lower() == (value or "").strip().lower():
                return scheme
        raise ValueError(f"Unknown auth scheme: {value!r}. Choose 'Basic' or 'Bearer'.")


@dataclass(frozen=True)
class Credential:
    """A review-service credential. The secret is kept out of repr()."""

    secret: str = field(repr=False)
    scheme: AuthScheme = AuthScheme.BASIC


@dataclass(frozen=True)
class PullRequestRef:
    """Identifies one pull request; every remote call is scoped by it."""

    collection_uri: str
    project: str
    repository: str
    pr_id: int

    @property
    def repo_api_url(self) -> str:
        return (
            f"{self.collection_uri.rstrip('/')}/{quote(self.project, safe='')}"
            f"/_apis/git/repositories/{quote(self.repository, safe='')}"
        )

    @property
    def pull_request_url(self) -> str:
        return f"{self.repo_api_url}/pullRequests/{self.pr_id}"

    @property
    def threads_url(self) -> str:
        return f"{self.pull_request_url}/threads"


@dataclass(frozen=True)
class ReviewPolicy:
    review_bugs: bool = False
    review_performance: bool = False
    review_best_practices: bool = False
    whole_diff: bool = False
    additional_prompts: tuple[str, ...] = ()


class ReviewMode(str, Enum):
    PER_FILE = "per-file"
    WHOLE_DIFF = "whole-diff"


@dataclass(frozen=True)
class PromptDocument:
    text: str
    mode: ReviewMode


class ThreadStatus(str, Enum):
    ACTIVE = "active"
    FIXED = "fixed"
    WONT_FIX = "wontFix"
    CLOSED = "closed"
    PENDING = "pending"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value: str) -> "ThreadStatus":
        """Case-insensitive lookup so the agent may pass 'Active' or 'closed'."""
        wanted = (value or "").strip().lower()
        for status in cls:
            if status.value.lower() == wanted:
                return status
        choices = ", ".join(s.value for s in cls)
        raise ValueError(f"Unknown thread status: {value!r}. Choose one of: {choices}.")


@dataclass(frozen=True)
class FileAnchor:
    """A file path and line range in the right-hand (new) side of the diff."""

    path: str
    start_line: int
    end_line: int | None = None

    def __post_init__(self):
        if self.end_line is None:
            object.__setattr__(self, "end_line", self.start_line)
        if not self.path.startswith("/"):
            object.__setattr__(self, "path", "/" + self.path)


@dataclass(frozen=True)
class Comment:
    id: int
    author: str
    content: str
    thread_id: int


@dataclass(frozen=True)
class Thread:
    """A comment thread as read from the review service.

    status is a ThreadStatus, or the service's raw text for statuses outside
    it (e.g. "byDesign").
    """

    id: int
    status: ThreadStatus | str
    comments: tuple[Comment, ...] = ()
    anchor: FileAnchor | None = None

    @classmethod
    def from_api(cls, data: dict) -> "Thread":
        thread_id = data.get("id", 0)
        comments = tuple(
            Comment(
                id=c.get("id", 0),
                author=(c.get("author") or {}).get("displayName", ""),
                content=c.get("content") or "",
                thread_id=thread_id,
            )
            for c in data.get("comments", [])
            if not c.get("isDeleted", False) and c.get("commentType") != "system"
        )
        anchor = None
        context = data.get("threadContext") or {}
        if context.get("filePath"):
            start = (context.get("rightFileStart") or {}).get("line", 0)
            end = (context.get("rightFileEnd") or {}).get("line")
            anchor = FileAnchor(path=context["filePath"], start_line=start, end_line=end)
        raw_status = data.get("status") or "unknown"
        try:
            status: ThreadStatus | str = ThreadStatus.parse(raw_status)
        except ValueError:
            status = raw_status
        return cls(id=thread_id, status=status, comments=comments, anchor=anchor)


class Verdict(str, Enum):
    RESOLVE = "resolve"
    KEEP_OPEN = "keep-open"


@dataclass(frozen=True)
class AgentVerdict:
    """The decision derived from one review unit's text. Never persisted."""

    resolved: bool
    content: str
    anchor: FileAnchor | None = None


@dataclass(frozen=True)
class MutationFailure:
    """A rejected or failed thread/comment mutation.

    Failures are always non-fatal: callers log them and carry on.
    """

    operation: str
    message: str
    status_code: int | None = None
    body: str = ""
    kind: str = "NonFatal"


@dataclass(frozen=True)
class MutationResult:
    value: int | None = None
    failure: MutationFailure | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None
