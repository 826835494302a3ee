"""Exceptions raised by the review session core.

Mutation calls against comment threads never raise; they return a
MutationResult instead (see adolens_core.models).
"""

from __future__ import annotations


class AdolensError(Exception):
    """Base class for errors that end a review session."""


class PreconditionError(AdolensError):
    """Raised before any remote call when the session cannot start."""


class RemoteQueryFailed(AdolensError):
    """A read request against the review service failed.

    Carries the zero-based page index so a failing page in a paginated
    query can be told apart from a failing single-shot fetch (page 0).
    """

    def __init__(self, message: str, url: str, page_index: int = 0, status_code: int | None = None):
        super().__init__(message)
        self.url = url
        self.page_index = page_index
        self.status_code = status_code

    def __str__(self) -> str:
        base = super().__str__()
        status = f", HTTP {self.status_code}" if self.status_code is not None else ""
        return f"{base} (page {self.page_index}{status}: {self.url})"
