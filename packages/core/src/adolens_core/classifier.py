"""Derive a resolve / keep-open verdict from the agent's markdown output.

The agent is asked to start per-file comments with a status line and to put a
status table in whole-diff summaries. Both shapes are recognised here by
independent functions so each can be tested against literal strings:

    **Status:** ❌ Not Passed            → keep open
    | File Name | Status | Comments |   → resolve only if every row is Passed

Anything unrecognised keeps the thread open; a thread should never be closed
because the output was malformed.
"""

from __future__ import annotations

import re

from adolens_core.models import AgentVerdict, FileAnchor, ThreadStatus, Verdict

NO_COMMENT = "NO_COMMENT"

_PASSED = "passed"
_QUESTIONS = "questions"
_NOT_PASSED = "not passed"
_KNOWN_LABELS = {_PASSED, _QUESTIONS, _NOT_PASSED}

# "not passed" is listed first so it wins over its "passed" suffix.
_STATUS_LINE_RE = re.compile(
    r"^[ \t]*(?:[^\w\s]{1,4}[ \t]*)?"  # list bullet or emoji
    r"(?:\*\*|__)?[ \t]*status[ \t]*(?:\*\*|__)?[ \t]*:[ \t]*(?:\*\*|__)?[ \t]*"
    r"(?:[^\w\s]{1,4}[ \t]*){0,3}"  # ✅ / ❓ / ❌, optionally with a variation selector
    r"(not[ \t]+passed|passed|questions)\b",
    re.IGNORECASE | re.MULTILINE,
)

_TABLE_HEADERS = ("file name", "status", "comments")
_SEPARATOR_CELL_RE = re.compile(r"^[\s:\-]*$")


def is_no_comment(text: str) -> bool:
    """True when the agent answered with the sentinel meaning 'nothing to post'."""
    return (text or "").strip() == NO_COMMENT


def classify_status_line(text: str) -> Verdict | None:
    """Verdict from the first ``Status: …`` line, or None if there is none."""
    match = _STATUS_LINE_RE.search(text or "")
    if match is None:
        return None
    label = " ".join(match.group(1).lower().split())
    return Verdict.RESOLVE if label == _PASSED else Verdict.KEEP_OPEN


def _split_row(line: str) -> list[str]:
    stripped = line.strip()
    if stripped.startswith("|"):
        stripped = stripped[1:]
    if stripped.endswith("|"):
        stripped = stripped[:-1]
    return [cell.strip() for cell in stripped.split("|")]


def _normalise_label(cell: str) -> str:
    cell = re.sub(r"[*_`]", "", cell).lower()
    # Drop leading emoji / punctuation such as "✅ ".
    cell = re.sub(r"^[^a-z]+", "", cell)
    return " ".join(cell.split())


def _header_status_index(line: str) -> int | None:
    if not line.strip().startswith("|"):
        return None
    cells = [_normalise_label(c) for c in _split_row(line)]
    if all(h in cells for h in _TABLE_HEADERS):
        return cells.index("status")
    return None


def table_status_labels(text: str) -> list[str] | None:
    """Normalised Status cells of the first status table, or None if absent.

    Only the first table whose header names File Name, Status and Comments is
    read. Separator rows are skipped and the scan ends at the first line after
    the header that is not a table row.
    """
    lines = (text or "").splitlines()
    for start, line in enumerate(lines):
        status_index = _header_status_index(line)
        if status_index is None:
            continue
        labels: list[str] = []
        for row in lines[start + 1 :]:
            if not row.strip().startswith("|"):
                break
            cells = _split_row(row)
            if all(_SEPARATOR_CELL_RE.match(c) for c in cells):
                continue
            cell = cells[status_index] if status_index < len(cells) else ""
            labels.append(_normalise_label(cell))
        return labels
    return None


def classify_status_table(text: str) -> Verdict | None:
    """Verdict from the first status table, or None if there is no table."""
    labels = table_status_labels(text)
    if labels is None:
        return None
    if not labels:
        return Verdict.KEEP_OPEN
    if any(label not in _KNOWN_LABELS for label in labels):
        return Verdict.KEEP_OPEN
    if all(label == _PASSED for label in labels):
        return Verdict.RESOLVE
    return Verdict.KEEP_OPEN


def classify(text: str) -> Verdict:
    """Status line first, then status table, else keep the thread open."""
    verdict = classify_status_line(text)
    if verdict is None:
        verdict = classify_status_table(text)
    return verdict if verdict is not None else Verdict.KEEP_OPEN


def verdict_for(text: str, anchor: FileAnchor | None = None) -> AgentVerdict:
    return AgentVerdict(resolved=classify(text) is Verdict.RESOLVE, content=text, anchor=anchor)


def status_for_verdict(verdict: AgentVerdict) -> ThreadStatus:
    """Resolved units are posted closed; everything else stays active."""
    return ThreadStatus.CLOSED if verdict.resolved else ThreadStatus.ACTIVE
