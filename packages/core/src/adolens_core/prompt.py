"""Compile the instruction document handed to the review agent.

compile_prompt() is a pure function: the same template, policy and custom text
always produce the same bytes. The document is the template (with the custom
prompt substituted at %CUSTOMPROMPT%) followed by one of two behaviour blocks,
per-file or whole-diff, that tell the agent how to post its results.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path

from adolens_core.errors import PreconditionError
from adolens_core.models import PromptDocument, ReviewMode, ReviewPolicy

logger = logging.getLogger(__name__)

CUSTOM_PROMPT_PLACEHOLDER = "%CUSTOMPROMPT%"
STAGED_PROMPT_FILENAME = "_adolens_prompt.txt"

BUILTIN_PROMPTS_DIR = Path(__file__).parent / "prompts"
DEFAULT_TEMPLATE = BUILTIN_PROMPTS_DIR / "prompt.txt"
CUSTOM_TEMPLATE = BUILTIN_PROMPTS_DIR / "prompt-custom.txt"

_FOCUS_BUGS = "- If there are any bugs, highlight them."
_FOCUS_PERFORMANCE = "- If there are major performance problems, highlight them."
_FOCUS_BEST_PRACTICES = "- Provide details on missed use of best practices."
_FOCUS_DEFAULT = "- Focus only on actionable issues and meaningful questions in the changed code."

_COMMON_HEADER = """\
REFERENCE-STYLE REVIEW BEHAVIOR (OVERRIDES CONFLICTING GENERIC GUIDANCE ABOVE)

Apply the following review focus:
{focus}
- Do not highlight minor issues or nitpicks.
- Only provide actionable improvements or clarifying questions.
"""

_WHOLE_DIFF_BLOCK = """
WHOLE-DIFF MODE IS ENABLED (review_whole_diff = true)

You must produce exactly one consolidated PR-level review comment (not multiple file-by-file comments) using `adolens comment add`.
Do not respond with NO_COMMENT only in this mode.
Do not post inline comments in this mode unless a specific line anchor is absolutely necessary and the issue cannot be explained in the consolidated review.

Start your response in markdown with this structure in this exact order:
1. ## Summary of changes
2. ## Feedback on files (markdown table)
3. ## Detailed comments (only if there are actionable issues or questions)

The file review table must include columns in this order:
| File Name | Status | Comments |

Use only these status labels in the table:
- ✅ Passed
- ❓ Questions
- ❌ Not Passed

If there are no actionable issues, still provide the summary and the file table, mark every file as ✅ Passed, and use "No comments" in the Comments column.

Thread status logic for the consolidated comment:
- If every file row is ✅ Passed, create the thread with --status closed
- If any file row is ❓ Questions or ❌ Not Passed, create the thread with --status active

Example posting command (general PR comment):
adolens comment add --comment-file review.md --status closed
"""

_PER_FILE_BLOCK = """
PER-FILE MODE IS ENABLED (review_whole_diff = false)

For each file or changed area you review:
- If there are no actionable issues or questions, respond with NO_COMMENT only.
- If you respond with NO_COMMENT, do not call `adolens comment add` for that file.
- If you provide a comment, begin it with a status line in markdown using one of:
  - **Status:** ✅ Passed
  - **Status:** ❓ Questions
  - **Status:** ❌ Not Passed
- Use ✅ Passed only for positive feedback / no further action required.
- Use ❓ Questions when clarification is required before deciding pass/fail.
- Use ❌ Not Passed when code changes are required.

Thread status logic for posted comments:
- **Status:** ✅ Passed => create thread with --status closed
- **Status:** ❓ Questions or ❌ Not Passed => create thread with --status active
- Always include one of the three statuses above when posting a per-file comment (do not omit the status line).

Prefer inline comments for file-specific issues:
adolens comment add --comment-file comment.md --status active --file-path /src/App.cs --start-line 42 --end-line 45

General positive/pass comment example:
adolens comment add --comment-file comment.md --status closed
"""


def parse_additional_prompts(text: str | None) -> list[str]:
    """Split a newline- or comma-delimited directive list, dropping blanks."""
    if not text:
        return []
    return [part.strip() for part in re.split(r"[\r\n,]+", text) if part.strip()]


def build_focus_lines(policy: ReviewPolicy) -> list[str]:
    lines: list[str] = []
    if policy.review_bugs:
        lines.append(_FOCUS_BUGS)
    if policy.review_performance:
        lines.append(_FOCUS_PERFORMANCE)
    if policy.review_best_practices:
        lines.append(_FOCUS_BEST_PRACTICES)
    lines.extend(f"- {prompt}" for prompt in policy.additional_prompts)
    if not lines:
        lines.append(_FOCUS_DEFAULT)
    return lines


def build_behavior_section(policy: ReviewPolicy) -> str:
    header = _COMMON_HEADER.format(focus="\n".join(build_focus_lines(policy)))
    block = _WHOLE_DIFF_BLOCK if policy.whole_diff else _PER_FILE_BLOCK
    return header + block


def compile_prompt(template: str, policy: ReviewPolicy, custom_text: str | None = None) -> PromptDocument:
    rendered = template
    if CUSTOM_PROMPT_PLACEHOLDER in rendered:
        rendered = rendered.replace(CUSTOM_PROMPT_PLACEHOLDER, custom_text or "", 1)
    text = f"{rendered.strip()}\n\n{build_behavior_section(policy).strip()}\n"
    return PromptDocument(text=text, mode=mode_for(policy))


def mode_for(policy: ReviewPolicy) -> ReviewMode:
    return ReviewMode.WHOLE_DIFF if policy.whole_diff else ReviewMode.PER_FILE


# ---------------------------------------------------------------------- #
# Prompt sources                                                          #
# ---------------------------------------------------------------------- #


@dataclass(frozen=True)
class PromptSource:
    """Where the prompt text comes from.

    kind is one of "default", "prompt", "prompt_file", "prompt_raw",
    "prompt_file_raw". Raw kinds are sent to the agent verbatim; the others
    are merged into a bundled template.
    """

    kind: str = "default"
    text: str | None = None

    @property
    def is_raw(self) -> bool:
        return self.kind in ("prompt_raw", "prompt_file_raw")


def _read_prompt_file(path: str, label: str) -> str:
    p = Path(path)
    if not p.is_file():
        raise PreconditionError(f"{label} not found: {path}")
    content = p.read_text(encoding="utf-8")
    if not content.strip():
        raise PreconditionError(f"{label} is empty: {path}")
    return content


def resolve_prompt_source(
    prompt: str | None = None,
    prompt_file: str | None = None,
    prompt_raw: str | None = None,
    prompt_file_raw: str | None = None,
) -> PromptSource:
    """Pick the single configured prompt source.

    Supplying more than one source is a configuration error, as is a double
    quote in a templated prompt.
    """
    active = [
        name
        for name, value in (
            ("prompt", prompt),
            ("prompt_file", prompt_file),
            ("prompt_raw", prompt_raw),
            ("prompt_file_raw", prompt_file_raw),
        )
        if value
    ]
    if len(active) > 1:
        raise PreconditionError(
            f"Multiple prompt inputs are set ({', '.join(active)}). Only one prompt input should be provided. "
            "Please use only one of: prompt, prompt_file, prompt_raw, or prompt_file_raw."
        )

    if prompt_raw:
        return PromptSource(kind="prompt_raw", text=prompt_raw)
    if prompt_file_raw:
        return PromptSource(kind="prompt_file_raw", text=_read_prompt_file(prompt_file_raw, "Raw prompt file"))
    if prompt:
        if '"' in prompt:
            raise PreconditionError(
                'Custom prompts cannot include double quotes ("). Please remove any double quotes from your prompt.'
            )
        return PromptSource(kind="prompt", text=prompt)
    if prompt_file:
        content = _read_prompt_file(prompt_file, "Prompt file").strip()
        if '"' in content:
            raise PreconditionError(
                'Custom prompts cannot include double quotes ("). '
                f"Please remove any double quotes from the prompt file: {prompt_file}"
            )
        return PromptSource(kind="prompt_file", text=content)
    return PromptSource()


def build_prompt_document(source: PromptSource, policy: ReviewPolicy) -> PromptDocument:
    if source.is_raw:
        logger.info("Using raw prompt (%s); review settings are not applied.", source.kind)
        return PromptDocument(text=source.text or "", mode=mode_for(policy))
    if source.text:
        template = CUSTOM_TEMPLATE.read_text(encoding="utf-8")
        return compile_prompt(template, policy, source.text)
    template = DEFAULT_TEMPLATE.read_text(encoding="utf-8")
    return compile_prompt(template, policy)


def stage_prompt(document: PromptDocument, working_dir: str | Path) -> Path:
    """Write the document where the agent process can read it."""
    path = Path(working_dir) / STAGED_PROMPT_FILENAME
    path.write_text(document.text, encoding="utf-8")
    return path
