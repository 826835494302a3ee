"""Run the external review agent as a bounded subprocess.

    Running → Succeeded | Failed(exit code) | TimedOut

A process that cannot be started is Failed without an exit code.

The agent's combined stdout/stderr is streamed line by line while it runs.
When the timeout elapses first the process is terminated (escalating to kill)
and the result is TimedOut regardless of how it would have exited.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import threading
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable

from rich.console import Console
from rich.markup import escape

from adolens_core.errors import PreconditionError

console = Console()
logger = logging.getLogger(__name__)

DEFAULT_AGENT_BINARY = "copilot"
# The agent may use any tool except pushing to the remote.
DENIED_TOOL = "shell(git push)"
_TERMINATE_GRACE_SECONDS = 5


class AgentState(str, Enum):
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    TIMED_OUT = "TimedOut"


@dataclass(frozen=True)
class AgentResult:
    state: AgentState
    exit_code: int | None = None
    elapsed: float = 0.0
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.state is AgentState.SUCCEEDED


def check_agent_available(binary: str = DEFAULT_AGENT_BINARY) -> str:
    """Return the resolved path of the agent binary or raise PreconditionError."""
    path = shutil.which(binary)
    if path is None:
        raise PreconditionError(
            f"The review agent '{binary}' was not found on PATH. Install it before running a review."
        )
    return path


def build_agent_command(binary: str, prompt: str, model: str | None = None) -> list[str]:
    cmd = [binary, "-p", prompt, "--allow-all-paths", "--allow-all-tools", "--deny-tool", DENIED_TOOL]
    if model:
        cmd += ["--model", model]
    return cmd


def _print_line(line: str) -> None:
    console.print(escape(line.rstrip("\n")), highlight=False)


def _terminate(proc: subprocess.Popen) -> None:
    if proc.poll() is not None:
        return
    proc.terminate()
    try:
        proc.wait(timeout=_TERMINATE_GRACE_SECONDS)
    except subprocess.TimeoutExpired:
        proc.kill()
        proc.wait()


def run_process(
    cmd: list[str],
    cwd: str | Path | None = None,
    timeout: float | None = None,
    env: dict[str, str] | None = None,
    on_output: Callable[[str], None] = _print_line,
) -> AgentResult:
    """Run cmd to completion, failure or timeout, streaming its output."""
    start = time.monotonic()
    try:
        proc = subprocess.Popen(
            cmd,
            cwd=cwd,
            env=env,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
    except OSError as e:
        return AgentResult(state=AgentState.FAILED, error=f"Failed to start {cmd[0]}: {e}")

    logger.info("Agent %s is %s (pid %d)", cmd[0], AgentState.RUNNING.value, proc.pid)

    def _pump():
        assert proc.stdout is not None
        for line in proc.stdout:
            on_output(line)

    reader = threading.Thread(target=_pump, daemon=True)
    reader.start()

    try:
        exit_code = proc.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        _terminate(proc)
        reader.join(timeout=_TERMINATE_GRACE_SECONDS)
        return AgentResult(state=AgentState.TIMED_OUT, elapsed=time.monotonic() - start)

    reader.join(timeout=_TERMINATE_GRACE_SECONDS)
    elapsed = time.monotonic() - start
    if exit_code == 0:
        return AgentResult(state=AgentState.SUCCEEDED, exit_code=0, elapsed=elapsed)
    return AgentResult(state=AgentState.FAILED, exit_code=exit_code, elapsed=elapsed)


def run_agent(
    prompt_path: str | Path,
    model: str | None,
    working_dir: str | Path,
    timeout: float,
    env: dict[str, str] | None = None,
    binary: str = DEFAULT_AGENT_BINARY,
) -> AgentResult:
    """Launch the review agent on a staged prompt file."""
    prompt = Path(prompt_path).read_text(encoding="utf-8")
    console.print("========== START PROMPT ==========")
    console.print(escape(prompt), highlight=False)
    console.print("========== END PROMPT ==========")

    cmd = build_agent_command(binary, prompt, model)
    logger.info("Running %s%s (timeout %ds)", binary, f" with model {model}" if model else "", int(timeout))
    return run_process(cmd, cwd=working_dir, timeout=timeout, env=env)
