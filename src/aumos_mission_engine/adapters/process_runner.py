"""Subprocess-backed apply executor and verification workflow.

Processes run through ``asyncio.create_subprocess_exec``. When the awaiting
task is cancelled, or the optional timeout expires, the child process is
killed and reaped before the error propagates, so a cancelled mission never
leaves a tool running.

Key exports:
- run_process(...): run one command, capture combined output
- ScriptApplyExecutor: IApplyExecutor running a remediation script
- CommandVerificationWorkflow: IVerificationWorkflowService running a scanner command
"""

import asyncio
import contextlib
import json
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from aumos_mission_engine.build import layout
from aumos_mission_engine.core.models import (
    ApplyResult,
    VerificationToolOptions,
    VerificationToolRun,
    VerificationWorkflowResult,
)
from aumos_mission_engine.errors import ProcessExecutionError
from aumos_mission_engine.observability import get_logger

logger = get_logger(__name__)

STEP_PREFIX = "STEP:"
RESULT_SUFFIXES = (".xml", ".ckl", ".cklb", ".json", ".csv")
CONSOLIDATED_FILE = "consolidated-results.json"


@dataclass(frozen=True)
class ProcessOutcome:
    exit_code: int
    output: str


async def _terminate(process: asyncio.subprocess.Process) -> None:
    with contextlib.suppress(ProcessLookupError):
        process.kill()
    await process.wait()


async def run_process(
    argv: Sequence[str],
    cwd: Path | None = None,
    timeout: float | None = None,
) -> ProcessOutcome:
    """Run a command and capture its combined stdout/stderr.

    Args:
        argv: Executable followed by its arguments.
        cwd: Working directory.
        timeout: Seconds before the process is killed. None waits forever.

    Returns:
        ProcessOutcome with exit code and decoded output.

    Raises:
        ProcessExecutionError: On timeout (exit_code is None).
        asyncio.CancelledError: If the awaiting task is cancelled; the process
            is killed first.
    """
    process = await asyncio.create_subprocess_exec(
        *argv,
        cwd=cwd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
    )
    try:
        async with asyncio.timeout(timeout):
            stdout, _ = await process.communicate()
    except TimeoutError as exc:
        await _terminate(process)
        raise ProcessExecutionError(" ".join(argv), None) from exc
    except asyncio.CancelledError:
        logger.warning("Process cancelled, killing", command=argv[0], pid=process.pid)
        await _terminate(process)
        raise
    return ProcessOutcome(exit_code=process.returncode or 0, output=stdout.decode("utf-8", errors="replace"))


class ScriptApplyExecutor:
    """Runs a remediation script against a bundle.

    The command is ``[*interpreter, script_path, *script_args]`` executed in
    the bundle root. Output is written to ``Apply/apply_run.log``; lines
    starting with ``STEP:`` name the executed steps.

    Args:
        script_path: Remediation script.
        interpreter: Optional launcher prefix (e.g. ``["pwsh", "-File"]``).
        timeout: Seconds before the script is killed.
    """

    def __init__(
        self,
        script_path: Path,
        interpreter: Sequence[str] = (),
        timeout: float | None = None,
    ) -> None:
        self._script_path = script_path
        self._interpreter = list(interpreter)
        self._timeout = timeout

    async def run(self, bundle_root: Path, script_args: Sequence[str]) -> ApplyResult:
        argv = [*self._interpreter, str(self._script_path), *script_args]
        logger.info("Running apply script", script=str(self._script_path), bundle_root=str(bundle_root))
        outcome = await run_process(argv, cwd=bundle_root, timeout=self._timeout)

        log_path = bundle_root / layout.APPLY_DIR / "apply_run.log"
        log_path.parent.mkdir(parents=True, exist_ok=True)
        log_path.write_text(outcome.output, encoding="utf-8", newline="\n")

        if outcome.exit_code != 0:
            raise ProcessExecutionError(" ".join(argv), outcome.exit_code, outcome.output[-2000:])

        steps = [
            line[len(STEP_PREFIX):].strip()
            for line in outcome.output.splitlines()
            if line.startswith(STEP_PREFIX)
        ]
        return ApplyResult(log_path=str(log_path), steps=steps, exit_code=outcome.exit_code)


class CommandVerificationWorkflow:
    """Runs a scanner command and counts the result files it produced.

    Parsing tool-specific output formats is out of scope: the consolidated
    counts report how many result files of each extension the tool wrote.

    Args:
        timeout: Seconds before the tool is killed.
    """

    def __init__(self, timeout: float | None = None) -> None:
        self._timeout = timeout

    async def run(self, output_root: Path, tool_options: VerificationToolOptions) -> VerificationWorkflowResult:
        output_root.mkdir(parents=True, exist_ok=True)
        argv = [str(tool_options.executable), *tool_options.arguments]
        logger.info("Running verification tool", tool=tool_options.tool, output_root=str(output_root))
        outcome = await run_process(argv, cwd=output_root, timeout=self._timeout)

        counts: dict[str, int] = {}
        for path in sorted(output_root.rglob("*")):
            if path.is_file() and path.suffix.lower() in RESULT_SUFFIXES and path.name != CONSOLIDATED_FILE:
                suffix = path.suffix.lower().lstrip(".")
                counts[suffix] = counts.get(suffix, 0) + 1
        result_count = sum(counts.values())

        executed = outcome.exit_code == 0
        tool_run = VerificationToolRun(
            tool=tool_options.tool,
            executed=executed,
            result_count=result_count,
            message="ok" if executed else f"exit code {outcome.exit_code}",
        )
        consolidated_path = output_root / CONSOLIDATED_FILE
        consolidated_path.write_text(
            json.dumps(
                {"tool": tool_options.tool, "exitCode": outcome.exit_code, "counts": counts},
                indent=2,
            )
            + "\n",
            encoding="utf-8",
        )
        return VerificationWorkflowResult(
            consolidated_counts=counts,
            tool_runs=[tool_run],
            consolidated_json_path=str(consolidated_path),
        )
