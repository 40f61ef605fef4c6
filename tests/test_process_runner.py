"""Tests for the subprocess-backed apply executor and verification workflow.

Child processes are short ``python -c`` scripts run with the current
interpreter, so the tests need nothing beyond the Python install itself.
"""

import asyncio
import json
import os
import sys
from pathlib import Path

import pytest

from aumos_mission_engine.adapters.process_runner import (
    CONSOLIDATED_FILE,
    CommandVerificationWorkflow,
    ScriptApplyExecutor,
    run_process,
)
from aumos_mission_engine.core.models import VerificationToolOptions
from aumos_mission_engine.errors import ProcessExecutionError


def _script(tmp_path: Path, body: str) -> Path:
    path = tmp_path / "script.py"
    path.write_text(body, encoding="utf-8")
    return path


class TestRunProcess:
    """Exit codes, timeouts and cancellation."""

    @pytest.mark.asyncio()
    async def test_captures_output_and_exit_code(self) -> None:
        outcome = await run_process([sys.executable, "-c", "import sys; print('hello'); sys.exit(3)"])
        assert outcome.exit_code == 3
        assert outcome.output.strip() == "hello"

    @pytest.mark.asyncio()
    async def test_timeout_kills_process(self) -> None:
        with pytest.raises(ProcessExecutionError) as exc_info:
            await run_process([sys.executable, "-c", "import time; time.sleep(30)"], timeout=0.5)
        assert exc_info.value.exit_code is None

    @pytest.mark.asyncio()
    async def test_cancellation_kills_child(self, tmp_path: Path) -> None:
        pid_file = tmp_path / "child.pid"
        code = f"import os, time; open({str(pid_file)!r}, 'w').write(str(os.getpid())); time.sleep(30)"
        task = asyncio.create_task(run_process([sys.executable, "-c", code]))

        for _ in range(200):
            if pid_file.exists() and pid_file.read_text():
                break
            await asyncio.sleep(0.05)
        pid = int(pid_file.read_text())

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        with pytest.raises(ProcessLookupError):
            os.kill(pid, 0)


class TestScriptApplyExecutor:
    """Remediation script execution."""

    @pytest.mark.asyncio()
    async def test_steps_and_log_are_captured(self, tmp_path: Path) -> None:
        script = _script(tmp_path, "import sys\nprint('STEP: registry')\nprint('noise')\nprint('STEP: services')\n")
        bundle_root = tmp_path / "bundle"
        bundle_root.mkdir()

        result = await ScriptApplyExecutor(script, interpreter=[sys.executable]).run(
            bundle_root, ["--bundle-root", str(bundle_root)]
        )

        assert result.steps == ["registry", "services"]
        assert result.exit_code == 0
        assert result.log_path is not None
        assert "noise" in Path(result.log_path).read_text(encoding="utf-8")

    @pytest.mark.asyncio()
    async def test_non_zero_exit_raises_with_output_tail(self, tmp_path: Path) -> None:
        script = _script(tmp_path, "import sys\nprint('broken registry')\nsys.exit(2)\n")
        bundle_root = tmp_path / "bundle"
        bundle_root.mkdir()

        with pytest.raises(ProcessExecutionError) as exc_info:
            await ScriptApplyExecutor(script, interpreter=[sys.executable]).run(bundle_root, [])

        assert exc_info.value.exit_code == 2
        assert "broken registry" in exc_info.value.output_tail

    @pytest.mark.asyncio()
    async def test_script_receives_arguments_and_runs_in_bundle_root(self, tmp_path: Path) -> None:
        script = _script(tmp_path, "import os, sys\nprint('STEP: ' + os.getcwd())\nprint('STEP: ' + sys.argv[1])\n")
        bundle_root = tmp_path / "bundle"
        bundle_root.mkdir()

        result = await ScriptApplyExecutor(script, interpreter=[sys.executable]).run(bundle_root, ["--skip-snapshot"])

        assert Path(result.steps[0]).resolve() == bundle_root.resolve()
        assert result.steps[1] == "--skip-snapshot"


class TestCommandVerificationWorkflow:
    """Scanner execution and result-file counting."""

    @pytest.mark.asyncio()
    async def test_counts_result_files_by_extension(self, tmp_path: Path) -> None:
        code = (
            "open('a.xml', 'w').write('<x/>'); open('b.xml', 'w').write('<x/>'); "
            "open('c.ckl', 'w').write(''); open('notes.txt', 'w').write('')"
        )
        options = VerificationToolOptions(tool="SCAP", executable=Path(sys.executable), arguments=["-c", code])
        output_root = tmp_path / "Verify" / "SCAP"

        result = await CommandVerificationWorkflow().run(output_root, options)

        assert result.consolidated_counts == {"ckl": 1, "xml": 2}
        assert result.tool_runs[0].executed
        assert result.tool_runs[0].result_count == 3
        consolidated = json.loads((output_root / CONSOLIDATED_FILE).read_text(encoding="utf-8"))
        assert consolidated["tool"] == "SCAP"

    @pytest.mark.asyncio()
    async def test_failing_tool_is_reported_not_executed(self, tmp_path: Path) -> None:
        options = VerificationToolOptions(
            tool="EvaluateTool", executable=Path(sys.executable), arguments=["-c", "import sys; sys.exit(1)"]
        )
        result = await CommandVerificationWorkflow().run(tmp_path / "out", options)

        assert not result.tool_runs[0].executed
        assert result.tool_runs[0].message == "exit code 1"
