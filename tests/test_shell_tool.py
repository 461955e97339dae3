from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import List, Optional, Sequence

import pytest

from rubrduck.core.errors import PolicyError, ToolError
from rubrduck.sandbox.base import SandboxKind
from rubrduck.sandbox.policy import SandboxCapabilities, SandboxPolicy, SandboxResult, default_policy
from rubrduck.tools.builtin.shell import ShellTool, validate_shell_command


class _StubSandbox:
    kind = SandboxKind.FALLBACK

    def __init__(self, result: Optional[SandboxResult] = None, error: Optional[Exception] = None) -> None:
        self.result = result or SandboxResult(exit_code=0, stdout="ok\n")
        self.error = error
        self.calls: List[tuple] = []

    async def execute(
        self,
        command: str,
        args: Sequence[str],
        policy: SandboxPolicy,
        *,
        cwd: Optional[Path] = None,
        timeout: Optional[float] = None,
    ) -> SandboxResult:
        self.calls.append((command, list(args), policy, cwd, timeout))
        if self.error is not None:
            raise self.error
        return self.result

    def validate_policy(self, policy: SandboxPolicy) -> None:
        return None

    def get_capabilities(self) -> SandboxCapabilities:
        return SandboxCapabilities(platform="stub")


def _tool(tmp_path: Path, sandbox: _StubSandbox) -> ShellTool:
    return ShellTool(tmp_path, sandbox, default_policy(str(tmp_path)))


def _run(tool: ShellTool, **args: object) -> str:
    return asyncio.run(tool.execute(json.dumps(args)))


def test_command_split_into_argv(tmp_path: Path) -> None:
    sandbox = _StubSandbox()
    out = _run(_tool(tmp_path, sandbox), command="ls -la src", timeout=5)

    (command, args, policy, cwd, timeout) = sandbox.calls[0]
    assert (command, args, cwd, timeout) == ("ls", ["-la", "src"], tmp_path.resolve(), 5.0)
    assert policy.max_cpu_time == 5.0
    assert str(tmp_path.resolve()) in policy.allow_write_paths
    assert out.startswith("Command: ls -la src\n")
    assert "Exit Code: 0" in out
    assert "STDOUT:\nok\n" in out


def test_working_dir_is_relative_to_root(tmp_path: Path) -> None:
    (tmp_path / "sub").mkdir()
    sandbox = _StubSandbox()
    _run(_tool(tmp_path, sandbox), command="pwd", working_dir="sub")
    assert sandbox.calls[0][3] == (tmp_path / "sub").resolve()

    with pytest.raises(ToolError, match="absolute paths are not allowed"):
        _run(_tool(tmp_path, sandbox), command="pwd", working_dir="/tmp")
    with pytest.raises(ToolError, match="outside project bounds"):
        _run(_tool(tmp_path, sandbox), command="pwd", working_dir="../..")


@pytest.mark.parametrize(
    "command",
    ["ls | wc", "echo a > b", "ls && pwd", "cat `x`", "echo $(id)", "eval ls", "sleep 1 &"],
)
def test_dangerous_patterns_rejected_before_sandbox(tmp_path: Path, command: str) -> None:
    sandbox = _StubSandbox()
    with pytest.raises(ToolError):
        _run(_tool(tmp_path, sandbox), command=command)
    assert sandbox.calls == []


def test_blocked_first_word_rejected() -> None:
    with pytest.raises(ToolError, match="not allowed"):
        validate_shell_command("sudo ls", ["sudo"])
    with pytest.raises(ToolError, match="empty"):
        validate_shell_command("   ", [])
    validate_shell_command("cat executor.py", [])


def test_nonzero_exit_is_error_with_output(tmp_path: Path) -> None:
    sandbox = _StubSandbox(SandboxResult(exit_code=2, stderr="no such file\n"))
    with pytest.raises(ToolError) as exc:
        _run(_tool(tmp_path, sandbox), command="ls missing")
    assert "exit code 2" in str(exc.value)
    assert "STDERR:\nno such file" in exc.value.output


def test_timeout_is_error(tmp_path: Path) -> None:
    sandbox = _StubSandbox(SandboxResult(exit_code=-1, timed_out=True, error="command timed out"))
    with pytest.raises(ToolError, match="timed out after 1s"):
        _run(_tool(tmp_path, sandbox), command="ls", timeout=1)


def test_sandbox_policy_rejection_is_tool_error(tmp_path: Path) -> None:
    sandbox = _StubSandbox(error=PolicyError("command 'vim' is not in allowed commands list"))
    with pytest.raises(ToolError, match="not in allowed commands list"):
        _run(_tool(tmp_path, sandbox), command="vim")
