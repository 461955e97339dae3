"""
内置工具：shell_execute（经由 sandbox 执行单条命令）。

约束：
- 命令不经过 shell 解释：按空白切分为 argv，首个词为可执行文件；
- 含管道/重定向/串联/命令替换/后台执行/eval 类关键字的命令在启动前被拒绝；
- working_dir 只接受项目根目录内的相对路径；
- 退出码非 0、超时、沙箱拒绝都以 `ToolError` 表达（携带已产生的输出）。
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from rubrduck.core.errors import PolicyError, SandboxError, ToolError, UserError
from rubrduck.sandbox.base import Sandbox
from rubrduck.sandbox.policy import SandboxPolicy, SandboxResult
from rubrduck.tools.protocol import ToolSpec, resolve_workspace_path

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SEC = 30
DANGEROUS_PATTERNS = ("&&", "||", ";", "|", ">>", "<<", "2>", "&>", ">", "<", "$(", "`")
_KEYWORD_RE = re.compile(r"(?<![\w.-])(eval|exec|source)(?![\w.-])")


class _ShellArgs(BaseModel):
    """shell_execute 输入参数。"""

    model_config = ConfigDict(extra="ignore")

    command: str
    timeout: int = Field(default=DEFAULT_TIMEOUT_SEC, ge=0)
    working_dir: str = ""


SHELL_EXECUTE_SPEC = ToolSpec(
    name="shell_execute",
    description="Execute shell commands with security restrictions and approval handling",
    parameters={
        "type": "object",
        "properties": {
            "command": {"type": "string", "description": "The shell command to execute"},
            "timeout": {
                "type": "integer",
                "description": "Timeout in seconds (default: 30)",
                "default": DEFAULT_TIMEOUT_SEC,
            },
            "working_dir": {
                "type": "string",
                "description": "Working directory for command execution (relative to project root)",
            },
        },
        "required": ["command"],
    },
)


def validate_shell_command(command: str, blocked_commands: List[str]) -> None:
    """
    启动前的命令检查。

    异常：
    - ToolError：空命令、首词被阻止、含危险模式
    """

    if not command.strip():
        raise ToolError("command cannot be empty")
    first = command.split()[0]
    if first in blocked_commands:
        raise ToolError(f"command '{first}' is not allowed for security reasons")
    for pattern in DANGEROUS_PATTERNS:
        if pattern in command:
            raise ToolError(f"command contains dangerous pattern '{pattern}'")
    match = _KEYWORD_RE.search(command)
    if match:
        raise ToolError(f"command contains dangerous pattern '{match.group(1)}'")
    if "&" in command:
        raise ToolError("background execution is not allowed")


def format_result(command: str, work_dir: Path, result: SandboxResult) -> str:
    parts = [
        f"Command: {command}\n",
        f"Working Directory: {work_dir}\n",
        f"Exit Code: {result.exit_code}\n",
        f"Duration: {result.duration:.3f}s\n\n",
    ]
    if result.stdout:
        parts.append(f"STDOUT:\n{result.stdout}\n")
    if result.stderr:
        parts.append(f"STDERR:\n{result.stderr}\n")
    return "".join(parts)


class ShellTool:
    """
    shell_execute 工具。

    参数：
    - base_path：项目根目录
    - sandbox：执行所用的 sandbox variant（显式注入）
    - policy：基础策略；每次执行时在其上追加工作目录的读写权限
    """

    def __init__(self, base_path: Path, sandbox: Sandbox, policy: SandboxPolicy) -> None:
        self._base_path = Path(base_path).resolve()
        self._sandbox = sandbox
        self._policy = policy
        self.spec = SHELL_EXECUTE_SPEC

    def policy_for(self, work_dir: Path, timeout: Optional[float] = None) -> SandboxPolicy:
        """
        为一次执行生成策略（工作目录与项目根目录可读，工作目录可写）。

        参数：
        - timeout：可选；非空时与 policy.max_cpu_time 取较小值
        """

        def _prepend(first: List[str], rest: tuple) -> tuple:
            out: List[str] = []
            for p in [*first, *rest]:
                if p not in out:
                    out.append(p)
            return tuple(out)

        cpu = self._policy.max_cpu_time
        if timeout:
            cpu = min(cpu, timeout) if cpu > 0 else timeout
        return self._policy.model_copy(
            update={
                "allow_read_paths": _prepend([str(work_dir), str(self._base_path)], self._policy.allow_read_paths),
                "allow_write_paths": _prepend([str(work_dir)], self._policy.allow_write_paths),
                "max_cpu_time": cpu,
            }
        )

    async def execute(self, arguments: str) -> str:
        try:
            args = _ShellArgs.model_validate(json.loads(arguments))
        except (ValueError, ValidationError) as e:
            raise ToolError(f"invalid arguments: {e}") from e

        validate_shell_command(args.command, list(self._policy.blocked_commands))

        work_dir = self._base_path
        if args.working_dir:
            try:
                work_dir = resolve_workspace_path(self._base_path, args.working_dir, allow_absolute=False)
            except UserError as e:
                raise ToolError(f"invalid working directory: {e}") from e

        timeout = float(args.timeout or DEFAULT_TIMEOUT_SEC)
        logger.debug("Executing shell command: %s (cwd=%s timeout=%s)", args.command, work_dir, timeout)

        argv = args.command.split()
        policy = self.policy_for(work_dir, timeout)
        try:
            result = await self._sandbox.execute(argv[0], argv[1:], policy, cwd=work_dir, timeout=timeout)
        except (PolicyError, SandboxError) as e:
            raise ToolError(f"sandbox execution failed: {e}") from e

        text = format_result(args.command, work_dir, result)
        if result.timed_out:
            raise ToolError(f"command timed out after {timeout:g}s", output=text)
        if result.error:
            raise ToolError(f"command failed: {result.error}", output=text)
        if result.exit_code != 0:
            raise ToolError(f"command failed: exit code {result.exit_code}", output=text)
        return text


__all__ = ["SHELL_EXECUTE_SPEC", "ShellTool", "validate_shell_command"]
