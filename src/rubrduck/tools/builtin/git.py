"""
内置工具：git_operations（status / diff / commit / branch / log / remote）。

说明：
- 直接在项目根目录下调用 `git`（argv 形式，不经过 shell），每次调用 30s 超时；
- 输出整理为简短可读文本；git 失败以 `ToolError` 表达并携带 stderr。
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from rubrduck.core.errors import ToolError
from rubrduck.core.executor import AsyncExecutor
from rubrduck.tools.protocol import ToolSpec

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SEC = 30.0
DEFAULT_MAX_LINES = 100

STATUS_LABELS: Dict[str, str] = {
    "M ": "Modified (staged)",
    " M": "Modified",
    "A ": "Added",
    "D ": "Deleted",
    "R ": "Renamed",
    "C ": "Copied",
    "??": "Untracked",
}


class _GitArgs(BaseModel):
    """git_operations 输入参数。"""

    model_config = ConfigDict(extra="ignore")

    operation: str = ""
    args: str = ""
    file: str = ""
    max_lines: int = Field(default=DEFAULT_MAX_LINES, ge=0)


GIT_OPERATIONS_SPEC = ToolSpec(
    name="git_operations",
    description="Perform Git operations including status, diff, commit, and branch management",
    parameters={
        "type": "object",
        "properties": {
            "operation": {
                "type": "string",
                "enum": ["status", "diff", "commit", "branch", "log", "remote"],
                "description": "The Git operation to perform",
            },
            "args": {
                "type": "string",
                "description": "Additional arguments for the operation (e.g., commit message, branch name)",
            },
            "file": {"type": "string", "description": "Specific file to operate on (for diff, status, etc.)"},
            "max_lines": {
                "type": "integer",
                "description": "Maximum number of lines to return (for log, diff, etc.)",
                "default": DEFAULT_MAX_LINES,
            },
        },
        "required": ["operation"],
    },
)


class GitTool:
    """
    git_operations 工具。

    参数：
    - base_path：仓库根目录
    - timeout：单次 git 调用的超时（秒）
    - executor：可选；注入自定义执行器（测试用）
    """

    def __init__(
        self,
        base_path: Path,
        *,
        timeout: float = DEFAULT_TIMEOUT_SEC,
        executor: Optional[AsyncExecutor] = None,
    ) -> None:
        self._base_path = Path(base_path).resolve()
        self._timeout = timeout
        self._executor = executor or AsyncExecutor()
        self.spec = GIT_OPERATIONS_SPEC

    async def _git(self, *args: str, label: str) -> str:
        """执行一次 git 调用并返回 stdout；失败时抛 ToolError。"""

        try:
            result = await self._executor.run(["git", *args], cwd=self._base_path, timeout=self._timeout)
        except OSError as e:
            raise ToolError(f"{label} failed: {e}") from e
        if result.timed_out:
            raise ToolError(f"{label} failed: timed out after {self._timeout:g}s")
        if result.exit_code != 0:
            detail = result.stderr.strip() or f"exit code {result.exit_code}"
            raise ToolError(f"{label} failed: {detail}", output=result.stdout)
        return result.stdout

    async def execute(self, arguments: str) -> str:
        try:
            params = _GitArgs.model_validate(json.loads(arguments))
        except (ValueError, ValidationError) as e:
            raise ToolError(f"invalid arguments: {e}") from e

        if not params.operation:
            raise ToolError("operation is required")
        max_lines = params.max_lines or DEFAULT_MAX_LINES
        logger.debug("Executing git operation: %s args=%r file=%r", params.operation, params.args, params.file)

        op = params.operation
        if op == "status":
            return await self.status(params.file)
        if op == "diff":
            return await self.diff(params.file, max_lines)
        if op == "commit":
            return await self.commit(params.args)
        if op == "branch":
            return await self.branch(params.args)
        if op == "log":
            return await self.log(max_lines)
        if op == "remote":
            return await self.remote()
        raise ToolError(f"unknown git operation: {op}")

    async def status(self, file: str = "") -> str:
        args = ["status", "--porcelain"]
        if file:
            args.extend(["--", file])
        output = await self._git(*args, label="git status")
        if not output.strip():
            return "Working directory is clean"

        lines = ["Git Status:", ""]
        for line in output.rstrip("\n").split("\n"):
            if len(line) < 3:
                continue
            lines.append(f"{STATUS_LABELS.get(line[:2], 'Unknown')}: {line[3:]}")
        return "\n".join(lines) + "\n"

    async def diff(self, file: str = "", max_lines: int = DEFAULT_MAX_LINES) -> str:
        args = ["diff"]
        if file:
            args.extend(["--", file])
        output = await self._git(*args, label="git diff")
        if not output:
            return "No changes to show"
        lines = output.split("\n")
        if len(lines) > max_lines:
            lines = lines[:max_lines]
            lines.append(f"\n... (showing first {max_lines} lines)")
        return "\n".join(lines)

    async def commit(self, message: str) -> str:
        if not message:
            raise ToolError("commit message is required")
        status = await self._git("status", "--porcelain", label="git status")
        if not status.strip():
            return "No changes to commit"
        await self._git("add", ".", label="git add")
        output = await self._git("commit", "-m", message, label="git commit")
        return f"Successfully committed changes:\n{output}"

    async def branch(self, args: str = "") -> str:
        """无参数时列出分支；否则支持 create/new、switch/checkout、delete 子命令。"""

        if not args.strip():
            output = (await self._git("branch", "-a", label="git branch")).strip()
            if not output:
                # 尚无提交的新仓库：branch -a 为空，退化为当前 HEAD 名
                try:
                    head = await self._git("symbolic-ref", "--short", "HEAD", label="git symbolic-ref")
                    output = "* " + head.strip()
                except ToolError as e:
                    logger.debug("Cannot resolve HEAD name: %s", e)
                    output = ""
            names: List[str] = []
            for line in output.split("\n"):
                if line.strip():
                    names.append(line.strip().removeprefix("* ").strip())
            return "Branches:\n\n" + "".join(f"- {name}\n" for name in names)

        parts = args.split()
        action = parts[0]
        if action not in ("create", "new", "switch", "checkout", "delete"):
            raise ToolError(f"unknown branch operation: {action}")
        if len(parts) < 2:
            raise ToolError("branch name required")
        name = parts[1]

        if action in ("create", "new"):
            await self._git("checkout", "-b", name, label="git checkout -b")
            return f"Successfully created and switched to branch '{name}'"
        if action == "delete":
            await self._git("branch", "-d", name, label="git branch -d")
            return f"Successfully deleted branch '{name}'"

        try:
            await self._git("checkout", name, label="git checkout")
        except ToolError as switch_error:
            try:
                await self._git("checkout", "-b", name, label="git checkout -b")
            except ToolError:
                raise switch_error
            return f"Successfully created and switched to branch '{name}'"
        return f"Successfully switched to branch '{name}'"

    async def log(self, max_lines: int = DEFAULT_MAX_LINES) -> str:
        output = await self._git("log", "--oneline", "--graph", "--decorate", label="git log")
        if not output.strip():
            return "No commits found"
        lines = output.strip().split("\n")
        if len(lines) > max_lines:
            lines = lines[:max_lines]
            lines.append(f"\n... (showing first {max_lines} commits)")
        return "Recent Commits:\n\n" + "\n".join(lines)

    async def remote(self) -> str:
        output = await self._git("remote", "-v", label="git remote")
        if not output:
            return "No remote repositories configured"
        return f"Remote Repositories:\n\n{output}"


__all__ = ["GIT_OPERATIONS_SPEC", "GitTool"]
