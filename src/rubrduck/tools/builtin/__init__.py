"""
内置工具集合。

说明：
- 工具实例由 `Agent.from_config` 显式构造并注册（不使用全局单例）；
- shell_execute 只通过注入的 sandbox 执行命令。
"""

from __future__ import annotations

from pathlib import Path
from typing import List

from rubrduck.core.executor import AsyncExecutor
from rubrduck.sandbox.base import Sandbox
from rubrduck.sandbox.policy import SandboxPolicy
from rubrduck.tools.builtin.file_ops import FILE_OPERATIONS_SPEC, FileTool
from rubrduck.tools.builtin.git import GIT_OPERATIONS_SPEC, GitTool
from rubrduck.tools.builtin.shell import SHELL_EXECUTE_SPEC, ShellTool
from rubrduck.tools.protocol import Tool


def default_tools(base_path: Path, sandbox: Sandbox, policy: SandboxPolicy) -> List[Tool]:
    """构造默认工具列表：file_operations、shell_execute、git_operations。"""

    return [
        FileTool(base_path),
        ShellTool(base_path, sandbox, policy),
        GitTool(base_path, executor=AsyncExecutor()),
    ]


__all__ = [
    "FILE_OPERATIONS_SPEC",
    "GIT_OPERATIONS_SPEC",
    "SHELL_EXECUTE_SPEC",
    "FileTool",
    "GitTool",
    "ShellTool",
    "default_tools",
]
