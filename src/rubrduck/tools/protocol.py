"""
Tool 协议（ToolSpec / Tool）。

本模块只定义“可实现级”的最小协议：
- ToolSpec：工具声明（OpenAI function calling 兼容 JSON schema）
- Tool：工具实现需满足的接口（`spec` + `async execute(arguments)`）
- tool_spec_to_openai_tool：将 ToolSpec 映射为 chat.completions tools[] 形状
- resolve_workspace_path：把模型给出的路径限制在项目根目录内
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from rubrduck.core.errors import UserError


class ToolSpec(BaseModel):
    """
    Tool 声明（function calling 兼容）。

    字段：
    - name：工具名（全局唯一，稳定）
    - description：工具说明（给模型看）
    - parameters：JSON Schema（必须为 object schema）
    """

    model_config = ConfigDict(extra="forbid")

    name: str
    description: str
    parameters: Dict[str, Any] = Field(default_factory=dict)


@runtime_checkable
class Tool(Protocol):
    """
    工具接口。

    约束：
    - `execute` 接收原始 arguments JSON 字符串，返回给模型的结果文本；
    - 失败时抛 `ToolError`（可携带已产生的输出），由编排层转成 ToolResult 文本。
    """

    spec: ToolSpec

    async def execute(self, arguments: str) -> str:
        """执行工具并返回结果文本。"""

        ...


def tool_spec_to_openai_tool(spec: ToolSpec) -> Dict[str, Any]:
    """
    将 `ToolSpec` 映射为 OpenAI chat.completions 的 tools[] entry。

    返回形状（function calling）：
    {
      "type": "function",
      "function": { "name": "...", "description": "...", "parameters": {...} }
    }
    """

    return {
        "type": "function",
        "function": {
            "name": spec.name,
            "description": spec.description,
            "parameters": spec.parameters,
        },
    }


def resolve_workspace_path(workspace_root: Path, path: str, *, allow_absolute: bool = True) -> Path:
    """
    将模型提供的 path 解析为绝对路径，并限制在 workspace_root 下。

    参数：
    - workspace_root：项目根目录
    - path：相对或绝对路径；空字符串表示根目录本身
    - allow_absolute：是否接受绝对路径（shell working_dir 不接受）

    异常：
    - `UserError`：路径逃逸 workspace_root，或不允许的绝对路径
    """

    root = Path(workspace_root).resolve()
    raw = (path or "").strip()
    if not raw:
        return root

    p = Path(os.path.expanduser(raw)) if raw.startswith("~") else Path(raw)
    if p.is_absolute():
        if not allow_absolute:
            raise UserError("absolute paths are not allowed")
    else:
        p = root / p
    p = p.resolve()
    if not p.is_relative_to(root):
        raise UserError("path outside project bounds")
    return p
