"""
ToolRegistry：工具注册表。

本模块提供：
- 注册：`register/get/get_spec/list_specs`
- 查询：按名称查找工具实现（未注册返回 None，由编排层生成 unknown tool 结果）
"""

from __future__ import annotations

from typing import Dict, Optional

from rubrduck.core.errors import UserError
from rubrduck.tools.protocol import Tool, ToolSpec


class ToolRegistry:
    """工具注册表（按注册顺序保存）。"""

    def __init__(self) -> None:
        self._tools: Dict[str, Tool] = {}

    def register(self, tool: Tool, *, override: bool = False) -> None:
        """
        注册工具。

        参数：
        - tool：工具实现（`tool.spec.name` 作为注册名）
        - override：是否允许覆盖同名工具；默认 False（重复注册抛 UserError）
        """

        name = tool.spec.name
        if not name:
            raise UserError("tool name must not be empty")
        if name in self._tools and not override:
            raise UserError(f"tool already registered: {name}")
        self._tools[name] = tool

    def get(self, name: str) -> Optional[Tool]:
        """按名称获取工具；未注册返回 None。"""

        return self._tools.get(name)

    def get_spec(self, name: str) -> ToolSpec:
        """获取工具规格；不存在则抛 `UserError`。"""

        tool = self._tools.get(name)
        if tool is None:
            raise UserError(f"unknown tool: {name}")
        return tool.spec

    def list_specs(self) -> list[ToolSpec]:
        """按注册顺序返回所有工具规格。"""

        return [t.spec for t in self._tools.values()]

    def names(self) -> list[str]:
        """按注册顺序返回工具名。"""

        return list(self._tools.keys())

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)
