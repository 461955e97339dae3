"""
Tools 模块（协议 + 注册表 + 内置工具）。
"""

from rubrduck.tools.protocol import Tool, ToolSpec, resolve_workspace_path, tool_spec_to_openai_tool
from rubrduck.tools.registry import ToolRegistry

__all__ = ["Tool", "ToolRegistry", "ToolSpec", "resolve_workspace_path", "tool_spec_to_openai_tool"]
