"""
rubrduck：带审批与沙箱执行的编码助手 Agent 运行时。

导出：
- Agent：单轮对话编排入口（流式事件 / 非流式回复）
- StreamEvent 及其成员：TokenChunk / ToolRequest / ToolResult / Done
- 配置加载：load_config / load_config_dicts
"""

from rubrduck.config.loader import AgentConfig, load_config, load_config_dicts
from rubrduck.core.agent import Agent
from rubrduck.core.events import Done, StreamEvent, TokenChunk, ToolRequest, ToolResult

__version__ = "0.1.0"

__all__ = [
    "Agent",
    "AgentConfig",
    "Done",
    "StreamEvent",
    "TokenChunk",
    "ToolRequest",
    "ToolResult",
    "__version__",
    "load_config",
    "load_config_dicts",
]
