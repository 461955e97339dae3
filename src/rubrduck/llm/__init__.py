"""
LLM 模块（协议与离线 fake provider）。

说明：
- 具体厂商的传输层由调用方实现 `ChatProvider` 后注入。
"""

from rubrduck.llm.protocol import (
    ChatProvider,
    ChatRequest,
    ChatResponse,
    ChatStreamChunk,
    Message,
    ToolCall,
    ToolCallFunction,
    Usage,
)

__all__ = [
    "ChatProvider",
    "ChatRequest",
    "ChatResponse",
    "ChatStreamChunk",
    "Message",
    "ToolCall",
    "ToolCallFunction",
    "Usage",
]
