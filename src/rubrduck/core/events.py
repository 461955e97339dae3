"""
Agent 对外事件（StreamEvent tagged union）。

type:
- `token_chunk`：assistant 文本增量
- `tool_request`：某个完整 tool call 即将进入审批（携带 ApprovalRequest）
- `tool_result`：某个 tool call 的最终结果文本（每个 call id 至多一次）
- `done`：本轮结束（usage 或终止错误）

约束：
- 事件按因果顺序产出：某个 call 的 `tool_result` 一定晚于该 call 重建完成。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Literal, Optional, Union

from rubrduck.core.run_errors import RunError
from rubrduck.llm.protocol import Usage
from rubrduck.safety.approvals import ApprovalRequest


@dataclass(frozen=True)
class TokenChunk:
    """assistant 文本增量。"""

    text: str
    type: Literal["token_chunk"] = "token_chunk"

    def to_payload(self) -> Dict[str, Any]:
        return {"type": self.type, "text": self.text}


@dataclass(frozen=True)
class ToolRequest:
    """tool call 进入审批前的通知（presentation 层可据此渲染待处理操作）。"""

    request: ApprovalRequest
    type: Literal["tool_request"] = "tool_request"

    def to_payload(self) -> Dict[str, Any]:
        return {"type": self.type, "request": self.request.model_dump(mode="json")}


@dataclass(frozen=True)
class ToolResult:
    """
    tool call 的结果。

    字段：
    - tool_id：调用 id（可能为空：模型未给出 id 的不完整调用）
    - tool_name：工具名（不完整调用可能为空）
    - result：回注给模型的结果文本（成功输出或可读错误）
    - is_error：是否为错误/拒绝结果
    """

    tool_id: str
    tool_name: str
    result: str
    is_error: bool = False
    type: Literal["tool_result"] = "tool_result"

    def to_payload(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "tool_id": self.tool_id,
            "tool_name": self.tool_name,
            "result": self.result,
            "is_error": self.is_error,
        }


@dataclass(frozen=True)
class Done:
    """
    本轮结束。

    字段：
    - usage：本轮累计 token 用量（provider 未报告时为零值）
    - error：终止错误（传输错误等）；正常结束为 None
    """

    usage: Usage
    error: Optional[RunError] = None
    type: Literal["done"] = "done"

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_payload(self) -> Dict[str, Any]:
        """转换为可 JSON 序列化的 dict（供 SSE/日志等上层使用）。"""

        out: Dict[str, Any] = {"type": self.type, "usage": self.usage.model_dump()}
        if self.error is not None:
            out["error"] = self.error.to_payload()
        return out


StreamEvent = Union[TokenChunk, ToolRequest, ToolResult, Done]


__all__ = ["Done", "StreamEvent", "TokenChunk", "ToolRequest", "ToolResult"]
