"""
工具调用编排（从 core.agent 拆出）。

包含：
- 不完整调用的错误结果（从不执行）
- ToolRequest 事件产出 + 审批决策
- tool dispatch（未知工具 / 执行错误 → 可读错误文本）
- 每个调用一条 tool 消息回注 history（无论成功、拒绝或失败）

约束：
- 按重建顺序串行执行：后面的审批可能依赖前面调用造成的状态变化；
- 单个调用的失败从不中止整批；只有取消会向上传播。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Sequence

from rubrduck.core.errors import ToolError
from rubrduck.core.events import StreamEvent, ToolRequest, ToolResult
from rubrduck.llm.protocol import Message, ToolCall
from rubrduck.safety.approval_system import ApprovalSystem
from rubrduck.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

Emit = Callable[[StreamEvent], None]


@dataclass(frozen=True)
class CallOutcome:
    """单个 tool call 的处理结果（供非流式接口汇总）。"""

    call: ToolCall
    result: str
    is_error: bool


def incomplete_call_message(call: ToolCall) -> str:
    return f"Error: Incomplete tool call - name='{call.name}', args='{call.arguments}'"


def format_tool_error(name: str, exc: BaseException) -> str:
    """执行错误文本；ToolError 携带的输出附在错误之后。"""

    text = f"Error executing {name}: {exc}"
    output = getattr(exc, "output", "")
    if output:
        text = f"{text}\n\n{output}"
    return text


async def run_tool_call(
    call: ToolCall,
    *,
    approval: ApprovalSystem,
    registry: ToolRegistry,
    emit: Emit,
) -> CallOutcome:
    """处理单个已重建的 tool call：校验完整性 → 审批 → 执行。"""

    if not call.is_complete():
        logger.warning("Skipping incomplete tool call: id=%r name=%r", call.id, call.name)
        return CallOutcome(call, incomplete_call_message(call), True)

    try:
        request = approval.build_request(call.name, call.arguments, call.id)
    except ValueError as e:
        return CallOutcome(call, f"Operation denied: Failed to analyze operation: {e}", True)

    emit(ToolRequest(request=request))
    verdict = await approval.decide(request)
    if not verdict.approved:
        logger.info("Tool call denied: id=%s tool=%s reason=%s", call.id, call.name, verdict.reason)
        return CallOutcome(call, f"Operation denied: {verdict.reason}", True)

    tool = registry.get(call.name)
    if tool is None:
        return CallOutcome(call, f"Error: Unknown tool '{call.name}'", True)

    logger.debug("Dispatching tool call: id=%s tool=%s", call.id, call.name)
    try:
        output = await tool.execute(call.arguments)
    except ToolError as e:
        return CallOutcome(call, format_tool_error(call.name, e), True)
    except Exception as e:
        # 工具实现由外部注入：任何异常都只影响本次调用
        logger.warning("Tool raised unexpected error: tool=%s", call.name, exc_info=True)
        return CallOutcome(call, format_tool_error(call.name, e), True)
    return CallOutcome(call, output, False)


async def process_tool_calls(
    calls: Sequence[ToolCall],
    *,
    approval: ApprovalSystem,
    registry: ToolRegistry,
    history: List[Message],
    emit: Emit,
) -> List[CallOutcome]:
    """
    按顺序处理一批 tool calls，并把每个结果作为 tool 消息回注 history。

    参数：
    - calls：重建完成的调用（首次出现顺序）
    - history：对话历史（原地追加 tool 消息）
    - emit：事件写入函数（ToolRequest / ToolResult）
    """

    outcomes: List[CallOutcome] = []
    for call in calls:
        outcome = await run_tool_call(call, approval=approval, registry=registry, emit=emit)
        emit(ToolResult(tool_id=call.id, tool_name=call.name, result=outcome.result, is_error=outcome.is_error))
        history.append(Message(role="tool", content=outcome.result, tool_call_id=call.id))
        outcomes.append(outcome)
    return outcomes


__all__ = ["CallOutcome", "format_tool_error", "incomplete_call_message", "process_tool_calls", "run_tool_call"]
