"""
流式 tool_call 分片重建。

背景：
- provider 的 streaming wire 中，tool_call 以分片到达，且没有权威的“调用边界”；
- 分片可能是：带 id+name 的新调用、只带 arguments 的续写、或按 id/name 指向已有调用的增量。

匹配顺序（每个分片）：
1) id 非空：与已见调用做 id 精确匹配
2) 分片无 id 且 name 非空：匹配“同名且已有非空 id”的调用（带新 id 的同名分片是新调用）
3) 未命中且 id/name 均为空、arguments 非空：拼到最近一次被更新的调用
4) 否则：作为新调用追加

合并规则：非空字段覆盖；arguments 分片只拼接、不覆盖。
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from rubrduck.llm.protocol import ToolCall, ToolCallFunction

logger = logging.getLogger(__name__)

_LARGE_ARGUMENTS_BYTES = 100_000


class ToolCallAccumulator:
    """
    单轮 streaming 的 tool_call 累积状态。

    说明：
    - `calls` 保持首次出现顺序；
    - 内部持有独立副本，不会修改传入的分片对象。
    """

    def __init__(self, initial: Iterable[ToolCall] = ()) -> None:
        """
        参数：
        - initial：已有调用（例如上一批分片的合并结果）；其最后一个元素视为最近被更新的调用
        """

        self._calls: List[ToolCall] = [c.model_copy(deep=True) for c in initial]
        self._last_touched: Optional[int] = len(self._calls) - 1 if self._calls else None

    @property
    def calls(self) -> List[ToolCall]:
        """返回当前重建结果（副本）。"""

        return [c.model_copy(deep=True) for c in self._calls]

    def feed(self, deltas: Iterable[ToolCall]) -> None:
        """按到达顺序合并一批分片。"""

        for delta in deltas:
            self._merge_one(delta)

    def _find_target(self, delta: ToolCall) -> Optional[int]:
        """按匹配顺序为分片找到目标调用下标；None 表示新调用。"""

        if delta.id:
            for i, existing in enumerate(self._calls):
                if existing.id == delta.id:
                    return i

        if not delta.id and delta.function.name:
            for i, existing in enumerate(self._calls):
                if existing.function.name == delta.function.name and existing.id:
                    return i

        if not delta.id and not delta.function.name and delta.function.arguments:
            # 交错的裸 arguments 分片总是归到最近一次被更新的调用
            return self._last_touched

        return None

    def _merge_one(self, delta: ToolCall) -> None:
        idx = self._find_target(delta)
        if idx is None:
            self._calls.append(
                ToolCall(
                    id=delta.id,
                    type=delta.type or "function",
                    function=ToolCallFunction(name=delta.function.name, arguments=delta.function.arguments),
                )
            )
            self._last_touched = len(self._calls) - 1
            logger.debug("new tool call from delta: id=%r name=%r", delta.id, delta.function.name)
            return

        target = self._calls[idx]
        if delta.type:
            target.type = delta.type
        if delta.id:
            target.id = delta.id
        if delta.function.name:
            target.function.name = delta.function.name
        if delta.function.arguments:
            target.function.arguments += delta.function.arguments
            if len(target.function.arguments) > _LARGE_ARGUMENTS_BYTES:
                logger.warning(
                    "tool call arguments are very large: id=%r name=%r size=%d",
                    target.id,
                    target.function.name,
                    len(target.function.arguments),
                )
        self._last_touched = idx


def merge_tool_call_deltas(existing: Iterable[ToolCall], deltas: Iterable[ToolCall]) -> List[ToolCall]:
    """便捷函数：把分片合并进已有调用列表，返回新的列表（不修改入参）。"""

    acc = ToolCallAccumulator(existing)
    acc.feed(deltas)
    return acc.calls
