"""
Agent：单轮对话编排（streaming → tool call 重建 → 审批 → 执行 → 收尾补全）。

职责：
- 持有对话 history（单一所有者；每轮只由本轮的处理任务追加）
- 流式阶段：后台任务读 provider 流并写入有界队列；处理阶段产出 TokenChunk 并累积 tool call 分片
- 流结束后：写入 assistant 消息，按顺序处理 tool calls，再发起一次不带 tools 的收尾补全
- 通过事件队列向调用方投递 StreamEvent；`done` 永远是最后一个事件

约束：
- 传输错误不重试：以 `Done(error=...)` 结束本轮；
- 调用方取消时，本轮未完成的 history 追加全部回滚（不会留下半截 tool call）。
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import AsyncIterator, Dict, Iterable, List, Optional

from rubrduck.config.loader import AgentConfig, AgentSettings
from rubrduck.core.delta_merge import ToolCallAccumulator
from rubrduck.core.events import Done, StreamEvent, TokenChunk
from rubrduck.core.run_errors import classify_run_exception
from rubrduck.core.tool_orchestration import Emit, process_tool_calls
from rubrduck.llm.protocol import ChatProvider, ChatRequest, ChatResponse, ChatStreamChunk, Message, Usage
from rubrduck.safety.approval_system import ApprovalSystem
from rubrduck.safety.approvals import ApprovalCallback
from rubrduck.sandbox import Sandbox, SandboxKind, create_sandbox
from rubrduck.tools.builtin import default_tools
from rubrduck.tools.protocol import Tool, ToolSpec
from rubrduck.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

_END = object()

_PLATFORM_KINDS: Dict[str, SandboxKind] = {
    "darwin": SandboxKind.SEATBELT,
    "linux": SandboxKind.LINUX,
    "fallback": SandboxKind.FALLBACK,
}


def _first_message(response: ChatResponse) -> Message:
    if not response.choices:
        return Message(role="assistant", content="")
    return response.choices[0].message


def _discard(_event: StreamEvent) -> None:
    return None


class Agent:
    """
    Agent 对外入口。

    参数：
    - provider：ChatProvider 实现（由调用方注入）
    - settings：运行参数（模型名、system prompt、流缓冲容量等）
    - approval：审批系统；缺省为默认策略且无回调（需要询问时一律拒绝）
    - tools：可选；初始注册的工具
    """

    def __init__(
        self,
        provider: ChatProvider,
        *,
        settings: Optional[AgentSettings] = None,
        approval: Optional[ApprovalSystem] = None,
        tools: Iterable[Tool] = (),
    ) -> None:
        self._provider = provider
        self._settings = settings or AgentSettings()
        self._approval = approval or ApprovalSystem()
        self._registry = ToolRegistry()
        for tool in tools:
            self._registry.register(tool)
        self._history: List[Message] = self._initial_history()

    @classmethod
    def from_config(
        cls,
        config: AgentConfig,
        provider: ChatProvider,
        *,
        base_path: Path,
        sandbox: Optional[Sandbox] = None,
        approval_callback: Optional[ApprovalCallback] = None,
    ) -> "Agent":
        """
        按配置装配 Agent（审批系统、sandbox、默认工具集）。

        参数：
        - base_path：项目根目录；文件/shell/git 工具都以它为边界
        - sandbox：可选；缺省按 `config.sandbox.platform` 选择 variant
        - approval_callback：可选；审批回调（同步或 async）
        """

        root = Path(base_path).resolve()
        policy = config.sandbox.to_policy(str(root))
        if sandbox is None:
            sandbox = create_sandbox(kind=_PLATFORM_KINDS.get(config.sandbox.platform))

        approval_config = config.approval
        if not approval_config.auto_approve_safe_paths:
            approval_config = approval_config.model_copy(
                update={"auto_approve_safe_paths": list(policy.allow_write_paths)}
            )
        approval = ApprovalSystem(approval_config, callback=approval_callback)
        logger.info(
            "Agent assembled: model=%s mode=%s sandbox=%s root=%s",
            config.agent.model,
            approval_config.mode,
            sandbox.kind.value,
            root,
        )
        return cls(provider, settings=config.agent, approval=approval, tools=default_tools(root, sandbox, policy))

    # ----- tools / approval -----

    def register_tool(self, tool: Tool, *, override: bool = False) -> None:
        self._registry.register(tool, override=override)

    def get_tool(self, name: str) -> Optional[Tool]:
        return self._registry.get(name)

    def tool_specs(self) -> List[ToolSpec]:
        return self._registry.list_specs()

    @property
    def approval(self) -> ApprovalSystem:
        return self._approval

    def set_approval_callback(self, callback: Optional[ApprovalCallback]) -> None:
        self._approval.set_callback(callback)

    # ----- history -----

    def _initial_history(self) -> List[Message]:
        if self._settings.system_prompt:
            return [Message(role="system", content=self._settings.system_prompt)]
        return []

    def get_history(self) -> List[Message]:
        """返回 history 的浅拷贝（调用方修改不影响内部状态）。"""

        return list(self._history)

    def clear_history(self) -> None:
        """清空 history（保留 system prompt）。"""

        self._history = self._initial_history()

    # ----- streaming -----

    def _build_request(self, *, stream: bool, with_tools: bool, max_tokens: Optional[int] = None) -> ChatRequest:
        tools = self.tool_specs() if with_tools else []
        return ChatRequest(
            model=self._settings.model,
            messages=list(self._history),
            tools=tools or None,
            temperature=self._settings.temperature,
            max_tokens=max_tokens,
            stream=stream,
        )

    async def stream_events(self, message: str) -> AsyncIterator[StreamEvent]:
        """
        以流式方式运行一轮对话，按因果顺序产出事件。

        说明：
        - 处理在后台任务中进行，事件经无界队列投递；调用方读取慢不会阻塞网络读；
        - 调用方停止迭代（或被取消）时，后台任务随之取消，本轮 history 追加回滚。
        """

        events: asyncio.Queue = asyncio.Queue()
        task = asyncio.create_task(self._run_turn(message, events.put_nowait))
        task.add_done_callback(lambda _t: events.put_nowait(_END))
        try:
            while True:
                item = await events.get()
                if item is _END:
                    break
                yield item
            if not task.cancelled() and task.exception() is not None:
                raise task.exception()  # type: ignore[misc]
        finally:
            if not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)

    async def _run_turn(self, message: str, emit: Emit) -> None:
        self._history.append(Message(role="user", content=message))
        turn_start = len(self._history)
        try:
            await self._stream_turn(emit)
        except asyncio.CancelledError:
            dropped = len(self._history) - turn_start
            del self._history[turn_start:]
            logger.info("Turn cancelled; discarded %d partial history entries", dropped)
            raise

    async def _pump(self, request: ChatRequest, chunks: asyncio.Queue) -> None:
        """读取 provider 流并写入有界队列；异常作为队列元素传递，结束时写入 `_END`。"""

        agen = None
        end: object = _END
        try:
            try:
                # 打开流本身也可能失败（例如连接被拒绝）
                agen = self._provider.stream_chat(request)
                async for chunk in agen:
                    await chunks.put(chunk)
            finally:
                aclose = getattr(agen, "aclose", None)
                if aclose is not None:
                    await aclose()
        except Exception as e:
            end = e
        await chunks.put(end)

    async def _stream_turn(self, emit: Emit) -> None:
        request = self._build_request(stream=True, with_tools=True)
        chunks: asyncio.Queue = asyncio.Queue(maxsize=self._settings.stream_buffer_size)
        pump = asyncio.create_task(self._pump(request, chunks))

        text_parts: List[str] = []
        accumulator = ToolCallAccumulator()
        usage = Usage()
        try:
            while True:
                item = await chunks.get()
                if item is _END:
                    break
                if isinstance(item, Exception):
                    logger.warning("Provider stream failed: %s", item)
                    emit(Done(usage=usage, error=classify_run_exception(item, stage="stream")))
                    return
                chunk: ChatStreamChunk = item
                for choice in chunk.choices:
                    if choice.delta.content:
                        text_parts.append(choice.delta.content)
                        emit(TokenChunk(text=choice.delta.content))
                    if choice.delta.tool_calls:
                        accumulator.feed(choice.delta.tool_calls)
                if chunk.usage is not None:
                    usage = usage + chunk.usage
        finally:
            if not pump.done():
                pump.cancel()
                await asyncio.gather(pump, return_exceptions=True)

        calls = accumulator.calls
        self._history.append(Message(role="assistant", content="".join(text_parts), tool_calls=calls))
        if not calls:
            emit(Done(usage=usage))
            return

        logger.debug("Stream finished with %d tool call(s)", len(calls))
        await process_tool_calls(
            calls,
            approval=self._approval,
            registry=self._registry,
            history=self._history,
            emit=emit,
        )

        final_request = self._build_request(stream=False, with_tools=False, max_tokens=self._settings.final_max_tokens)
        try:
            response = await self._provider.chat(final_request)
        except Exception as e:
            logger.warning("Final completion failed: %s", e)
            emit(Done(usage=usage, error=classify_run_exception(e, stage="final_completion")))
            return

        final = _first_message(response)
        if final.content:
            emit(TokenChunk(text=final.content))
        self._history.append(Message(role="assistant", content=final.content))
        emit(Done(usage=usage + response.usage))

    # ----- non-streaming -----

    async def chat(self, message: str) -> str:
        """
        非流式运行一轮对话并返回最终回复文本。

        说明：
        - 模型请求工具时，处理逻辑与流式一致（审批 → 执行 → 收尾补全），但不产出事件；
        - provider 错误直接抛出。
        """

        self._history.append(Message(role="user", content=message))
        response = await self._provider.chat(self._build_request(stream=False, with_tools=True))
        reply = _first_message(response)
        self._history.append(Message(role="assistant", content=reply.content, tool_calls=list(reply.tool_calls)))
        if not reply.tool_calls:
            return reply.content

        await process_tool_calls(
            reply.tool_calls,
            approval=self._approval,
            registry=self._registry,
            history=self._history,
            emit=_discard,
        )
        final_request = self._build_request(stream=False, with_tools=False, max_tokens=self._settings.final_max_tokens)
        final = _first_message(await self._provider.chat(final_request))
        self._history.append(Message(role="assistant", content=final.content))
        return final.content


__all__ = ["Agent"]
