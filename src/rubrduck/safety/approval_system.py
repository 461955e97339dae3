"""
审批系统（ApprovalSystem）：策略优先级 + 人类回调委派 + 批量审批。

优先级（单次与批量一致）：
1. arguments 命中 blocked_commands/blocked_paths 子串 → 拒绝（"Operation blocked by policy"）
2. mode=full-auto → 放行
3. 低风险且 auto_approve_low_risk → 放行
4. arguments 命中 safe command/path 子串 → 放行
5. 交给回调；无回调 → 拒绝（"no approval handler available"）

约束：
- 阻断永远先于任何放行规则判断（block beats allow）；
- 回调抛异常/超时都转换为拒绝结果，不向 agent 传播；
- 批量超过 max_batch_size 时整体抛 `BatchSizeExceededError`，回调不会被调用。
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from typing import Dict, List, Optional, Sequence

from rubrduck.config.loader import ApprovalPolicyConfig
from rubrduck.core.errors import BatchSizeExceededError
from rubrduck.safety.approvals import ApprovalCallback, ApprovalRequest, ApprovalResult, RiskLevel, max_risk
from rubrduck.safety.risk import analyze_operation, describe_operation, extract_metadata

logger = logging.getLogger(__name__)

REASON_BLOCKED = "Operation blocked by policy"
REASON_AUTO = "Auto-approved"
REASON_BATCH_AUTO = "Batch auto-approved"
REASON_NO_HANDLER = "no approval handler available"
REASON_TIMEOUT = "Approval timed out"

BATCH_TOOL = "batch_operations"


def _contains_any(text: str, needles: Sequence[str]) -> bool:
    return any(needle and needle in text for needle in needles)


class ApprovalSystem:
    """
    审批系统。

    参数：
    - config：审批策略配置
    - callback：可选；人类审批回调（同步或异步），抛异常表示审批失败
    """

    def __init__(self, config: Optional[ApprovalPolicyConfig] = None, callback: Optional[ApprovalCallback] = None) -> None:
        self._config = config or ApprovalPolicyConfig()
        self._callback = callback
        self._pending: Dict[str, ApprovalRequest] = {}
        self._lock = asyncio.Lock()

    @property
    def config(self) -> ApprovalPolicyConfig:
        return self._config

    def set_callback(self, callback: Optional[ApprovalCallback]) -> None:
        """替换审批回调（None 表示移除）。"""

        self._callback = callback

    def build_request(self, tool: str, arguments: str, call_id: str) -> ApprovalRequest:
        """
        为一次 tool call 构造 ApprovalRequest（不做决策）。

        异常：
        - ValueError：已知工具的 arguments 不是合法 JSON object
        """

        analysis = analyze_operation(tool, arguments)
        return ApprovalRequest(
            id=call_id,
            operation_type=analysis.operation_type,
            tool=tool,
            arguments=arguments,
            description=describe_operation(analysis.operation_type, arguments),
            risk=analysis.risk,
            preview=analysis.preview,
            metadata=extract_metadata(tool, arguments),
        )

    def is_blocked(self, arguments: str) -> bool:
        """arguments 是否命中 blocked_commands/blocked_paths（子串匹配）。"""

        return _contains_any(arguments, self._config.blocked_commands) or _contains_any(
            arguments, self._config.blocked_paths
        )

    def can_auto_approve(self, arguments: str, risk: RiskLevel) -> bool:
        """单项是否可自动放行（不含阻断判断，调用方必须先判 `is_blocked`）。"""

        if self._config.mode == "full-auto":
            return True
        if self._config.auto_approve_low_risk and risk == RiskLevel.LOW:
            return True
        if _contains_any(arguments, self._config.auto_approve_safe_commands):
            return True
        return _contains_any(arguments, self._config.auto_approve_safe_paths)

    def can_auto_approve_batch(self, requests: Sequence[ApprovalRequest], batch_risk: RiskLevel) -> bool:
        if self._config.mode == "full-auto":
            return True
        if self._config.auto_approve_low_risk and batch_risk == RiskLevel.LOW:
            return True
        return all(self.can_auto_approve(req.arguments, req.risk) for req in requests)

    async def request_approval(self, tool: str, arguments: str, call_id: str) -> ApprovalResult:
        """
        对单次 tool call 做审批决策。

        参数：
        - tool：工具名
        - arguments：原始 arguments JSON 字符串
        - call_id：tool call id（作为 ApprovalRequest.id 与 pending key）
        """

        try:
            request = self.build_request(tool, arguments, call_id)
        except ValueError as e:
            return ApprovalResult(approved=False, reason=f"Failed to analyze operation: {e}")
        return await self.decide(request)

    async def decide(self, request: ApprovalRequest) -> ApprovalResult:
        """对已构造的 ApprovalRequest 应用优先级规则（必要时调用回调）。"""

        if self.is_blocked(request.arguments):
            logger.info("Blocked operation by policy: tool=%s op=%s", request.tool, request.operation_type)
            return ApprovalResult(approved=False, reason=REASON_BLOCKED)

        if self.can_auto_approve(request.arguments, request.risk):
            logger.info(
                "Auto-approving operation: tool=%s op=%s risk=%s",
                request.tool,
                request.operation_type,
                request.risk.value,
            )
            return ApprovalResult(approved=True, reason=REASON_AUTO)

        callback = self._callback
        if callback is None:
            return ApprovalResult(approved=False, reason=REASON_NO_HANDLER)
        return await self._ask(request, callback)

    async def request_batch_approval(self, requests: Sequence[ApprovalRequest]) -> List[ApprovalResult]:
        """
        批量审批：一次回调决定整批结果。

        返回：
        - 与 requests 等长、同序的结果列表

        异常：
        - BatchSizeExceededError：数量超过 max_batch_size（回调不会被调用）
        """

        if not requests:
            return []
        if len(requests) > self._config.max_batch_size:
            raise BatchSizeExceededError(size=len(requests), max_size=self._config.max_batch_size)

        def _all(result: ApprovalResult) -> List[ApprovalResult]:
            return [result.model_copy() for _ in requests]

        if any(self.is_blocked(req.arguments) for req in requests):
            return _all(ApprovalResult(approved=False, reason=REASON_BLOCKED))

        batch_risk = max_risk(req.risk for req in requests)
        if self.can_auto_approve_batch(requests, batch_risk):
            logger.info("Auto-approving batch: count=%d risk=%s", len(requests), batch_risk.value)
            return _all(ApprovalResult(approved=True, reason=REASON_BATCH_AUTO))

        callback = self._callback
        if callback is None:
            return _all(ApprovalResult(approved=False, reason=REASON_NO_HANDLER))

        batch = ApprovalRequest(
            id=f"batch_{int(time.time())}",
            operation_type="batch",
            tool=BATCH_TOOL,
            arguments=f"{len(requests)} operations",
            description=batch_description(requests),
            risk=batch_risk,
            preview=batch_preview(requests),
            metadata={"operations": [req.model_dump(mode="json") for req in requests], "count": len(requests)},
        )
        return _all(await self._ask(batch, callback))

    async def _ask(self, request: ApprovalRequest, callback: ApprovalCallback) -> ApprovalResult:
        """调用回调并等待结果；期间请求登记在 pending map 中。回调在决策时取定，之后替换不影响本次请求。"""

        async with self._lock:
            self._pending[request.id] = request
        try:
            outcome = callback(request)
            if inspect.isawaitable(outcome):
                if self._config.timeout_sec is not None:
                    outcome = await asyncio.wait_for(outcome, timeout=self._config.timeout_sec)
                else:
                    outcome = await outcome
            if not isinstance(outcome, ApprovalResult):
                raise TypeError(f"approval callback returned {type(outcome).__name__}, expected ApprovalResult")
            return outcome
        except asyncio.TimeoutError:
            logger.warning("Approval timed out: id=%s tool=%s", request.id, request.tool)
            return ApprovalResult(approved=False, reason=REASON_TIMEOUT)
        except Exception as e:
            logger.warning("Approval callback failed: id=%s tool=%s", request.id, request.tool, exc_info=True)
            return ApprovalResult(approved=False, reason=f"Approval failed: {e}")
        finally:
            async with self._lock:
                self._pending.pop(request.id, None)

    async def get_pending_requests(self) -> List[ApprovalRequest]:
        """返回当前等待回调的请求快照。"""

        async with self._lock:
            return list(self._pending.values())

    async def clear_pending_requests(self) -> None:
        async with self._lock:
            self._pending.clear()


def batch_description(requests: Sequence[ApprovalRequest]) -> str:
    """批量描述：逐项编号列出每个成员的 description。"""

    if not requests:
        return "No operations"
    lines = [f"Batch of {len(requests)} operations:"]
    lines.extend(f"  {i}. {req.description}" for i, req in enumerate(requests, start=1))
    return "\n".join(lines) + "\n"


def batch_preview(requests: Sequence[ApprovalRequest]) -> str:
    parts = ["Operations to be executed:\n\n"]
    for i, req in enumerate(requests, start=1):
        parts.append(f"{i}. {req.description} ({req.risk.value} risk)\n")
        parts.append(f"   {req.preview}\n\n")
    return "".join(parts)


__all__ = ["ApprovalSystem", "batch_description", "batch_preview"]
