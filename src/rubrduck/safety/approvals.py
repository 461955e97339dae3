"""
Approvals（人工审批）数据模型与回调协议。

说明：
- ApprovalRequest 只在审批期间存在，verdict 产生后即被丢弃；
- 回调由 presentation 层提供（本包不读 stdin/不弹窗），可同步或异步实现；
- 回调失败通过抛异常表达，由审批系统转换为拒绝结果。
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, Union

from pydantic import BaseModel, ConfigDict, Field

from rubrduck.core.utils import now_utc


class RiskLevel(str, Enum):
    """风险等级（有序：low < medium < high < critical）。"""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RISK_ORDER[self]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank >= other.rank


_RISK_ORDER: Dict[RiskLevel, int] = {
    RiskLevel.LOW: 0,
    RiskLevel.MEDIUM: 1,
    RiskLevel.HIGH: 2,
    RiskLevel.CRITICAL: 3,
}


def max_risk(levels: Iterable[RiskLevel]) -> RiskLevel:
    """返回一组风险等级中的最大值；空集合视为 low。"""

    out = RiskLevel.LOW
    for level in levels:
        if level > out:
            out = level
    return out


class ApprovalRequest(BaseModel):
    """
    审批请求（面向 UI/人类）。

    字段：
    - id：请求 id（单次调用时为 tool call id；批量时为 `batch_<unix>`）
    - operation_type：操作类型（file_write/shell_execute/git_operation/unknown/batch...）
    - tool：工具名
    - arguments：原始 arguments JSON 字符串
    - description：一句话可读描述
    - risk：风险等级
    - preview：可读预览（命令、文件开头若干行等）
    - metadata：结构化补充信息（command/file_path/git_operation 等）
    - created_at：创建时间（UTC）
    """

    model_config = ConfigDict(extra="forbid")

    id: str
    operation_type: str
    tool: str
    arguments: str = ""
    description: str = ""
    risk: RiskLevel = RiskLevel.LOW
    preview: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=now_utc)


class ApprovalResult(BaseModel):
    """审批结果（approved + 可读 reason）。"""

    model_config = ConfigDict(extra="forbid")

    approved: bool
    reason: str = ""


ApprovalCallback = Callable[[ApprovalRequest], Union[ApprovalResult, Awaitable[ApprovalResult]]]


__all__ = ["ApprovalCallback", "ApprovalRequest", "ApprovalResult", "RiskLevel", "max_risk"]
