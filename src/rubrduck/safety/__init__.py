"""
Safety 模块（审批与风险评估）。

导出：
- RiskLevel / ApprovalRequest / ApprovalResult：审批数据模型
- ApprovalSystem：策略优先级 + 回调委派 + 批量审批
- analyze_operation：按工具名分类并评估风险
"""

from rubrduck.safety.approval_system import ApprovalSystem
from rubrduck.safety.approvals import ApprovalCallback, ApprovalRequest, ApprovalResult, RiskLevel, max_risk
from rubrduck.safety.risk import (
    OperationAnalysis,
    analyze_operation,
    assess_file_write_risk,
    assess_git_operation_risk,
    assess_shell_command_risk,
)

__all__ = [
    "ApprovalCallback",
    "ApprovalRequest",
    "ApprovalResult",
    "ApprovalSystem",
    "OperationAnalysis",
    "RiskLevel",
    "analyze_operation",
    "assess_file_write_risk",
    "assess_git_operation_risk",
    "assess_shell_command_risk",
    "max_risk",
]
