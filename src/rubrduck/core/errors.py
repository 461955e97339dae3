"""
rubrduck 内部错误分类（异常类型）。

说明：
- 异常只用于模块间传递“错误层级”语义（传输/策略/沙箱/工具）；
- 面向模型的结果统一是可读文本（ToolResult / Done.error），不直接暴露异常对象。
"""

from __future__ import annotations

from typing import Any, Dict


class RubrDuckError(Exception):
    """rubrduck 内部错误基类（不建议直接抛出）。"""


class FrameworkError(RubrDuckError):
    """框架层结构化错误（英文 `code/message/details`）。"""

    def __init__(self, *, code: str, message: str, details: Dict[str, Any] | None = None) -> None:
        """创建框架错误。

        参数：
        - `code`：稳定错误码（英文大写下划线）
        - `message`：英文错误消息（可直接展示给用户）
        - `details`：结构化上下文信息
        """

        super().__init__(message)
        self.code = code
        self.message = message
        self.details: Dict[str, Any] = details or {}

    def __str__(self) -> str:
        """返回可直接展示的错误消息。"""

        return self.message


class UserError(FrameworkError):
    """用户输入/配置导致的错误。"""

    def __init__(self, message: str, *, code: str = "USER_ERROR", details: Dict[str, Any] | None = None) -> None:
        super().__init__(code=code, message=message, details=details or {})


class PolicyError(FrameworkError):
    """策略拒绝（命令被阻止、策略非法等）。"""

    def __init__(self, message: str, *, code: str = "POLICY_VIOLATION", details: Dict[str, Any] | None = None) -> None:
        super().__init__(code=code, message=message, details=details or {})


class BatchSizeExceededError(PolicyError):
    """批量审批数量超过 `max_batch_size`（整体失败，不做部分审批）。"""

    def __init__(self, *, size: int, max_size: int) -> None:
        """
        参数：
        - `size`：本次批量请求数量
        - `max_size`：配置允许的最大数量
        """

        super().__init__(
            f"batch size {size} exceeds maximum {max_size}",
            code="BATCH_SIZE_EXCEEDED",
            details={"size": size, "max_size": max_size},
        )
        self.size = size
        self.max_size = max_size


class SandboxError(RubrDuckError):
    """沙箱执行失败（profile 写入、进程启动等）。"""


class SandboxCapabilityError(SandboxError):
    """
    当前主机不具备某种隔离能力。

    说明：
    - 仅在沙箱内部使用：捕获后降级到更弱的执行阶段，不向 agent 传播。
    """


class ToolError(RubrDuckError):
    """
    工具执行失败（参数非法、退出码非 0、超时等）。

    字段：
    - `output`：失败前已产生的可读输出（例如命令的 stdout/stderr 摘要），可为空
    """

    def __init__(self, message: str, *, output: str = "") -> None:
        super().__init__(message)
        self.output = output


class LlmError(RubrDuckError):
    """LLM 通信/协议错误。"""


class ProviderError(LlmError):
    """
    Provider adapter 报告的传输错误（连接失败、流中断、HTTP 错误）。

    字段：
    - `status_code`：可选；HTTP 状态码
    - `retryable`：adapter 对该错误是否可重试的判断（本包不会自动重试）
    """

    def __init__(self, message: str, *, status_code: int | None = None, retryable: bool = False) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable
