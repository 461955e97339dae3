"""
终止错误类型化（RunErrorKind / RunError）。

说明：
- streaming 轮次遇到传输级错误时不重试，直接以 `Done(error=RunError)` 结束；
- RunError 的 message 面向人类可读，error_kind 面向程序分支。
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from rubrduck.core.errors import FrameworkError, LlmError, ProviderError
from rubrduck.core.utils import truncate_text


class RunErrorKind(str, Enum):
    """Done.error 的稳定错误分类（机器可消费）。"""

    AUTH_ERROR = "auth_error"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    HTTP_ERROR = "http_error"
    NETWORK_ERROR = "network_error"
    TIMEOUT = "timeout"

    CONFIG_ERROR = "config_error"
    LLM_ERROR = "llm_error"
    CANCELLED = "cancelled"

    UNKNOWN = "unknown"


@dataclass(frozen=True)
class RunError:
    """
    RunError：结构化终止错误。

    字段：
    - error_kind：稳定分类
    - message：可读错误消息（必须避免 secrets）
    - retryable：是否建议上层重试（本包自身从不重试）
    - details：可选；结构化上下文（必须可 JSON 序列化）
    """

    error_kind: RunErrorKind
    message: str
    retryable: bool = False
    details: Dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return self.message

    def to_payload(self) -> Dict[str, Any]:
        """转换为 payload dict（稳定字段名）。"""

        out: Dict[str, Any] = {
            "error_kind": str(self.error_kind.value),
            "message": str(self.message or ""),
            "retryable": bool(self.retryable),
        }
        if self.details:
            out["details"] = dict(self.details)
        return out


def _classify_status(code: int) -> tuple[RunErrorKind, bool]:
    """按 HTTP 状态码分类（401/403 → auth；429 → rate limit；5xx → server）。"""

    if code in (401, 403):
        return RunErrorKind.AUTH_ERROR, False
    if code == 429:
        return RunErrorKind.RATE_LIMITED, True
    if 500 <= code <= 599:
        return RunErrorKind.SERVER_ERROR, True
    return RunErrorKind.HTTP_ERROR, False


def classify_run_exception(exc: BaseException, *, stage: Optional[str] = None) -> RunError:
    """
    将终止异常映射为结构化 RunError。

    参数：
    - exc：provider 或编排过程中抛出的异常
    - stage：可选；出错阶段（stream/final_completion），写入 details

    约束：
    - message 必须简洁可读，且不得包含 secrets
    """

    details: Dict[str, Any] = {}
    if stage:
        details["stage"] = stage

    message = truncate_text(str(exc) or exc.__class__.__name__, 800)

    if isinstance(exc, asyncio.CancelledError):
        return RunError(error_kind=RunErrorKind.CANCELLED, message="cancelled", details=details)

    if isinstance(exc, ProviderError):
        if exc.status_code is not None:
            kind, retryable = _classify_status(int(exc.status_code))
            details["status_code"] = int(exc.status_code)
            return RunError(error_kind=kind, message=message, retryable=retryable or exc.retryable, details=details)
        return RunError(error_kind=RunErrorKind.NETWORK_ERROR, message=message, retryable=exc.retryable, details=details)

    if isinstance(exc, FrameworkError):
        details["framework_code"] = exc.code
        return RunError(error_kind=RunErrorKind.CONFIG_ERROR, message=message, details=details)

    if isinstance(exc, LlmError):
        return RunError(error_kind=RunErrorKind.LLM_ERROR, message=message, retryable=True, details=details)

    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return RunError(error_kind=RunErrorKind.TIMEOUT, message=message, retryable=True, details=details)

    if isinstance(exc, (ConnectionError, OSError)):
        return RunError(error_kind=RunErrorKind.NETWORK_ERROR, message=message, retryable=True, details=details)

    if isinstance(exc, ValueError):
        # 常见：缺少 API key；或 provider 配置问题
        return RunError(error_kind=RunErrorKind.CONFIG_ERROR, message=message, details=details)

    return RunError(error_kind=RunErrorKind.UNKNOWN, message=message, details=details)


__all__ = ["RunError", "RunErrorKind", "classify_run_exception"]
