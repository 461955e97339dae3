"""
Sandbox 抽象接口与 variant 共享的辅助函数。

说明：
- 所有 variant 在启动进程前都重新校验 policy 与 command（校验失败抛 `PolicyError`）；
- 进程能启动但退出码非 0 不算错误：结果原样返回，由调用方解释；
- 进程无法启动时返回带 `error` 的 SandboxResult（Linux 的降级链除外，见 linux.py）。
"""

from __future__ import annotations

import math
import resource
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Protocol, Sequence, runtime_checkable

from rubrduck.core.executor import CommandResult
from rubrduck.sandbox.policy import (
    SandboxCapabilities,
    SandboxPolicy,
    SandboxResult,
    validate_command,
)


class SandboxKind(str, Enum):
    """平台 variant（封闭集合，进程启动时选择一次）。"""

    SEATBELT = "seatbelt"
    LINUX = "linux"
    FALLBACK = "fallback"


@runtime_checkable
class Sandbox(Protocol):
    """
    Sandbox 接口（统一 execute / validate_policy / get_capabilities 契约）。

    约束：
    - execute 必须先调用 validate_policy 与命令校验，再启动进程；
    - 超时与取消都必须终止子进程组。
    """

    kind: SandboxKind

    async def execute(
        self,
        command: str,
        args: Sequence[str],
        policy: SandboxPolicy,
        *,
        cwd: Optional[Path] = None,
        timeout: Optional[float] = None,
    ) -> SandboxResult:
        """在沙箱内执行 `command args...`。"""

        ...

    def validate_policy(self, policy: SandboxPolicy) -> None:
        """校验策略；非法时抛 `PolicyError`。"""

        ...

    def get_capabilities(self) -> SandboxCapabilities:
        """返回该 variant 的能力描述。"""

        ...


def check_request(sandbox: Sandbox, command: str, policy: SandboxPolicy) -> None:
    """启动前的统一校验（variant 的 validate_policy + 命令允许/拒绝列表）。"""

    sandbox.validate_policy(policy)
    validate_command(command, policy)


def to_sandbox_result(result: CommandResult) -> SandboxResult:
    """把执行器结果映射为 SandboxResult（超时时附带可读 error）。"""

    return SandboxResult(
        exit_code=result.exit_code,
        stdout=result.stdout,
        stderr=result.stderr,
        duration=result.duration,
        memory_used=_children_max_rss(),
        error="command timed out" if result.timed_out else None,
        timed_out=result.timed_out,
    )


def spawn_failure(exc: BaseException, duration: float = 0.0) -> SandboxResult:
    return SandboxResult(exit_code=-1, duration=duration, error=f"failed to start command: {exc}")


def _children_max_rss() -> int:
    """已回收子进程的峰值 RSS（字节；Linux 上 ru_maxrss 单位为 KB）。"""

    usage = resource.getrusage(resource.RUSAGE_CHILDREN)
    return int(usage.ru_maxrss) * 1024


def rlimit_preexec(policy: SandboxPolicy) -> Optional[Callable[[], None]]:
    """
    根据策略生成在子进程内设置 rlimit 的 preexec 函数。

    映射：
    - max_memory_mb → RLIMIT_AS
    - max_processes → RLIMIT_NPROC
    - max_cpu_time → RLIMIT_CPU（向上取整到秒）
    """

    limits: List[tuple] = []
    if policy.max_memory_mb > 0:
        size = policy.max_memory_mb * 1024 * 1024
        limits.append((resource.RLIMIT_AS, size))
    if policy.max_processes > 0 and hasattr(resource, "RLIMIT_NPROC"):
        limits.append((resource.RLIMIT_NPROC, policy.max_processes))
    if policy.max_cpu_time > 0:
        limits.append((resource.RLIMIT_CPU, max(1, math.ceil(policy.max_cpu_time))))
    if not limits:
        return None

    def _apply() -> None:
        for which, value in limits:
            _, hard = resource.getrlimit(which)
            if hard != resource.RLIM_INFINITY:
                value = min(value, hard)
            resource.setrlimit(which, (value, value))

    return _apply


__all__ = [
    "Sandbox",
    "SandboxKind",
    "check_request",
    "rlimit_preexec",
    "spawn_failure",
    "to_sandbox_result",
]
