"""
Fallback sandbox（任意平台可用的最弱 variant）。

提供的约束：
- 策略路径必须为绝对路径，且实际可访问（读路径可打开；写路径可创建并删除探测文件）；
- POSIX rlimit（内存/进程数/CPU 时间）；
- 按允许/拒绝列表过滤环境变量；
- 墙钟超时（超时终止整个进程组）。

不提供文件系统/网络/进程隔离。
"""

from __future__ import annotations

import logging
import os
import subprocess
import sys
from pathlib import Path
from typing import Optional, Sequence

from rubrduck.core.errors import PolicyError
from rubrduck.core.executor import AsyncExecutor
from rubrduck.sandbox.base import SandboxKind, check_request, rlimit_preexec, spawn_failure, to_sandbox_result
from rubrduck.sandbox.policy import (
    SandboxCapabilities,
    SandboxPolicy,
    SandboxResult,
    effective_timeout,
    filter_environment,
    validate_policy,
)

logger = logging.getLogger(__name__)

PROBE_FILE_NAME = ".rubrduck-test"


def is_path_accessible(path: str, *, read_only: bool) -> bool:
    """
    检查路径可访问性。

    - read_only=True：路径存在且可打开（目录用 os.scandir 打开）
    - read_only=False：能在目录下创建并删除 `.rubrduck-test` 探测文件
    """

    p = Path(path)
    if not p.exists():
        return False
    if read_only:
        try:
            if p.is_dir():
                with os.scandir(p):
                    pass
            else:
                with p.open("rb"):
                    pass
        except OSError:
            return False
        return True

    probe = p / PROBE_FILE_NAME
    try:
        probe.touch()
        probe.unlink()
    except OSError:
        return False
    return True


class FallbackSandbox:
    """
    Fallback sandbox。

    参数：
    - executor：可选；注入自定义执行器（测试用）
    """

    kind = SandboxKind.FALLBACK

    def __init__(self, *, executor: Optional[AsyncExecutor] = None) -> None:
        self._executor = executor or AsyncExecutor()

    def validate_policy(self, policy: SandboxPolicy) -> None:
        validate_policy(policy)

    def validate_paths(self, policy: SandboxPolicy) -> None:
        """校验读写路径实际可访问（在 validate_policy 之后调用）。"""

        for path in policy.allow_read_paths:
            if not is_path_accessible(path, read_only=True):
                raise PolicyError(f"read path not accessible: {path}")
        for path in policy.allow_write_paths:
            if not is_path_accessible(path, read_only=False):
                raise PolicyError(f"write path not accessible: {path}")

    def get_capabilities(self) -> SandboxCapabilities:
        return SandboxCapabilities(
            platform=sys.platform,
            file_system_isolation=False,
            network_isolation=False,
            process_isolation=False,
            memory_limits=True,
            cpu_limits=True,
            command_filtering=True,
        )

    async def execute(
        self,
        command: str,
        args: Sequence[str],
        policy: SandboxPolicy,
        *,
        cwd: Optional[Path] = None,
        timeout: Optional[float] = None,
    ) -> SandboxResult:
        """
        校验后以 rlimit + 过滤后的环境执行命令。

        异常：
        - PolicyError：策略/命令/路径校验失败
        """

        check_request(self, command, policy)
        self.validate_paths(policy)

        logger.debug("fallback execute: command=%s", command)
        try:
            result = await self._executor.run(
                [command, *args],
                cwd=cwd,
                env=filter_environment(policy),
                timeout=effective_timeout(policy, timeout),
                preexec_fn=rlimit_preexec(policy),
            )
        except (OSError, subprocess.SubprocessError) as e:
            return spawn_failure(e)
        return to_sandbox_result(result)


__all__ = ["FallbackSandbox", "is_path_accessible"]
