"""
macOS seatbelt（sandbox-exec）variant。

实现方式：
- 将 SandboxPolicy 渲染为 `(version 1) (deny default)` 基线的 SBPL profile；
- 进程启动所需的系统运行目录与解析后的命令本身在阻断规则之后放行（只读），避免 block_paths 让命令无法启动；
- profile 写入临时文件 `rubrduck-sandbox-*.sb`，以 `sandbox-exec -f <profile> <cmd...>` 执行，结束后删除；
- seatbelt 不提供内存/CPU 上限：资源约束只体现为墙钟超时。
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import List, Optional, Sequence

from rubrduck.core.errors import PolicyError, SandboxError
from rubrduck.core.executor import AsyncExecutor
from rubrduck.sandbox.base import SandboxKind, check_request, spawn_failure, to_sandbox_result
from rubrduck.sandbox.policy import (
    SandboxCapabilities,
    SandboxPolicy,
    SandboxResult,
    effective_timeout,
    filter_environment,
    validate_policy,
)

logger = logging.getLogger(__name__)


# 进程启动所需的系统运行目录（只读）；渲染在阻断规则之后，不被 block_paths 覆盖
RUNTIME_READ_PATHS = ("/usr/lib", "/usr/bin", "/bin", "/System/Library", "/private/var/db/dyld")


def _quote(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def render_profile(policy: SandboxPolicy, *, executable: Optional[str] = None) -> str:
    """
    把策略渲染为 SBPL profile 文本（后出现的规则覆盖前面的规则）。

    参数：
    - executable：可选；解析后的命令绝对路径，即使落在 block_paths 下也允许读取与执行
    """

    lines: List[str] = ["(version 1)", "(deny default)", ""]

    lines.append("; Process lifecycle")
    lines.extend(["(allow process-exec)", "(allow process-fork)", "(allow sysctl-read)", "(allow signal (target self))"])
    lines.append("")

    lines.append("; Allow file system access for read paths")
    lines.extend(f"(allow file-read* (subpath {_quote(p)}))" for p in policy.allow_read_paths)
    lines.append("")

    lines.append("; Allow file system access for write paths")
    lines.extend(f"(allow file-write* (subpath {_quote(p)}))" for p in policy.allow_write_paths)
    lines.append("")

    lines.append("; Block access to sensitive paths")
    lines.extend(f"(deny file* (subpath {_quote(p)}))" for p in policy.block_paths)
    lines.append("")

    lines.append("; System runtime (read-only)")
    lines.append('(allow file-read-metadata (literal "/"))')
    lines.extend(f"(allow file-read* (subpath {_quote(p)}))" for p in RUNTIME_READ_PATHS)
    lines.append('(allow file-read* file-write-data (literal "/dev/null"))')
    if executable:
        for p in dict.fromkeys((executable, os.path.realpath(executable))):
            lines.append(f"(allow file-read* (literal {_quote(p)}))")
    lines.append("")

    lines.append("; Network access")
    lines.append("(allow network*)" if policy.allow_network else "(deny network*)")
    lines.append("")

    lines.append("; Allow environment variables")
    lines.extend(f"(allow environment-variable {_quote(v)})" for v in policy.allowed_env_vars)
    lines.append("")

    lines.append("; Block environment variables")
    lines.extend(f"(deny environment-variable {_quote(v)})" for v in policy.blocked_env_vars)
    return "\n".join(lines) + "\n"


class SeatbeltSandbox:
    """
    macOS seatbelt sandbox。

    参数：
    - sandbox_exec_path：`sandbox-exec` 命令路径（默认从 PATH 查找）
    - executor：可选；注入自定义执行器（测试用）
    """

    kind = SandboxKind.SEATBELT

    def __init__(self, *, sandbox_exec_path: str = "sandbox-exec", executor: Optional[AsyncExecutor] = None) -> None:
        self._sandbox_exec_path = sandbox_exec_path
        self._executor = executor or AsyncExecutor()

    def is_available(self) -> bool:
        """检查 `sandbox-exec` 是否可用（PATH 或绝对路径）。"""

        if Path(self._sandbox_exec_path).is_absolute():
            return Path(self._sandbox_exec_path).exists()
        return shutil.which(self._sandbox_exec_path) is not None

    def validate_policy(self, policy: SandboxPolicy) -> None:
        if not self.is_available():
            raise PolicyError("sandbox-exec not available")
        validate_policy(policy)

    def get_capabilities(self) -> SandboxCapabilities:
        return SandboxCapabilities(
            platform="darwin",
            file_system_isolation=True,
            network_isolation=True,
            process_isolation=True,
            memory_limits=False,
            cpu_limits=False,
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
        以 seatbelt profile 执行命令。

        异常：
        - PolicyError：策略/命令校验失败，或 sandbox-exec 不可用
        - SandboxError：profile 临时文件无法写入
        """

        check_request(self, command, policy)
        env = filter_environment(policy)
        executable = shutil.which(command, path=env.get("PATH"))

        try:
            fd, profile_path = tempfile.mkstemp(prefix="rubrduck-sandbox-", suffix=".sb")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(render_profile(policy, executable=executable))
        except OSError as e:
            raise SandboxError(f"failed to write sandbox profile: {e}") from e

        argv = [self._sandbox_exec_path, "-f", profile_path, command, *args]
        logger.debug("seatbelt execute: command=%s profile=%s", command, profile_path)
        try:
            result = await self._executor.run(
                argv,
                cwd=cwd,
                env=env,
                timeout=effective_timeout(policy, timeout),
            )
        except OSError as e:
            return spawn_failure(e)
        finally:
            try:
                os.remove(profile_path)
            except FileNotFoundError:
                pass
        return to_sandbox_result(result)


__all__ = ["SeatbeltSandbox", "render_profile"]
