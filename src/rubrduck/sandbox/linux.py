"""
Linux sandbox variant（namespaces → no_new_privs → basic rlimits 降级链）。

说明：
- 构造时探测一次主机能力（bubblewrap 是否可用、内核是否支持 seccomp），之后不再探测；
- execute 依次尝试各阶段；某阶段无法启动时抛 `SandboxCapabilityError`，记录告警并降级到下一阶段，
  从不让 agent 因主机能力不足而中止；
- no_new_privs 阶段只在内核支持 seccomp 且能加载 prctl 时启用；
- 所有阶段都使用策略过滤后的环境变量与墙钟超时。
"""

from __future__ import annotations

import ctypes
import ctypes.util
import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from rubrduck.core.errors import SandboxCapabilityError
from rubrduck.core.executor import AsyncExecutor, CommandResult
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

PR_SET_NO_NEW_PRIVS = 38

# 命令运行所需的系统目录（只读挂载进 namespace）
RUNTIME_DIRS = ("/usr", "/bin", "/sbin", "/lib", "/lib32", "/lib64", "/etc")


def _probe_bwrap(bwrap_path: str) -> bool:
    """实际运行一次最小 bwrap 调用，确认 user namespace 可用。"""

    resolved = shutil.which(bwrap_path)
    if resolved is None:
        return False
    try:
        proc = subprocess.run(
            [resolved, "--ro-bind", "/", "/", "--dev", "/dev", "true"],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            timeout=5,
            check=False,
        )
    except (OSError, subprocess.SubprocessError):
        return False
    return proc.returncode == 0


def _probe_seccomp() -> bool:
    try:
        with open("/proc/self/status", "r", encoding="utf-8") as f:
            return any(line.startswith("Seccomp:") for line in f)
    except OSError:
        return False


def _load_prctl() -> Optional[Callable[..., int]]:
    name = ctypes.util.find_library("c")
    if name is None:
        return None
    try:
        libc = ctypes.CDLL(name, use_errno=True)
    except OSError:
        return None
    return getattr(libc, "prctl", None)


def _no_new_privs_preexec(policy: SandboxPolicy, prctl: Callable[..., int]) -> Callable[[], None]:
    """子进程内先设置 PR_SET_NO_NEW_PRIVS（禁止 setuid 提权），再应用 rlimit。"""

    limits = rlimit_preexec(policy)

    def _apply() -> None:
        if prctl(PR_SET_NO_NEW_PRIVS, 1, 0, 0, 0) != 0:
            raise OSError(ctypes.get_errno(), "prctl(PR_SET_NO_NEW_PRIVS) failed")
        if limits is not None:
            limits()

    return _apply


class LinuxSandbox:
    """
    Linux sandbox。

    参数：
    - bwrap_path：bubblewrap 命令路径（默认从 PATH 查找）
    - executor：可选；注入自定义执行器（测试用）
    - probe：是否在构造时探测主机能力；False 时视为所有增强阶段都不可用（测试用）
    """

    kind = SandboxKind.LINUX

    def __init__(
        self,
        *,
        bwrap_path: str = "bwrap",
        executor: Optional[AsyncExecutor] = None,
        probe: bool = True,
    ) -> None:
        self._bwrap_path = bwrap_path
        self._executor = executor or AsyncExecutor()
        self._has_bwrap = _probe_bwrap(bwrap_path) if probe else False
        self._has_seccomp = _probe_seccomp() if probe else False
        self._prctl = _load_prctl() if probe else None
        logger.info(
            "Linux sandbox capabilities: bwrap=%s seccomp=%s no_new_privs=%s",
            self._has_bwrap,
            self._has_seccomp,
            self._prctl is not None,
        )

    @property
    def has_namespaces(self) -> bool:
        return self._has_bwrap

    @property
    def has_seccomp(self) -> bool:
        return self._has_seccomp

    def validate_policy(self, policy: SandboxPolicy) -> None:
        validate_policy(policy)

    def get_capabilities(self) -> SandboxCapabilities:
        return SandboxCapabilities(
            platform="linux",
            file_system_isolation=self._has_bwrap,
            network_isolation=self._has_bwrap,
            process_isolation=self._has_bwrap,
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
        按降级链执行命令。

        异常：
        - PolicyError：策略/命令校验失败（不会降级）
        """

        check_request(self, command, policy)
        argv = [command, *args]
        env = filter_environment(policy)
        limit = effective_timeout(policy, timeout)

        if self._has_bwrap:
            logger.debug("Attempting namespace sandbox execution")
            try:
                return to_sandbox_result(await self._run_namespaced(argv, policy, cwd, env, limit))
            except SandboxCapabilityError as e:
                logger.warning("Namespace sandbox unavailable, falling back to no_new_privs: %s", e)

        if self._has_seccomp and self._prctl is not None:
            logger.debug("Attempting no_new_privs sandbox execution")
            try:
                return to_sandbox_result(await self._run_no_new_privs(argv, policy, cwd, env, limit, self._prctl))
            except OSError as e:
                return spawn_failure(e)
            except SandboxCapabilityError as e:
                logger.warning("no_new_privs unavailable, falling back to basic restrictions: %s", e)

        logger.debug("Using basic restrictions")
        try:
            result = await self._executor.run(argv, cwd=cwd, env=env, timeout=limit, preexec_fn=rlimit_preexec(policy))
        except (OSError, subprocess.SubprocessError) as e:
            return spawn_failure(e)
        return to_sandbox_result(result)

    def build_bwrap_argv(self, argv: Sequence[str], policy: SandboxPolicy, cwd: Optional[Path]) -> List[str]:
        """
        生成 bwrap 参数。

        规则：
        - 系统运行目录只读挂载（存在才挂载）
        - allow_read_paths 只读挂载；allow_write_paths 读写挂载（host 与 namespace 内路径一致）
        - 落在已挂载路径下的 block_paths 用空 tmpfs 遮蔽
        - allow_network=False 时 `--unshare-net`
        """

        out: List[str] = [self._bwrap_path, "--die-with-parent", "--new-session", "--unshare-pid"]
        if not policy.allow_network:
            out.append("--unshare-net")
        out.extend(["--proc", "/proc", "--dev", "/dev", "--tmpfs", "/tmp"])

        mounted: List[str] = []
        for p in RUNTIME_DIRS:
            if Path(p).exists():
                out.extend(["--ro-bind", p, p])
        for p in policy.allow_read_paths:
            if Path(p).exists() and p not in policy.allow_write_paths:
                out.extend(["--ro-bind", p, p])
                mounted.append(p)
        for p in policy.allow_write_paths:
            if Path(p).exists():
                out.extend(["--bind", p, p])
                mounted.append(p)
        for blocked in policy.block_paths:
            if any(blocked != m and Path(blocked).is_relative_to(m) for m in mounted):
                out.extend(["--tmpfs", blocked])

        if cwd is not None:
            out.extend(["--chdir", str(cwd)])
        out.append("--")
        out.extend(argv)
        return out

    async def _run_namespaced(
        self,
        argv: Sequence[str],
        policy: SandboxPolicy,
        cwd: Optional[Path],
        env: dict,
        timeout: Optional[float],
    ) -> CommandResult:
        wrapped = self.build_bwrap_argv(argv, policy, cwd)
        try:
            return await self._executor.run(wrapped, cwd=cwd, env=env, timeout=timeout, preexec_fn=rlimit_preexec(policy))
        except (OSError, subprocess.SubprocessError) as e:
            raise SandboxCapabilityError(f"bwrap failed to start: {e}") from e

    async def _run_no_new_privs(
        self,
        argv: Sequence[str],
        policy: SandboxPolicy,
        cwd: Optional[Path],
        env: dict,
        timeout: Optional[float],
        prctl: Callable[..., int],
    ) -> CommandResult:
        preexec = _no_new_privs_preexec(policy, prctl)
        try:
            return await self._executor.run(argv, cwd=cwd, env=env, timeout=timeout, preexec_fn=preexec)
        except subprocess.SubprocessError as e:
            raise SandboxCapabilityError(f"no_new_privs setup failed: {e}") from e


__all__ = ["LinuxSandbox"]
