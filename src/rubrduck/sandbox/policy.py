"""
Sandbox 策略模型与校验（所有平台 variant 共享）。

说明：
- SandboxPolicy 为不可变模型：构造后不能被 variant 偷偷修改；
- 路径必须是绝对路径；相对路径一律报错，从不“帮忙”补全为绝对路径；
- `default_policy(base_path)` 以显式传入的 base 目录解析默认读写路径（不读取进程 cwd）。
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from rubrduck.core.errors import PolicyError

DEFAULT_BLOCK_PATHS: Tuple[str, ...] = ("/etc", "/var", "/usr", "/bin", "/sbin", "/System")
DEFAULT_ALLOWED_COMMANDS: Tuple[str, ...] = (
    "ls",
    "cat",
    "head",
    "tail",
    "grep",
    "find",
    "wc",
    "sort",
    "uniq",
    "echo",
    "pwd",
    "whoami",
    "date",
    "ps",
    "git",
    "go",
    "npm",
    "yarn",
    "python",
    "node",
    "make",
)
DEFAULT_BLOCKED_COMMANDS: Tuple[str, ...] = (
    "rm",
    "rmdir",
    "del",
    "format",
    "mkfs",
    "dd",
    "shred",
    "sudo",
    "su",
    "chmod",
    "chown",
    "passwd",
    "useradd",
    "wget",
    "curl",
    "nc",
    "netcat",
    "ssh",
    "scp",
    "rsync",
)
DEFAULT_ALLOWED_ENV_VARS: Tuple[str, ...] = ("PATH", "HOME", "USER", "PWD", "LANG", "LC_ALL")
DEFAULT_BLOCKED_ENV_VARS: Tuple[str, ...] = ("SUDO_ASKPASS", "SSH_AUTH_SOCK", "GPG_AGENT_INFO")


class SandboxPolicy(BaseModel):
    """
    沙箱策略（不可变）。

    字段：
    - allow_read_paths / allow_write_paths / block_paths：绝对路径列表
    - allow_network / allowed_hosts：网络开关与允许主机（仅 Seatbelt 渲染使用）
    - max_processes / max_memory_mb / max_cpu_time：资源上限（0 表示不限制；max_cpu_time 单位秒）
    - allowed_commands / blocked_commands：命令允许/拒绝列表（拒绝优先）
    - allowed_env_vars / blocked_env_vars：环境变量允许/拒绝列表（拒绝优先）
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    allow_read_paths: Tuple[str, ...] = ()
    allow_write_paths: Tuple[str, ...] = ()
    block_paths: Tuple[str, ...] = ()

    allow_network: bool = False
    allowed_hosts: Tuple[str, ...] = ()

    max_processes: int = 0
    max_memory_mb: int = 0
    max_cpu_time: float = 0.0

    allowed_commands: Tuple[str, ...] = ()
    blocked_commands: Tuple[str, ...] = ()

    allowed_env_vars: Tuple[str, ...] = ()
    blocked_env_vars: Tuple[str, ...] = ()


class SandboxCapabilities(BaseModel):
    """平台 variant 的能力描述（只读报告，不参与决策）。"""

    model_config = ConfigDict(extra="forbid", frozen=True)

    platform: str
    file_system_isolation: bool = False
    network_isolation: bool = False
    process_isolation: bool = False
    memory_limits: bool = False
    cpu_limits: bool = False
    command_filtering: bool = False


class SandboxResult(BaseModel):
    """
    一次沙箱执行的结果。

    字段：
    - exit_code：子进程退出码（超时/被杀时为负数或 -1）
    - stdout / stderr：输出（超限时保留尾部）
    - duration：墙钟耗时（秒）
    - memory_used：峰值内存（字节；平台不支持时为 0）
    - error：可读错误（未能启动等）；正常退出为 None
    - timed_out：是否因超时被终止
    """

    model_config = ConfigDict(extra="forbid")

    exit_code: int = 0
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0
    memory_used: int = 0
    error: Optional[str] = None
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and not self.timed_out and self.exit_code == 0


def default_policy(base_path: str) -> SandboxPolicy:
    """
    生成默认策略（读写限定在 base_path 下，阻断系统目录，网络关闭）。

    参数：
    - base_path：项目根目录；必须为绝对路径
    """

    if not os.path.isabs(base_path):
        raise PolicyError(f"base path must be absolute: {base_path}")
    base = str(Path(base_path))
    return SandboxPolicy(
        allow_read_paths=(base,),
        allow_write_paths=(base,),
        block_paths=DEFAULT_BLOCK_PATHS,
        allow_network=False,
        max_processes=10,
        max_memory_mb=512,
        max_cpu_time=30.0,
        allowed_commands=DEFAULT_ALLOWED_COMMANDS,
        blocked_commands=DEFAULT_BLOCKED_COMMANDS,
        allowed_env_vars=DEFAULT_ALLOWED_ENV_VARS,
        blocked_env_vars=DEFAULT_BLOCKED_ENV_VARS,
    )


def validate_policy_paths(policy: SandboxPolicy) -> None:
    """校验所有路径为绝对路径（相对路径直接报错，不做补全）。"""

    for label, paths in (
        ("read", policy.allow_read_paths),
        ("write", policy.allow_write_paths),
        ("block", policy.block_paths),
    ):
        for path in paths:
            if not os.path.isabs(path):
                raise PolicyError(f"{label} path must be absolute: {path}")


def validate_policy_limits(policy: SandboxPolicy) -> None:
    """校验资源上限非负。"""

    if policy.max_memory_mb < 0:
        raise PolicyError("max memory must be non-negative")
    if policy.max_processes < 0:
        raise PolicyError("max processes must be non-negative")
    if policy.max_cpu_time < 0:
        raise PolicyError("max CPU time must be non-negative")


def validate_policy(policy: SandboxPolicy) -> None:
    """通用策略校验（路径 + 资源上限）；各 variant 在此基础上追加平台检查。"""

    validate_policy_paths(policy)
    validate_policy_limits(policy)


def validate_command(command: str, policy: SandboxPolicy) -> None:
    """
    校验待执行命令。

    规则：
    - 空命令 → 报错
    - 命中 blocked_commands → 报错（即使同时在 allowed_commands 中）
    - allowed_commands 非空且未命中 → 报错
    """

    if not command:
        raise PolicyError("command cannot be empty")
    name = os.path.basename(command)
    if command in policy.blocked_commands or name in policy.blocked_commands:
        raise PolicyError(f"command '{command}' is blocked by policy")
    if policy.allowed_commands and command not in policy.allowed_commands and name not in policy.allowed_commands:
        raise PolicyError(f"command '{command}' is not in allowed commands list")


def filter_environment(policy: SandboxPolicy, environ: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """
    按策略过滤环境变量。

    规则：
    - blocked_env_vars 中的变量一律移除
    - allowed_env_vars 非空时，仅保留列表内变量；为空时保留其余全部变量
    """

    source = os.environ if environ is None else environ
    blocked = set(policy.blocked_env_vars)
    allowed = set(policy.allowed_env_vars)
    out: Dict[str, str] = {}
    for key, value in source.items():
        if key in blocked:
            continue
        if allowed and key not in allowed:
            continue
        out[key] = value
    return out


def effective_timeout(policy: SandboxPolicy, timeout: Optional[float]) -> Optional[float]:
    """取 policy.max_cpu_time 与调用方 timeout 中较小的正值；都未设置时返回 None。"""

    candidates: List[float] = [t for t in (policy.max_cpu_time, timeout or 0.0) if t and t > 0]
    if not candidates:
        return None
    return min(candidates)


__all__ = [
    "DEFAULT_ALLOWED_COMMANDS",
    "DEFAULT_ALLOWED_ENV_VARS",
    "DEFAULT_BLOCKED_COMMANDS",
    "DEFAULT_BLOCKED_ENV_VARS",
    "DEFAULT_BLOCK_PATHS",
    "SandboxCapabilities",
    "SandboxPolicy",
    "SandboxResult",
    "default_policy",
    "effective_timeout",
    "filter_environment",
    "validate_command",
    "validate_policy",
    "validate_policy_limits",
    "validate_policy_paths",
]
