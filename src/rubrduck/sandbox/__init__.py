"""
Sandbox 模块（平台 variant 的统一入口）。

导出：
- SandboxPolicy / SandboxCapabilities / SandboxResult：策略与结果模型
- SeatbeltSandbox / LinuxSandbox / FallbackSandbox：封闭的 variant 集合
- create_sandbox：按主机平台选择一次 variant
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

from rubrduck.sandbox.base import Sandbox, SandboxKind
from rubrduck.sandbox.darwin import SeatbeltSandbox, render_profile
from rubrduck.sandbox.fallback import FallbackSandbox
from rubrduck.sandbox.linux import LinuxSandbox
from rubrduck.sandbox.policy import (
    SandboxCapabilities,
    SandboxPolicy,
    SandboxResult,
    default_policy,
    filter_environment,
    validate_command,
    validate_policy,
)

logger = logging.getLogger(__name__)


def detect_kind(platform: Optional[str] = None) -> SandboxKind:
    """按平台字符串（缺省 `sys.platform`）选择 variant 类型。"""

    plat = platform or sys.platform
    if plat.startswith("darwin"):
        return SandboxKind.SEATBELT
    if plat.startswith("linux"):
        return SandboxKind.LINUX
    return SandboxKind.FALLBACK


def create_sandbox(platform: Optional[str] = None, *, kind: Optional[SandboxKind] = None) -> Sandbox:
    """
    创建 sandbox 实例。

    参数：
    - platform：用于测试注入；缺省使用 `sys.platform`
    - kind：可选；强制指定 variant（配置 `sandbox.platform` 非 auto 时使用）
    """

    selected = kind or detect_kind(platform)
    logger.debug("Selected sandbox variant: %s", selected.value)
    if selected is SandboxKind.SEATBELT:
        return SeatbeltSandbox()
    if selected is SandboxKind.LINUX:
        return LinuxSandbox()
    return FallbackSandbox()


__all__ = [
    "FallbackSandbox",
    "LinuxSandbox",
    "Sandbox",
    "SandboxCapabilities",
    "SandboxKind",
    "SandboxPolicy",
    "SandboxResult",
    "SeatbeltSandbox",
    "create_sandbox",
    "default_policy",
    "detect_kind",
    "filter_environment",
    "render_profile",
    "validate_command",
    "validate_policy",
]
