"""
配置加载器（YAML）。

设计目标：
- 支持加载多个 YAML，并按顺序做深度合并（后者覆盖前者）。
- 使用 pydantic 做 schema 校验；默认拒绝未知字段（避免拼写错误与误配置被静默吞掉）。
- 配置对象只描述“要什么”；服务实例（审批系统/沙箱/工具）由 `Agent.from_config` 显式构造。
"""

from __future__ import annotations

from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, MutableMapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field

from rubrduck.sandbox.policy import (
    DEFAULT_ALLOWED_COMMANDS,
    DEFAULT_ALLOWED_ENV_VARS,
    DEFAULT_BLOCKED_COMMANDS,
    DEFAULT_BLOCKED_ENV_VARS,
    DEFAULT_BLOCK_PATHS,
    SandboxPolicy,
    default_policy,
)

DEFAULT_SAFE_COMMANDS: List[str] = [
    "git status",
    "git log",
    "git diff",
    "git show",
    "git branch",
    "ls",
    "pwd",
    "cat",
    "head",
    "tail",
    "grep",
    "find",
    "which",
]


def _deep_merge(base: MutableMapping[str, Any], overlay: Mapping[str, Any]) -> MutableMapping[str, Any]:
    """
    深度合并两个 dict（overlay 覆盖 base）。

    合并规则：
    - dict + dict：递归合并
    - 其它类型：overlay 直接覆盖
    - list：整体覆盖（不做去重/拼接）
    """

    for key, overlay_value in overlay.items():
        if key in base and isinstance(base[key], dict) and isinstance(overlay_value, Mapping):
            _deep_merge(base[key], overlay_value)  # type: ignore[arg-type]
            continue
        base[key] = deepcopy(overlay_value)
    return base


class ApprovalPolicyConfig(BaseModel):
    """
    审批策略配置。

    字段：
    - mode：`suggest`（默认，逐项询问）/`auto-edit`/`full-auto`（除 blocked 外全部放行）
    - auto_approve_low_risk：低风险操作是否自动放行
    - auto_approve_safe_commands / auto_approve_safe_paths：arguments 子串命中即自动放行
    - blocked_commands / blocked_paths：arguments 子串命中即拒绝（优先级最高）
    - max_batch_size：批量审批上限
    - timeout_sec：等待回调的上限；None 表示无限等待
    """

    model_config = ConfigDict(extra="forbid")

    mode: Literal["suggest", "auto-edit", "full-auto"] = "suggest"
    auto_approve_low_risk: bool = True
    auto_approve_safe_commands: List[str] = Field(default_factory=lambda: list(DEFAULT_SAFE_COMMANDS))
    auto_approve_safe_paths: List[str] = Field(default_factory=list)
    blocked_commands: List[str] = Field(default_factory=list)
    blocked_paths: List[str] = Field(default_factory=list)
    max_batch_size: int = Field(default=10, ge=1)
    timeout_sec: Optional[float] = Field(default=None, gt=0)


class SandboxConfig(BaseModel):
    """
    沙箱配置（读写路径可写相对路径，`to_policy` 时相对 base_path 解析）。

    说明：
    - `platform`：`auto` 按主机探测；也可强制 `darwin`/`linux`/`fallback`
    - read/write 路径为空时使用 base_path 本身
    """

    model_config = ConfigDict(extra="forbid")

    platform: Literal["auto", "darwin", "linux", "fallback"] = "auto"
    allow_read_paths: List[str] = Field(default_factory=list)
    allow_write_paths: List[str] = Field(default_factory=list)
    block_paths: List[str] = Field(default_factory=lambda: list(DEFAULT_BLOCK_PATHS))
    allow_network: bool = False
    allowed_hosts: List[str] = Field(default_factory=list)
    max_processes: int = Field(default=10, ge=0)
    max_memory_mb: int = Field(default=512, ge=0)
    max_cpu_time: float = Field(default=30.0, ge=0)
    allowed_commands: List[str] = Field(default_factory=lambda: list(DEFAULT_ALLOWED_COMMANDS))
    blocked_commands: List[str] = Field(default_factory=lambda: list(DEFAULT_BLOCKED_COMMANDS))
    allowed_env_vars: List[str] = Field(default_factory=lambda: list(DEFAULT_ALLOWED_ENV_VARS))
    blocked_env_vars: List[str] = Field(default_factory=lambda: list(DEFAULT_BLOCKED_ENV_VARS))

    def to_policy(self, base_path: str) -> SandboxPolicy:
        """
        生成 SandboxPolicy。

        参数：
        - base_path：项目根目录（绝对路径）；相对的读写路径按它解析

        说明：所有路径先展开 `~`；block_paths 不做相对路径补全（相对路径仍由策略校验拒绝）。
        """

        base = default_policy(base_path)
        root = Path(base_path)

        def _resolve(paths: List[str], fallback: tuple) -> tuple:
            if not paths:
                return fallback
            expanded = [Path(p).expanduser() for p in paths]
            return tuple(str(p) if p.is_absolute() else str(root / p) for p in expanded)

        return SandboxPolicy(
            allow_read_paths=_resolve(self.allow_read_paths, base.allow_read_paths),
            allow_write_paths=_resolve(self.allow_write_paths, base.allow_write_paths),
            block_paths=tuple(str(Path(p).expanduser()) for p in self.block_paths),
            allow_network=self.allow_network,
            allowed_hosts=tuple(self.allowed_hosts),
            max_processes=self.max_processes,
            max_memory_mb=self.max_memory_mb,
            max_cpu_time=self.max_cpu_time,
            allowed_commands=tuple(self.allowed_commands),
            blocked_commands=tuple(self.blocked_commands),
            allowed_env_vars=tuple(self.allowed_env_vars),
            blocked_env_vars=tuple(self.blocked_env_vars),
        )


class AgentSettings(BaseModel):
    """
    Agent 运行参数。

    字段：
    - model：传给 provider 的模型名
    - system_prompt：可选；非空时作为 history 首条 system 消息
    - stream_buffer_size：网络读与处理之间的有界 chunk 队列容量
    - final_max_tokens：工具执行后最终补全的 max_tokens（None 表示不限制）
    - temperature：可选
    """

    model_config = ConfigDict(extra="forbid")

    model: str = "gpt-4o-mini"
    system_prompt: str = ""
    stream_buffer_size: int = Field(default=64, ge=1)
    final_max_tokens: Optional[int] = Field(default=None, ge=1)
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)


class AgentConfig(BaseModel):
    """根配置。"""

    model_config = ConfigDict(extra="forbid")

    config_version: Literal[1] = 1
    agent: AgentSettings = Field(default_factory=AgentSettings)
    approval: ApprovalPolicyConfig = Field(default_factory=ApprovalPolicyConfig)
    sandbox: SandboxConfig = Field(default_factory=SandboxConfig)


def _load_yaml_file(path: Path) -> Dict[str, Any]:
    """读取单个 YAML 文件；空文件视为空 overlay。"""

    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"配置文件根节点必须为 mapping(dict)：{path}")
    return data


def load_config_dicts(config_dicts: List[Dict[str, Any]]) -> AgentConfig:
    """
    加载并合并多个 dict 配置，返回校验后的 `AgentConfig`。

    参数：
    - config_dicts：按顺序做深度合并（后者覆盖前者）
    """

    merged: Dict[str, Any] = {}
    for overlay in config_dicts:
        if not overlay:
            continue
        _deep_merge(merged, overlay)
    return AgentConfig.model_validate(merged)


def load_config(config_paths: List[Path]) -> AgentConfig:
    """
    加载并合并多个配置文件，返回校验后的 `AgentConfig`。

    参数：
    - config_paths：YAML 路径列表；按顺序合并（后者覆盖前者）
    """

    overlays: List[Dict[str, Any]] = []
    for path in config_paths:
        overlays.append(_load_yaml_file(Path(path)))
    return load_config_dicts(overlays)
