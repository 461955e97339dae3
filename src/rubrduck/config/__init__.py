"""配置模型与 YAML 加载器。"""

from rubrduck.config.loader import (
    AgentConfig,
    AgentSettings,
    ApprovalPolicyConfig,
    SandboxConfig,
    load_config,
    load_config_dicts,
)

__all__ = [
    "AgentConfig",
    "AgentSettings",
    "ApprovalPolicyConfig",
    "SandboxConfig",
    "load_config",
    "load_config_dicts",
]
