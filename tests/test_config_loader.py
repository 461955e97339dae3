from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from rubrduck.config.loader import AgentConfig, load_config, load_config_dicts


def test_defaults() -> None:
    cfg = AgentConfig()
    assert cfg.config_version == 1
    assert cfg.approval.mode == "suggest"
    assert cfg.approval.auto_approve_low_risk is True
    assert "git status" in cfg.approval.auto_approve_safe_commands
    assert cfg.approval.max_batch_size == 10
    assert cfg.approval.timeout_sec is None
    assert cfg.sandbox.platform == "auto"
    assert cfg.agent.stream_buffer_size == 64


def test_yaml_overlays_merge_in_order(tmp_path: Path) -> None:
    base = tmp_path / "base.yaml"
    base.write_text(
        "\n".join(
            [
                "config_version: 1",
                "agent:",
                '  model: "base-model"',
                "  stream_buffer_size: 8",
                "approval:",
                "  mode: suggest",
                "  blocked_commands: [\"rm -rf\"]",
            ]
        )
        + "\n",
        encoding="utf-8",
    )
    overlay = tmp_path / "overlay.yaml"
    overlay.write_text(
        "\n".join(
            [
                "agent:",
                '  model: "overlay-model"',
                "approval:",
                "  mode: full-auto",
                "sandbox:",
                "  platform: fallback",
                "  max_memory_mb: 0",
            ]
        )
        + "\n",
        encoding="utf-8",
    )

    cfg = load_config([base, overlay])
    assert cfg.agent.model == "overlay-model"
    assert cfg.agent.stream_buffer_size == 8
    assert cfg.approval.mode == "full-auto"
    assert cfg.approval.blocked_commands == ["rm -rf"]
    assert cfg.sandbox.platform == "fallback"
    assert cfg.sandbox.max_memory_mb == 0


def test_empty_yaml_is_ignored(tmp_path: Path) -> None:
    empty = tmp_path / "empty.yaml"
    empty.write_text("", encoding="utf-8")
    assert load_config([empty]) == AgentConfig()


def test_non_mapping_root_rejected(tmp_path: Path) -> None:
    bad = tmp_path / "bad.yaml"
    bad.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config([bad])


def test_unknown_fields_rejected() -> None:
    with pytest.raises(ValidationError):
        load_config_dicts([{"approval": {"mdoe": "full-auto"}}])
    with pytest.raises(ValidationError):
        load_config_dicts([{"approval": {"mode": "yolo"}}])
    with pytest.raises(ValidationError):
        load_config_dicts([{"approval": {"max_batch_size": 0}}])


def test_sandbox_config_to_policy_resolves_relative_paths(tmp_path: Path) -> None:
    cfg = load_config_dicts(
        [{"sandbox": {"allow_write_paths": ["build", "/opt/cache"], "allow_network": True, "max_cpu_time": 5}}]
    )
    policy = cfg.sandbox.to_policy(str(tmp_path))
    assert policy.allow_read_paths == (str(tmp_path),)
    assert policy.allow_write_paths == (str(tmp_path / "build"), "/opt/cache")
    assert policy.allow_network is True
    assert policy.max_cpu_time == 5.0
    assert "rm" in policy.blocked_commands


def test_sandbox_config_expands_home_directory(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    home = tmp_path / "home"
    monkeypatch.setenv("HOME", str(home))
    cfg = load_config_dicts(
        [{"sandbox": {"allow_write_paths": ["~/.rubrduck", "out"], "block_paths": ["~/.ssh", "/etc"]}}]
    )
    policy = cfg.sandbox.to_policy(str(tmp_path / "project"))
    assert policy.allow_write_paths == (str(home / ".rubrduck"), str(tmp_path / "project" / "out"))
    assert policy.block_paths == (str(home / ".ssh"), "/etc")
