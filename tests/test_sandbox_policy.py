from __future__ import annotations

import asyncio
import shutil
from pathlib import Path

import pytest

from rubrduck.core.errors import PolicyError
from rubrduck.core.executor import CommandResult
from rubrduck.sandbox import (
    FallbackSandbox,
    LinuxSandbox,
    SandboxKind,
    SandboxPolicy,
    SeatbeltSandbox,
    create_sandbox,
    default_policy,
    detect_kind,
    filter_environment,
    render_profile,
    validate_command,
    validate_policy,
)
from rubrduck.sandbox.policy import effective_timeout


def _fake_sandbox_exec(tmp_path: Path) -> str:
    exe = tmp_path / "sandbox-exec"
    exe.write_text("#!/bin/sh\nexit 0\n", encoding="utf-8")
    exe.chmod(0o755)
    return str(exe)


class _RecordingExecutor:
    """记录每次调用参数；可选地在调用时读取 seatbelt profile 内容。"""

    def __init__(self) -> None:
        self.calls: list = []
        self.profiles: list = []

    async def run(self, argv, *, cwd=None, env=None, timeout=None, preexec_fn=None) -> CommandResult:
        self.calls.append({"argv": list(argv), "env": env, "preexec_fn": preexec_fn})
        if len(argv) > 2 and argv[1] == "-f":
            self.profiles.append(Path(argv[2]).read_text(encoding="utf-8"))
        return CommandResult(exit_code=0, stdout="ok\n")


def _all_variants(tmp_path: Path) -> list:
    return [
        SeatbeltSandbox(sandbox_exec_path=_fake_sandbox_exec(tmp_path)),
        LinuxSandbox(probe=False),
        FallbackSandbox(),
    ]


def test_default_policy_scopes_paths_to_base(tmp_path: Path) -> None:
    policy = default_policy(str(tmp_path))
    assert policy.allow_read_paths == (str(tmp_path),)
    assert policy.allow_write_paths == (str(tmp_path),)
    assert "/etc" in policy.block_paths
    assert policy.allow_network is False
    assert (policy.max_processes, policy.max_memory_mb, policy.max_cpu_time) == (10, 512, 30.0)


def test_default_policy_requires_absolute_base() -> None:
    with pytest.raises(PolicyError):
        default_policy("relative/dir")


@pytest.mark.parametrize("field", ["allow_read_paths", "allow_write_paths", "block_paths"])
def test_every_variant_rejects_relative_paths(tmp_path: Path, field: str) -> None:
    relative = SandboxPolicy(**{field: ("tmp",)})
    absolute = SandboxPolicy(**{field: ("/tmp",)})
    for sandbox in _all_variants(tmp_path):
        with pytest.raises(PolicyError, match="must be absolute"):
            sandbox.validate_policy(relative)
        sandbox.validate_policy(absolute)


def test_negative_limits_rejected() -> None:
    with pytest.raises(PolicyError, match="max memory"):
        validate_policy(SandboxPolicy(max_memory_mb=-1))
    with pytest.raises(PolicyError, match="max processes"):
        validate_policy(SandboxPolicy(max_processes=-1))
    with pytest.raises(PolicyError, match="max CPU time"):
        validate_policy(SandboxPolicy(max_cpu_time=-0.5))


def test_policy_is_immutable(tmp_path: Path) -> None:
    policy = default_policy(str(tmp_path))
    with pytest.raises(Exception):
        policy.allow_network = True  # type: ignore[misc]


def test_validate_command_rules() -> None:
    policy = SandboxPolicy(allowed_commands=("ls", "rm"), blocked_commands=("rm",))
    validate_command("ls", policy)
    validate_command("/bin/ls", policy)
    with pytest.raises(PolicyError, match="blocked"):
        validate_command("rm", policy)
    with pytest.raises(PolicyError, match="not in allowed"):
        validate_command("cat", policy)
    with pytest.raises(PolicyError, match="empty"):
        validate_command("", policy)
    validate_command("anything", SandboxPolicy())


def test_filter_environment_block_wins_over_allow() -> None:
    policy = SandboxPolicy(allowed_env_vars=("PATH", "SSH_AUTH_SOCK"), blocked_env_vars=("SSH_AUTH_SOCK",))
    env = {"PATH": "/bin", "SSH_AUTH_SOCK": "/tmp/agent", "SECRET": "x"}
    assert filter_environment(policy, env) == {"PATH": "/bin"}
    open_policy = SandboxPolicy(blocked_env_vars=("SECRET",))
    assert filter_environment(open_policy, env) == {"PATH": "/bin", "SSH_AUTH_SOCK": "/tmp/agent"}


def test_effective_timeout_takes_smallest_positive() -> None:
    assert effective_timeout(SandboxPolicy(max_cpu_time=30.0), 5.0) == 5.0
    assert effective_timeout(SandboxPolicy(max_cpu_time=2.0), 5.0) == 2.0
    assert effective_timeout(SandboxPolicy(), None) is None


def test_detect_and_create_sandbox() -> None:
    assert detect_kind("darwin") is SandboxKind.SEATBELT
    assert detect_kind("linux") is SandboxKind.LINUX
    assert detect_kind("win32") is SandboxKind.FALLBACK
    assert isinstance(create_sandbox(kind=SandboxKind.FALLBACK), FallbackSandbox)
    assert isinstance(create_sandbox("freebsd13"), FallbackSandbox)


class TestSeatbelt:
    def test_unavailable_sandbox_exec_rejects_policy(self, tmp_path: Path) -> None:
        sandbox = SeatbeltSandbox(sandbox_exec_path=str(tmp_path / "missing"))
        assert sandbox.is_available() is False
        with pytest.raises(PolicyError, match="sandbox-exec not available"):
            sandbox.validate_policy(default_policy(str(tmp_path)))

    def test_profile_rendering(self, tmp_path: Path) -> None:
        policy = SandboxPolicy(
            allow_read_paths=(str(tmp_path),),
            allow_write_paths=(str(tmp_path / "out"),),
            block_paths=("/etc",),
            allowed_env_vars=("PATH",),
            blocked_env_vars=("SSH_AUTH_SOCK",),
        )
        profile = render_profile(policy)
        assert profile.startswith("(version 1)\n(deny default)\n")
        assert f'(allow file-read* (subpath "{tmp_path}"))' in profile
        assert f'(allow file-write* (subpath "{tmp_path / "out"}"))' in profile
        assert '(deny file* (subpath "/etc"))' in profile
        assert "(deny network*)" in profile
        assert '(allow environment-variable "PATH")' in profile
        assert '(deny environment-variable "SSH_AUTH_SOCK")' in profile
        assert profile.index("(allow file-read*") < profile.index("(deny file*")

        assert "(allow network*)" in render_profile(SandboxPolicy(allow_network=True))

    def test_profile_allows_process_startup_despite_blocked_system_dirs(self, tmp_path: Path) -> None:
        profile = render_profile(default_policy(str(tmp_path)), executable="/bin/ls")
        for clause in ("(allow process-exec)", "(allow process-fork)", "(allow sysctl-read)"):
            assert clause in profile
        assert '(deny file* (subpath "/usr"))' in profile
        assert '(deny file* (subpath "/bin"))' in profile

        last_deny = profile.rindex("(deny file*")
        for runtime in ("/usr/lib", "/usr/bin", "/bin", "/System/Library"):
            assert profile.index(f'(allow file-read* (subpath "{runtime}"))') > last_deny
        assert profile.index('(allow file-read* (literal "/bin/ls"))') > last_deny
        assert "(allow file-write* (subpath \"/usr" not in profile

    def test_execute_writes_profile_for_resolved_command(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        bin_dir = tmp_path / "tools"
        bin_dir.mkdir()
        tool = bin_dir / "ls"
        tool.write_text("#!/bin/sh\nexit 0\n", encoding="utf-8")
        tool.chmod(0o755)
        monkeypatch.setenv("PATH", str(bin_dir))

        work = tmp_path / "work"
        work.mkdir()
        policy = default_policy(str(work)).model_copy(update={"block_paths": (str(bin_dir),)})
        executor = _RecordingExecutor()
        sandbox = SeatbeltSandbox(sandbox_exec_path=_fake_sandbox_exec(tmp_path), executor=executor)  # type: ignore[arg-type]

        result = asyncio.run(sandbox.execute("ls", ["-la"], policy, cwd=work))

        assert result.ok
        argv = executor.calls[0]["argv"]
        assert argv[3:] == ["ls", "-la"]
        assert not Path(argv[2]).exists()
        profile = executor.profiles[0]
        assert profile.index(f'(allow file-read* (literal "{tool}"))') > profile.index(f'(deny file* (subpath "{bin_dir}"))')

    def test_capabilities_report_no_resource_limits(self, tmp_path: Path) -> None:
        caps = SeatbeltSandbox(sandbox_exec_path=_fake_sandbox_exec(tmp_path)).get_capabilities()
        assert caps.platform == "darwin"
        assert caps.file_system_isolation is True
        assert caps.memory_limits is False


class TestLinux:
    def test_bwrap_argv_mounts_and_masks(self, tmp_path: Path) -> None:
        work = tmp_path / "work"
        work.mkdir()
        hidden = work / "secret"
        hidden.mkdir()
        policy = SandboxPolicy(
            allow_read_paths=(str(tmp_path),),
            allow_write_paths=(str(work),),
            block_paths=(str(hidden), "/nonexistent-root-path"),
        )
        argv = LinuxSandbox(probe=False).build_bwrap_argv(["ls", "-la"], policy, work)

        assert argv[0] == "bwrap"
        assert "--unshare-net" in argv
        assert argv[-3:] == ["--", "ls", "-la"]
        joined = " ".join(argv)
        assert f"--ro-bind {tmp_path} {tmp_path}" in joined
        assert f"--bind {work} {work}" in joined
        assert f"--tmpfs {hidden}" in joined
        assert "/nonexistent-root-path" not in joined
        assert f"--chdir {work}" in joined

    def test_network_allowed_keeps_network_namespace(self, tmp_path: Path) -> None:
        argv = LinuxSandbox(probe=False).build_bwrap_argv(["ls"], SandboxPolicy(allow_network=True), None)
        assert "--unshare-net" not in argv

    @pytest.mark.parametrize("seccomp, expect_no_new_privs", [(True, True), (False, False)])
    def test_no_new_privs_stage_requires_seccomp(self, seccomp: bool, expect_no_new_privs: bool) -> None:
        prctl_calls: list = []

        def _prctl(*args: int) -> int:
            prctl_calls.append(args)
            return 0

        executor = _RecordingExecutor()
        sandbox = LinuxSandbox(probe=False, executor=executor)  # type: ignore[arg-type]
        sandbox._has_seccomp = seccomp
        sandbox._prctl = _prctl
        assert sandbox.has_seccomp is seccomp

        # 无资源上限时 basic 阶段不需要 preexec
        policy = SandboxPolicy(max_memory_mb=0, max_processes=0, max_cpu_time=0)
        result = asyncio.run(sandbox.execute("echo", ["hi"], policy))

        assert result.ok
        assert executor.calls[0]["argv"] == ["echo", "hi"]
        preexec = executor.calls[0]["preexec_fn"]
        if expect_no_new_privs:
            assert preexec is not None
            preexec()
            assert prctl_calls == [(38, 1, 0, 0, 0)]
        else:
            assert preexec is None

    def test_basic_stage_runs_when_nothing_probed(self, tmp_path: Path) -> None:
        if shutil.which("echo") is None:
            pytest.skip("echo not available")
        sandbox = LinuxSandbox(probe=False)
        policy = default_policy(str(tmp_path)).model_copy(update={"max_processes": 0})
        result = asyncio.run(sandbox.execute("echo", ["hello"], policy, cwd=tmp_path))
        assert result.ok
        assert result.stdout.strip() == "hello"
        assert sandbox.get_capabilities().file_system_isolation is False


class TestFallback:
    def test_executes_allowed_command(self, tmp_path: Path) -> None:
        if shutil.which("echo") is None:
            pytest.skip("echo not available")
        policy = default_policy(str(tmp_path)).model_copy(update={"max_processes": 0})
        result = asyncio.run(FallbackSandbox().execute("echo", ["hi", "there"], policy, cwd=tmp_path))
        assert result.exit_code == 0
        assert result.stdout == "hi there\n"
        assert result.error is None
        assert result.duration >= 0.0

    def test_blocked_command_never_starts(self, tmp_path: Path) -> None:
        policy = default_policy(str(tmp_path))
        with pytest.raises(PolicyError, match="blocked"):
            asyncio.run(FallbackSandbox().execute("rm", ["-rf", str(tmp_path)], policy))
        assert tmp_path.exists()

    def test_unlimited_memory_policy_is_accepted(self, tmp_path: Path) -> None:
        if shutil.which("echo") is None:
            pytest.skip("echo not available")
        policy = default_policy(str(tmp_path)).model_copy(update={"max_memory_mb": 0, "max_processes": 0})
        result = asyncio.run(FallbackSandbox().execute("echo", ["ok"], policy, cwd=tmp_path))
        assert result.ok

    def test_inaccessible_write_path_rejected(self, tmp_path: Path) -> None:
        policy = default_policy(str(tmp_path)).model_copy(
            update={"allow_write_paths": (str(tmp_path / "missing"),)}
        )
        with pytest.raises(PolicyError, match="write path not accessible"):
            asyncio.run(FallbackSandbox().execute("echo", ["x"], policy))

    def test_timeout_terminates_command(self, tmp_path: Path) -> None:
        if shutil.which("sleep") is None:
            pytest.skip("sleep not available")
        policy = default_policy(str(tmp_path)).model_copy(
            update={"max_processes": 0, "allowed_commands": ("sleep",)}
        )
        result = asyncio.run(FallbackSandbox().execute("sleep", ["5"], policy, cwd=tmp_path, timeout=0.2))
        assert result.timed_out is True
        assert result.ok is False
        assert result.duration < 4.0

    def test_missing_executable_reports_error(self, tmp_path: Path) -> None:
        policy = default_policy(str(tmp_path)).model_copy(update={"allowed_commands": ()})
        result = asyncio.run(FallbackSandbox().execute("definitely-not-a-command-xyz", [], policy, cwd=tmp_path))
        assert result.error is not None
        assert result.error.startswith("failed to start command")
