from __future__ import annotations

import asyncio
import shutil
import time
from pathlib import Path

import pytest

from rubrduck.core.executor import AsyncExecutor


def _require(cmd: str) -> str:
    path = shutil.which(cmd)
    if path is None:
        pytest.skip(f"{cmd} not available")
    return path


def test_run_captures_output_and_exit_code(tmp_path: Path) -> None:
    sh = _require("sh")
    r = asyncio.run(AsyncExecutor().run([sh, "-c", "echo out; echo err 1>&2; exit 3"], cwd=tmp_path))
    assert r.exit_code == 3
    assert r.stdout == "out\n"
    assert r.stderr == "err\n"
    assert r.ok is False
    assert r.timed_out is False


def test_env_is_not_merged_with_parent(tmp_path: Path) -> None:
    sh = _require("sh")
    r = asyncio.run(AsyncExecutor().run([sh, "-c", 'echo "[$HOME]"'], cwd=tmp_path, env={"PATH": "/usr/bin:/bin"}))
    assert r.stdout == "[]\n"


def test_timeout_kills_process_group(tmp_path: Path) -> None:
    sh = _require("sh")
    started = time.monotonic()
    r = asyncio.run(AsyncExecutor().run([sh, "-c", "sleep 5"], cwd=tmp_path, timeout=0.2))
    assert r.timed_out is True
    assert r.exit_code == -1
    assert time.monotonic() - started < 4.0


def test_output_is_tail_truncated(tmp_path: Path) -> None:
    sh = _require("sh")
    ex = AsyncExecutor(max_stdout_bytes=16)
    r = asyncio.run(ex.run([sh, "-c", "printf '0123456789abcdefghijXYZ'"], cwd=tmp_path))
    assert r.truncated is True
    assert r.stdout == "...<truncated>\n789abcdefghijXYZ"


def test_cancel_terminates_child(tmp_path: Path) -> None:
    sh = _require("sh")

    async def _main() -> float:
        started = time.monotonic()
        task = asyncio.create_task(AsyncExecutor().run([sh, "-c", "sleep 5"], cwd=tmp_path))
        await asyncio.sleep(0.1)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        return time.monotonic() - started

    assert asyncio.run(_main()) < 4.0


def test_missing_executable_raises(tmp_path: Path) -> None:
    with pytest.raises(OSError):
        asyncio.run(AsyncExecutor().run(["definitely-not-a-command-xyz"], cwd=tmp_path))


def test_empty_argv_rejected() -> None:
    with pytest.raises(ValueError):
        asyncio.run(AsyncExecutor().run([]))
