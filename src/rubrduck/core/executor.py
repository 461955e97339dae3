"""
异步子进程执行器（供 sandbox variants 与 git 工具复用）。

说明：
- 为避免子进程 stdout/stderr 输出过大导致内存膨胀，本实现采用“尾部截断”策略：
  单独限制 stdout/stderr 的最大字节数（保留尾部），截断时在输出最前部插入提示；
- 子进程总是成为新的进程组 leader（start_new_session），超时/取消时整组 SIGTERM → SIGKILL；
- 启动失败（可执行文件不存在、preexec 失败等）直接抛出 OSError/SubprocessError，由调用方决定降级或报错。
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import time
from pathlib import Path
from typing import Callable, Mapping, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

_READ_CHUNK = 4096


class CommandResult(BaseModel):
    """
    命令执行结果（结构化）。

    字段说明：
    - exit_code：进程退出码；超时/被取消时为 -1
    - stdout/stderr：捕获到的输出（可能被截断）
    - duration：耗时（秒）
    - timed_out：是否因超时被终止
    - truncated：stdout/stderr 是否发生截断（任一发生即 true）
    """

    model_config = ConfigDict(extra="forbid")

    exit_code: int = -1
    stdout: str = ""
    stderr: str = ""
    duration: float = Field(default=0.0, ge=0.0)
    timed_out: bool = False
    truncated: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


class _TailRingBuffer:
    """保留尾部的有界字节缓冲（用于截断策略）。"""

    def __init__(self, max_bytes: int) -> None:
        if max_bytes < 0:
            raise ValueError("max_bytes 必须 >= 0")
        self._max_bytes = max_bytes
        self._buf = bytearray()
        self.truncated = False

    def append(self, chunk: bytes) -> None:
        """追加字节；超出上限时丢弃头部，保留尾部。"""

        if not chunk:
            return
        if self._max_bytes == 0:
            self.truncated = True
            return

        if len(chunk) >= self._max_bytes:
            self._buf[:] = chunk[-self._max_bytes :]
            self.truncated = True
            return

        overflow = len(self._buf) + len(chunk) - self._max_bytes
        if overflow > 0:
            del self._buf[:overflow]
            self.truncated = True
        self._buf.extend(chunk)

    def get_text(self) -> str:
        """获取当前缓冲内容（UTF-8 解码；非法字节替换为 U+FFFD）。"""

        return bytes(self._buf).decode("utf-8", errors="replace")


async def _drain(stream: Optional[asyncio.StreamReader], buf: _TailRingBuffer) -> None:
    if stream is None:
        return
    while True:
        chunk = await stream.read(_READ_CHUNK)
        if not chunk:
            return
        buf.append(chunk)


class AsyncExecutor:
    """
    异步执行器。

    参数：
    - max_stdout_bytes/max_stderr_bytes：分别限制 stdout/stderr 记录的最大字节数（尾部保留）
    - terminate_grace_sec：超时后 SIGTERM→SIGKILL 的宽限时间（秒）
    - truncate_marker：截断提示（插入到输出最前部，提示前文被省略）

    约束：
    - 本类不做命令白名单/危险性判断（该职责属于 safety 与 sandbox policy）。
    """

    def __init__(
        self,
        *,
        max_stdout_bytes: int = 64 * 1024,
        max_stderr_bytes: int = 64 * 1024,
        terminate_grace_sec: float = 0.2,
        truncate_marker: str = "...<truncated>\n",
    ) -> None:
        if max_stdout_bytes < 0 or max_stderr_bytes < 0:
            raise ValueError("max_*_bytes 必须 >= 0")
        if terminate_grace_sec < 0:
            raise ValueError("terminate_grace_sec 必须 >= 0")
        self._max_stdout_bytes = max_stdout_bytes
        self._max_stderr_bytes = max_stderr_bytes
        self._terminate_grace_sec = terminate_grace_sec
        self._truncate_marker = truncate_marker

    async def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
        preexec_fn: Optional[Callable[[], None]] = None,
    ) -> CommandResult:
        """
        执行 argv 命令并捕获结果。

        参数：
        - argv：命令与参数（至少 1 项）
        - cwd：工作目录；None 表示继承当前进程
        - env：完整环境变量（不与 os.environ 合并；None 表示继承）
        - timeout：墙钟超时（秒）；None 表示不限制
        - preexec_fn：子进程 exec 前在子进程内执行（rlimit/prctl 等）

        异常：
        - ValueError：argv 为空
        - OSError / subprocess.SubprocessError：进程无法启动
        - asyncio.CancelledError：调用方取消（子进程组已被终止）
        """

        if not argv:
            raise ValueError("argv 不能为空")

        start = time.monotonic()
        proc = await asyncio.create_subprocess_exec(
            *argv,
            cwd=str(cwd) if cwd is not None else None,
            env=dict(env) if env is not None else None,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
            preexec_fn=preexec_fn,
        )
        logger.debug("spawned pid=%s argv0=%s", proc.pid, argv[0])

        stdout_buf = _TailRingBuffer(self._max_stdout_bytes)
        stderr_buf = _TailRingBuffer(self._max_stderr_bytes)
        readers = asyncio.gather(_drain(proc.stdout, stdout_buf), _drain(proc.stderr, stderr_buf))

        timed_out = False
        try:
            try:
                await asyncio.wait_for(proc.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                timed_out = True
                await self._terminate(proc)
            await asyncio.wait_for(readers, timeout=1.0)
        except asyncio.TimeoutError:
            # 孙进程仍持有管道：放弃剩余输出
            readers.cancel()
        except asyncio.CancelledError:
            await asyncio.shield(self._terminate(proc))
            readers.cancel()
            raise

        truncated = stdout_buf.truncated or stderr_buf.truncated
        stdout_text = stdout_buf.get_text()
        stderr_text = stderr_buf.get_text()
        if truncated:
            if stdout_text:
                stdout_text = f"{self._truncate_marker}{stdout_text}"
            if stderr_text:
                stderr_text = f"{self._truncate_marker}{stderr_text}"

        exit_code = -1 if timed_out or proc.returncode is None else proc.returncode
        return CommandResult(
            exit_code=exit_code,
            stdout=stdout_text,
            stderr=stderr_text,
            duration=time.monotonic() - start,
            timed_out=timed_out,
            truncated=truncated,
        )

    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        """终止子进程组：SIGTERM → (grace) → SIGKILL。"""

        if proc.returncode is not None:
            return
        try:
            os.killpg(proc.pid, signal.SIGTERM)
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(proc.wait(), timeout=self._terminate_grace_sec)
            return
        except asyncio.TimeoutError:
            pass
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            return
        await proc.wait()


__all__ = ["AsyncExecutor", "CommandResult"]
