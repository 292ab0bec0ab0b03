"""命令执行器：本地 bash 或远程 ssh 执行，统一超时、输出上限与结果归一化。"""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
import shutil
import signal
import time
from contextlib import suppress

from governor.domain.models import ExecutionResult, ExecutionTarget

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124
FAILURE_EXIT_CODE = 1
SSH_TRANSPORT_EXIT_CODE = 255
KILL_GRACE_SECONDS = 2.0
_READ_CHUNK_BYTES = 64 * 1024


def quote_for_shell(value: str) -> str:
    """远程命令参数的唯一转义入口。"""
    return shlex.quote(str(value))


def build_remote_command(command: str) -> str:
    """将技能脚本包装为非交互的远程 bash 调用。"""
    return f"bash -lc {quote_for_shell(command)}"


def build_ssh_argv(target: ExecutionTarget, remote_command: str, *, connect_timeout: int) -> list[str]:
    """构造 ssh 参数：关闭主机指纹交互并限制连接超时。"""
    argv = [
        "ssh",
        "-o",
        "StrictHostKeyChecking=no",
        "-o",
        "UserKnownHostsFile=/dev/null",
        "-o",
        f"ConnectTimeout={connect_timeout}",
        "-o",
        "LogLevel=ERROR",
    ]
    if not target.password:
        # 无密码时只允许密钥认证，禁止任何交互式提示。
        argv += ["-o", "BatchMode=yes"]
    if target.port != 22:
        argv += ["-p", str(target.port)]
    argv += [f"{target.user}@{target.host}", remote_command]
    return argv


class _BoundedBuffer:
    """有上限的输出缓冲；超出部分丢弃但继续计数。"""

    def __init__(self, limit: int) -> None:
        self._limit = max(limit, 0)
        self._data = bytearray()
        self.total_bytes = 0

    @property
    def truncated(self) -> bool:
        return self.total_bytes > self._limit

    def feed(self, chunk: bytes) -> None:
        self.total_bytes += len(chunk)
        room = self._limit - len(self._data)
        if room > 0:
            self._data += chunk[:room]

    def text(self) -> str:
        text = bytes(self._data).decode("utf-8", errors="replace")
        if self.truncated:
            text += f"\n[output truncated: {self.total_bytes} bytes produced, limit {self._limit}]"
        return text


async def _drain(stream: asyncio.StreamReader | None, buffer: _BoundedBuffer) -> None:
    """持续读取管道直到 EOF，保证子进程不会因管道写满而阻塞。"""
    if stream is None:
        return
    while True:
        chunk = await stream.read(_READ_CHUNK_BYTES)
        if not chunk:
            return
        buffer.feed(chunk)


def _kill_process_tree(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    with suppress(ProcessLookupError):
        if os.name == "posix":
            # 子进程以独立会话启动，按进程组回收，避免遗留孙进程占用管道。
            os.killpg(process.pid, signal.SIGKILL)
        else:
            process.kill()


class CommandRunner:
    """执行技能命令并返回结构化结果；任何失败都不会向上抛出（取消除外）。"""

    def __init__(
        self,
        *,
        local_shell: str = "bash",
        local_timeout_seconds: float = 180.0,
        remote_timeout_seconds: float = 180.0,
        remote_connect_timeout_seconds: int = 15,
        max_output_bytes: int = 4 * 1024 * 1024,
    ) -> None:
        self._local_shell = local_shell
        self._local_timeout_seconds = local_timeout_seconds
        self._remote_timeout_seconds = remote_timeout_seconds
        self._remote_connect_timeout_seconds = remote_connect_timeout_seconds
        self._max_output_bytes = max_output_bytes

    async def run(
        self,
        command: str,
        target: ExecutionTarget | None,
        *,
        timeout_seconds: float | None = None,
        max_output_bytes: int | None = None,
    ) -> ExecutionResult:
        """target 为 None 时本地执行，否则经 ssh 在目标主机执行。"""
        limit = self._max_output_bytes if max_output_bytes is None else max_output_bytes
        if target is None:
            timeout = self._local_timeout_seconds if timeout_seconds is None else timeout_seconds
            return await self._execute(
                [self._local_shell, "-lc", command],
                op="local",
                timeout_seconds=timeout,
                max_output_bytes=limit,
            )

        timeout = self._remote_timeout_seconds if timeout_seconds is None else timeout_seconds
        argv = build_ssh_argv(
            target,
            build_remote_command(command),
            connect_timeout=self._remote_connect_timeout_seconds,
        )
        env: dict[str, str] | None = None
        if target.password:
            if shutil.which("sshpass") is None:
                return ExecutionResult(
                    success=False,
                    stdout="",
                    stderr="sshpass is required for password authentication but was not found in PATH",
                    exit_code=FAILURE_EXIT_CODE,
                    error="sshpass not installed",
                )
            # 密码经环境变量传给 sshpass，不出现在进程参数列表中。
            argv = ["sshpass", "-e", *argv]
            env = {**os.environ, "SSHPASS": target.password}
        result = await self._execute(
            argv,
            op="ssh",
            timeout_seconds=timeout,
            max_output_bytes=limit,
            env=env,
            host=target.host,
        )
        if result.exit_code == SSH_TRANSPORT_EXIT_CODE and not result.timed_out:
            return ExecutionResult(
                success=False,
                stdout=result.stdout,
                stderr=result.stderr,
                exit_code=result.exit_code,
                error=f"remote shell transport failed for {target.user}@{target.host}",
                truncated=result.truncated,
                duration_ms=result.duration_ms,
            )
        return result

    async def _execute(
        self,
        argv: list[str],
        *,
        op: str,
        timeout_seconds: float,
        max_output_bytes: int,
        env: dict[str, str] | None = None,
        host: str | None = None,
    ) -> ExecutionResult:
        started = time.perf_counter()
        logger.info(
            "command execution started",
            extra={
                "event": "command.execution.started",
                "external_service": "shell",
                "op": op,
                "payload_preview": {"host": host, "timeout_seconds": timeout_seconds},
            },
        )
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                start_new_session=os.name == "posix",
            )
        except OSError as exc:
            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            logger.error(
                "command spawn failed",
                extra={
                    "event": "command.execution.spawn_failed",
                    "external_service": "shell",
                    "op": op,
                    "duration_ms": duration_ms,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
            return ExecutionResult(
                success=False,
                stdout="",
                stderr=str(exc),
                exit_code=FAILURE_EXIT_CODE,
                error=f"failed to start {argv[0]}: {exc}",
                duration_ms=duration_ms,
            )

        stdout_buffer = _BoundedBuffer(max_output_bytes)
        stderr_buffer = _BoundedBuffer(max_output_bytes)
        readers = [
            asyncio.ensure_future(_drain(process.stdout, stdout_buffer)),
            asyncio.ensure_future(_drain(process.stderr, stderr_buffer)),
        ]

        async def _communicate() -> None:
            await asyncio.gather(*readers)
            await process.wait()

        timed_out = False
        try:
            await asyncio.wait_for(_communicate(), timeout=timeout_seconds)
        except asyncio.TimeoutError:
            timed_out = True
        finally:
            # 超时、取消与正常结束都走这里，确保进程与管道被回收。
            _kill_process_tree(process)
            for reader in readers:
                if not reader.done():
                    reader.cancel()
            if process.returncode is None:
                with suppress(asyncio.TimeoutError, ProcessLookupError):
                    await asyncio.wait_for(process.wait(), timeout=KILL_GRACE_SECONDS)

        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        stdout = stdout_buffer.text()
        stderr = stderr_buffer.text()
        truncated = stdout_buffer.truncated or stderr_buffer.truncated

        if timed_out:
            note = f"command timed out after {timeout_seconds:g}s"
            result = ExecutionResult(
                success=False,
                stdout=stdout,
                stderr=f"{stderr}\n{note}" if stderr else note,
                exit_code=TIMEOUT_EXIT_CODE,
                error=note,
                timed_out=True,
                truncated=truncated,
                duration_ms=duration_ms,
            )
        else:
            exit_code = process.returncode if isinstance(process.returncode, int) else FAILURE_EXIT_CODE
            if exit_code < 0:
                # 被信号终止时 returncode 为负数，统一按未知失败处理。
                exit_code = FAILURE_EXIT_CODE
            result = ExecutionResult(
                success=exit_code == 0,
                stdout=stdout,
                stderr=stderr,
                exit_code=exit_code,
                error=None if exit_code == 0 else f"command exited with code {exit_code}",
                truncated=truncated,
                duration_ms=duration_ms,
            )

        logger.info(
            "command execution finished",
            extra={
                "event": "command.execution.finished",
                "external_service": "shell",
                "op": op,
                "duration_ms": duration_ms,
                "payload_preview": {
                    "exit_code": result.exit_code,
                    "timed_out": result.timed_out,
                    "truncated": result.truncated,
                    "stdout_bytes": stdout_buffer.total_bytes,
                    "stderr_bytes": stderr_buffer.total_bytes,
                },
            },
        )
        return result
