"""Async wrapper around external CLI invocations."""

from __future__ import annotations

import asyncio
import shutil
import sys
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

import structlog

from devdock.errors import ExternalToolError

logger = structlog.get_logger(__name__)

READ_CHUNK = 65536

type CommandFailure = Literal["not_found", "exit", "timeout", "cancelled", "error"]
type OutputCallback = Callable[[str, str], Awaitable[None] | None]


@dataclass(slots=True)
class CommandResult:
    """Captured outcome of one external command."""

    command: str
    exit_code: int | None
    stdout: str
    stderr: str
    failure: CommandFailure | None = None

    @property
    def success(self) -> bool:
        return self.failure is None

    @property
    def output(self) -> str:
        return (self.stdout + self.stderr).strip()

    def error_text(self) -> str:
        if self.failure == "not_found":
            return f"command not found: {self.command.split(' ', 1)[0]}"
        if self.failure == "timeout":
            return f"timed out: {self.command}"
        return (self.stderr or self.stdout).strip() or f"exit code {self.exit_code}"


class CommandExecutor:
    """Run external commands and report not-found, exit, and timeout separately."""

    def __init__(self, *, default_timeout: float | None = 600.0) -> None:
        self._default_timeout = default_timeout

    async def run(
        self,
        args: Sequence[str],
        *,
        cwd: Path | None = None,
        timeout: float | None = None,
        env: Mapping[str, str] | None = None,
        input_text: str | None = None,
        on_output: OutputCallback | None = None,
    ) -> CommandResult:
        command = " ".join(args)
        effective_timeout = timeout if timeout is not None else self._default_timeout
        logger.debug("command_started", command=command, cwd=str(cwd) if cwd else None)

        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                cwd=cwd,
                env=dict(env) if env is not None else None,
                stdin=asyncio.subprocess.PIPE if input_text is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            logger.warning("command_not_found", command=command)
            return CommandResult(command, None, "", str(exc), failure="not_found")
        except OSError as exc:
            logger.warning("command_spawn_failed", command=command, error=str(exc))
            return CommandResult(command, None, "", str(exc), failure="error")

        try:
            stdout, stderr = await asyncio.wait_for(
                self._collect(process, input_text, on_output), effective_timeout
            )
        except TimeoutError:
            await terminate_process(process)
            logger.warning("command_timeout", command=command, timeout=effective_timeout)
            return CommandResult(command, None, "", "", failure="timeout")
        except asyncio.CancelledError:
            await terminate_process(process)
            logger.info("command_cancelled", command=command)
            raise

        exit_code = process.returncode
        result = CommandResult(
            command=command,
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            failure=None if exit_code == 0 else "exit",
        )
        if not result.success:
            logger.warning(
                "command_failed", command=command, exit_code=exit_code, stderr=stderr.strip()[-2000:]
            )
        return result

    async def require(
        self,
        args: Sequence[str],
        message: str,
        *,
        cwd: Path | None = None,
        timeout: float | None = None,
        on_output: OutputCallback | None = None,
    ) -> CommandResult:
        """Run a command and raise `ExternalToolError` unless it succeeds."""
        result = await self.run(args, cwd=cwd, timeout=timeout, on_output=on_output)
        if not result.success:
            raise ExternalToolError(f"{message}: {result.error_text()}", result)
        return result

    async def run_shell(
        self,
        command: str,
        *,
        cwd: Path | None = None,
        timeout: float | None = None,
        on_output: OutputCallback | None = None,
    ) -> CommandResult:
        """Run `command` through the platform shell."""
        shell = ["cmd", "/c"] if sys.platform == "win32" else ["/bin/sh", "-c"]
        return await self.run([*shell, command], cwd=cwd, timeout=timeout, on_output=on_output)

    @staticmethod
    def which(name: str) -> str | None:
        return shutil.which(name)

    @staticmethod
    async def _collect(
        process: asyncio.subprocess.Process,
        input_text: str | None,
        on_output: OutputCallback | None,
    ) -> tuple[str, str]:
        payload = input_text.encode("utf-8") if input_text is not None else None
        if on_output is None:
            stdout, stderr = await process.communicate(payload)
            return (
                stdout.decode("utf-8", errors="replace"),
                stderr.decode("utf-8", errors="replace"),
            )

        if payload is not None and process.stdin is not None:
            process.stdin.write(payload)
            await process.stdin.drain()
            process.stdin.close()

        async def pump(stream: asyncio.StreamReader | None, name: str) -> str:
            if stream is None:
                return ""
            chunks: list[str] = []

            async def emit(raw: bytes) -> None:
                line = raw.decode("utf-8", errors="replace")
                chunks.append(line)
                outcome = on_output(name, line.rstrip("\n"))
                if outcome is not None:
                    await outcome

            # Lines are split by hand; StreamReader iteration caps a line at 64 KiB.
            pending = b""
            while chunk := await stream.read(READ_CHUNK):
                pending += chunk
                *complete, pending = pending.split(b"\n")
                for raw in complete:
                    await emit(raw + b"\n")
            if pending:
                await emit(pending)
            return "".join(chunks)

        stdout, stderr = await asyncio.gather(
            pump(process.stdout, "stdout"), pump(process.stderr, "stderr")
        )
        await process.wait()
        return stdout, stderr


async def terminate_process(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    try:
        process.terminate()
        await asyncio.wait_for(process.wait(), 5)
    except ProcessLookupError:
        return
    except TimeoutError:
        process.kill()
        await process.wait()
