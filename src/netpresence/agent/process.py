# NetPresence Agent - Process Boundary
"""
Thin async wrappers around external commands.
Failures are reported in the result, never raised.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass

logger = logging.getLogger("netpresence.agent.process")


@dataclass
class CommandResult:
    """Outcome of one shell invocation."""
    command: str
    stdout: str = ""
    stderr: str = ""
    returncode: int | None = None
    error: str | None = None

    @property
    def failed(self) -> bool:
        """The command itself failed, as opposed to a probe inside it."""
        return self.error is not None or bool(self.stderr.strip())


async def run_shell(command: str, timeout: float | None = None) -> CommandResult:
    """Run a shell command and capture its output."""
    try:
        proc = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        return CommandResult(command=command, error=str(e))

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        return CommandResult(command=command, error=f"timed out after {timeout}s")

    return CommandResult(
        command=command,
        stdout=stdout.decode(errors="replace"),
        stderr=stderr.decode(errors="replace"),
        returncode=proc.returncode,
    )


async def stream_lines(*args: str) -> AsyncIterator[str]:
    """
    Spawn a long-running process and yield its stdout line by line.
    Stderr is logged. The process is killed if the consumer stops early.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        logger.error(f"{args[0]}: failed to start: {e}")
        return

    stderr_task = asyncio.create_task(_drain_stderr(args[0], proc.stderr))
    try:
        while True:
            line = await proc.stdout.readline()
            if not line:
                break
            yield line.decode(errors="replace").rstrip("\n")
        code = await proc.wait()
        logger.debug(f"{args[0]} completed with code {code}")
    finally:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        await stderr_task


async def _drain_stderr(name: str, stream: asyncio.StreamReader) -> None:
    while True:
        line = await stream.readline()
        if not line:
            return
        text = line.decode(errors="replace").strip()
        if text:
            logger.error(f"{name}: {text}")
