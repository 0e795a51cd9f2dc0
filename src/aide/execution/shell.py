"""Local shell and filesystem execution.

:class:`ShellExecutor` is the execution collaborator of the orchestration
core.  It runs shell commands to completion under a timeout, spawns detached
processes for the background task registry, and performs the small set of
file operations that project scaffolding needs.

Commands are passed to the system shell verbatim.  There is no sandboxing:
the executor runs with the privileges of the assistant process.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path

log = logging.getLogger(__name__)

# Captured stdout/stderr beyond this size is cut for foreground commands.
_MAX_CAPTURE_CHARS = 10 * 1024 * 1024


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Outcome of a foreground shell command.

    Attributes:
        success: ``True`` when the command exited with status 0.
        output: Decoded standard output.
        error: Decoded standard error, or a description of why the command
            could not run.
        exit_code: Process exit status; ``None`` when the process never
            started or was killed on timeout.
        duration_ms: Wall-clock run time in milliseconds.
    """

    success: bool
    output: str = ""
    error: str = ""
    exit_code: int | None = None
    duration_ms: float = 0.0


def _expand(path: str | Path) -> Path:
    return Path(path).expanduser()


class ShellExecutor:
    """Runs shell commands and file operations for the assistant.

    Args:
        workdir: Default working directory.  ``None`` uses the process cwd.
        timeout: Default timeout in seconds for :meth:`run`.
    """

    def __init__(self, workdir: str | Path | None = None, timeout: float = 30.0) -> None:
        self.workdir = str(_expand(workdir)) if workdir else None
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def run(
        self,
        command: str,
        cwd: str | Path | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run *command* through the shell and wait for it to finish.

        Never raises for command failures: a missing working directory, a
        non-zero exit status, or a timeout are all reported through the
        returned :class:`CommandResult`.
        """
        limit = timeout if timeout is not None else self.timeout
        workdir = str(_expand(cwd)) if cwd else self.workdir
        start = time.perf_counter()

        try:
            process = await asyncio.create_subprocess_shell(
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=workdir,
            )
        except (OSError, ValueError) as exc:
            log.warning("Could not start command %r: %s", command, exc)
            return CommandResult(
                success=False,
                error=str(exc),
                duration_ms=(time.perf_counter() - start) * 1000,
            )

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=limit)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            log.warning("Command timed out after %.1fs: %s", limit, command)
            return CommandResult(
                success=False,
                error=f"Command timed out after {limit:g}s",
                duration_ms=(time.perf_counter() - start) * 1000,
            )

        elapsed = (time.perf_counter() - start) * 1000
        result = CommandResult(
            success=process.returncode == 0,
            output=stdout.decode("utf-8", errors="replace")[:_MAX_CAPTURE_CHARS],
            error=stderr.decode("utf-8", errors="replace")[:_MAX_CAPTURE_CHARS],
            exit_code=process.returncode,
            duration_ms=elapsed,
        )
        log.debug(
            "Command finished: exit=%s, %.0fms, %r",
            result.exit_code,
            elapsed,
            command,
        )
        return result

    async def spawn_detached(
        self,
        command: str,
        cwd: str | Path | None = None,
    ) -> asyncio.subprocess.Process:
        """Start *command* in its own session without waiting for it.

        The returned process exposes ``stdout``/``stderr`` stream readers and
        an awaitable :meth:`~asyncio.subprocess.Process.wait` for the exit
        status.

        Raises:
            OSError: If the shell cannot be started.
            ValueError: If *command* contains a NUL byte.
        """
        workdir = str(_expand(cwd)) if cwd else self.workdir
        process = await asyncio.create_subprocess_shell(
            command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=workdir,
            start_new_session=True,
        )
        log.debug("Spawned detached process pid=%d: %s", process.pid, command)
        return process

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    async def write_file(self, path: str | Path, content: str) -> None:
        """Write *content* to *path*, creating parent directories."""
        target = _expand(path)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, _write)

    async def create_directory(self, path: str | Path) -> None:
        target = _expand(path)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, lambda: target.mkdir(parents=True, exist_ok=True))

    async def list_directory(self, path: str | Path) -> list[str]:
        """Return the sorted entry names of directory *path*."""
        target = _expand(path)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, lambda: sorted(entry.name for entry in target.iterdir())
        )
