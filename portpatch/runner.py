"""External command execution.

Runs build and patch tools as argument vectors (never through a shell),
captures their merged output, and enforces a bounded wait. This is the
only module that spawns processes.
"""

from __future__ import annotations

import logging
import os
import shlex
import signal
import subprocess
import threading
from abc import ABC, abstractmethod
from collections.abc import Sequence
from pathlib import Path

from portpatch.errors import CommandFailed, CommandTimedOut, SpawnError
from portpatch.schemas.job import CommandResult

logger = logging.getLogger(__name__)

_READ_CHUNK = 4096
# Grace period for the reader thread once the command has exited or been killed
_READER_JOIN_TIMEOUT = 2.0
_POSIX = os.name == "posix"


def format_command(program: str, args: Sequence[str] = ()) -> str:
    """Render an argument vector as a copy-pasteable shell line (for logs only)."""
    return shlex.join([program, *[str(a) for a in args]])


class CommandExecutor(ABC):
    """Interface for running external commands.

    The workflow talks to the operating system only through this
    interface, so tests can substitute a scripted executor.
    """

    @abstractmethod
    def execute(
        self,
        program: str,
        args: Sequence[str] = (),
        *,
        cwd: Path | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run a command to completion and return its status and output.

        The exit status is reported, not judged.

        Raises:
            SpawnError: If the process could not be started.
            CommandTimedOut: If the process outlived the timeout.
        """

    def execute_with_output(
        self,
        program: str,
        args: Sequence[str] = (),
        *,
        cwd: Path | None = None,
        timeout: float | None = None,
    ) -> str:
        """Run a command that prints a single value and return that value.

        Trailing line terminators are stripped.

        Raises:
            CommandFailed: If the command exits non-zero.
        """
        result = self.execute(program, args, cwd=cwd, timeout=timeout)
        if result.status != 0:
            raise CommandFailed(result.status, format_command(program, args))
        return result.output.rstrip("\r\n")


class CommandRunner(CommandExecutor):
    """Runs commands with ``subprocess.Popen``.

    stderr is merged into stdout and read incrementally in fixed-size
    chunks by a reader thread while the calling thread waits for the
    process with a timeout. On POSIX each command gets its own process
    group. A timed-out command has its whole group killed, so children
    such as the compiler jobs under ``make`` cannot keep the wait alive.

    The reader thread owns the output pipe and closes it at EOF. If a
    leftover descendant still holds the pipe after the command exits,
    the group is killed once the grace period runs out.
    """

    def __init__(self, timeout: float | None = None) -> None:
        self._timeout = timeout

    def execute(
        self,
        program: str,
        args: Sequence[str] = (),
        *,
        cwd: Path | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        argv = [program, *[str(a) for a in args]]
        command = shlex.join(argv)
        limit = timeout if timeout is not None else self._timeout
        logger.debug("Executing: %s (cwd=%s)", command, cwd or ".")

        try:
            proc = subprocess.Popen(
                argv,
                cwd=str(cwd) if cwd is not None else None,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                start_new_session=_POSIX,
            )
        except OSError as e:
            logger.error("Failed to start %s: %s", command, e)
            raise SpawnError(f"Failed to start '{command}': {e}") from e

        chunks: list[bytes] = []
        reader = threading.Thread(
            target=_drain, args=(proc.stdout, chunks), daemon=True
        )
        reader.start()

        try:
            status = proc.wait(timeout=limit)
        except subprocess.TimeoutExpired as e:
            _kill_group(proc)
            proc.wait()
            reader.join(_READER_JOIN_TIMEOUT)
            logger.error("Command timed out after %ss: %s", limit, command)
            raise CommandTimedOut(limit, command) from e

        reader.join(_READER_JOIN_TIMEOUT)
        if reader.is_alive():
            logger.warning(
                "Output pipe still held by a leftover process of %s; killing its group",
                command,
            )
            _kill_group(proc)
            reader.join(_READER_JOIN_TIMEOUT)

        output = b"".join(list(chunks)).decode("utf-8", errors="replace")
        if output:
            logger.debug("Command output:\n%s", output)
        return CommandResult(status=status, output=output)


def _kill_group(proc: subprocess.Popen) -> None:
    """SIGKILL the process group led by ``proc`` (just ``proc`` off POSIX)."""
    if not _POSIX:
        proc.kill()
        return
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        # Every member has already exited
        logger.debug("Process group %d already gone", proc.pid)


def _drain(stream, chunks: list[bytes]) -> None:
    """Read ``stream`` to EOF in bounded chunks, then close it."""
    with stream:
        while True:
            chunk = stream.read1(_READ_CHUNK)
            if not chunk:
                break
            chunks.append(chunk)
