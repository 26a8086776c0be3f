"""Exception hierarchy for portpatch.

Every error carries an ``ErrorKind`` so the workflow can report a tagged
outcome. Step failures chain the infrastructure error that caused them
with ``raise ... from``.
"""

from __future__ import annotations

from portpatch.schemas.job import ErrorKind


class PortPatchError(Exception):
    """Base exception for all portpatch errors."""

    kind: ErrorKind = ErrorKind.COMMAND_FAILED


class PrerequisiteMissing(PortPatchError):
    """The port directory or the patch file does not exist."""

    kind = ErrorKind.PREREQUISITE_MISSING


class BackupDirUnavailable(PortPatchError):
    """The backup root could not be created."""

    kind = ErrorKind.BACKUP_DIR_UNAVAILABLE


class ExtractFailed(PortPatchError):
    """The build system could not extract or locate the port sources."""

    kind = ErrorKind.EXTRACT_FAILED


class BackupFailed(PortPatchError):
    """A snapshot of the source directory could not be taken."""

    kind = ErrorKind.BACKUP_FAILED


class NoBackupFound(PortPatchError):
    """No snapshot exists for the port."""

    kind = ErrorKind.NO_BACKUP_FOUND


class PatchApplicationFailed(PortPatchError):
    """The patch utility failed; the sources were restored from a snapshot."""

    kind = ErrorKind.PATCH_APPLICATION_FAILED


class RestoreFailed(PortPatchError):
    """Restoring a snapshot failed. The source tree may be partially patched."""

    kind = ErrorKind.RESTORE_FAILED


class RebuildFailed(PortPatchError):
    """The rebuild after a successful patch failed."""

    kind = ErrorKind.REBUILD_FAILED


class SpawnError(PortPatchError):
    """An external command could not be started."""

    kind = ErrorKind.SPAWN_ERROR


class CommandFailed(PortPatchError):
    """An external command exited with a non-zero status."""

    kind = ErrorKind.COMMAND_FAILED

    def __init__(self, status: int, command: str = "", output: str = "") -> None:
        self.status = status
        self.command = command
        self.output = output
        message = f"Command failed with status {status}"
        if command:
            message += f": {command}"
        if output:
            message += f"\n{output}"
        super().__init__(message)


class CommandTimedOut(PortPatchError):
    """An external command ran past its timeout and was killed."""

    kind = ErrorKind.COMMAND_TIMED_OUT

    def __init__(self, timeout: float, command: str = "") -> None:
        self.timeout = timeout
        self.command = command
        detail = f": {command}" if command else ""
        super().__init__(f"Command timed out after {timeout:g}s{detail}")


def cause_chain(exc: BaseException) -> list[str]:
    """Return the messages of ``exc`` and its ``__cause__`` links, outermost first."""
    chain: list[str] = []
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        chain.append(str(current) or type(current).__name__)
        current = current.__cause__
    return chain
