"""Patch job schemas.

Defines the job configuration, command results, backup snapshots, and
the tagged outcome reported by a patch workflow run.
"""

from __future__ import annotations

from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_PORTS_DIR = Path("/usr/ports")
DEFAULT_BACKUP_DIR = Path("/usr/local/etc/patches")
DEFAULT_CATEGORY = "x11"
DEFAULT_COMMAND_TIMEOUT = 3600.0


class ErrorKind(StrEnum):
    """Failure classification carried by a failed workflow run."""

    PREREQUISITE_MISSING = "prerequisite_missing"
    BACKUP_DIR_UNAVAILABLE = "backup_dir_unavailable"
    EXTRACT_FAILED = "extract_failed"
    BACKUP_FAILED = "backup_failed"
    NO_BACKUP_FOUND = "no_backup_found"
    PATCH_APPLICATION_FAILED = "patch_application_failed"
    RESTORE_FAILED = "restore_failed"
    REBUILD_FAILED = "rebuild_failed"
    SPAWN_ERROR = "spawn_error"
    COMMAND_FAILED = "command_failed"
    COMMAND_TIMED_OUT = "command_timed_out"


class WorkflowState(StrEnum):
    """States of the backup, patch, restore, rebuild state machine.

    ``SIMULATED`` is the terminal success state of a dry run, which stops
    after the snapshot and never patches or rebuilds.
    """

    START = "start"
    VERIFIED = "verified"
    BACKED_UP = "backed_up"
    PATCHED = "patched"
    SIMULATED = "simulated"
    REBUILT = "rebuilt"
    RESTORE_ATTEMPTED = "restore_attempted"
    FAILED = "failed"


class JobConfig(BaseModel):
    """Everything one patch run needs. Frozen once constructed."""

    model_config = ConfigDict(frozen=True)

    port_name: str = Field(min_length=1, description="Port identifier, e.g. 'st'")
    patch_file: Path = Field(description="Unified diff to apply to the port sources")
    backup_dir: Path = Field(
        default=DEFAULT_BACKUP_DIR, description="Root directory for snapshots"
    )
    ports_dir: Path = Field(default=DEFAULT_PORTS_DIR, description="Ports tree root")
    category: str = Field(
        default=DEFAULT_CATEGORY, description="Ports tree category holding the port"
    )
    dry_run: bool = Field(
        default=False, description="Snapshot only; log the patch command instead of running it"
    )
    force: bool = Field(
        default=False, description="Run the patch utility in force mode"
    )
    make_program: str = Field(default="make", description="Build orchestration tool")
    patch_program: str = Field(default="patch", description="Patch application utility")
    strip_level: int = Field(default=1, ge=0, description="Leading path components to strip")
    command_timeout: float | None = Field(
        default=DEFAULT_COMMAND_TIMEOUT,
        gt=0,
        description="Seconds to wait for each external command (None waits forever)",
    )

    @field_validator("port_name")
    @classmethod
    def _single_path_component(cls, v: str) -> str:
        # Snapshot names embed the port name, so it must stay one directory entry
        if "/" in v or "\\" in v or v in (".", ".."):
            raise ValueError(f"port name must be a bare name, not a path: {v!r}")
        return v

    @property
    def port_dir(self) -> Path:
        """Directory of the port inside the ports tree."""
        return self.ports_dir / self.category / self.port_name


class CommandResult(BaseModel):
    """Exit status and merged output of one external command."""

    model_config = ConfigDict(frozen=True)

    status: int = Field(description="Process exit status")
    output: str = Field(default="", description="Captured stdout and stderr")


class Snapshot(BaseModel):
    """A point-in-time copy of a port's source directory."""

    model_config = ConfigDict(frozen=True)

    path: Path = Field(description="Snapshot directory under the backup root")
    port_name: str = Field(description="Port the snapshot belongs to")
    timestamp: str = Field(description="Creation timestamp, lexically sortable")

    @property
    def name(self) -> str:
        return self.path.name


class WorkflowResult(BaseModel):
    """Single terminal outcome of a patch workflow run."""

    port_name: str = Field(description="Port that was processed")
    success: bool = Field(default=False, description="Whether the run succeeded")
    state: WorkflowState = Field(
        default=WorkflowState.START, description="Last state reached"
    )
    error_kind: ErrorKind | None = Field(
        default=None, description="Most specific failure kind (None on success)"
    )
    error: str = Field(default="", description="Human-readable failure message")
    causes: list[str] = Field(
        default_factory=list, description="Cause chain, outermost first"
    )
    source_dir: Path | None = Field(
        default=None, description="Resolved WRKSRC directory"
    )
    snapshot: Snapshot | None = Field(
        default=None, description="Snapshot taken before patching"
    )
    restored: bool | None = Field(
        default=None,
        description="Outcome of the compensating restore (None if not attempted)",
    )
    simulated: bool = Field(default=False, description="Whether this was a dry run")
    steps: list[str] = Field(
        default_factory=list, description="Steps performed, in order"
    )

    @property
    def exit_code(self) -> int:
        return 0 if self.success else 1
