"""Patch workflow: verify, snapshot, patch, restore on failure, rebuild.

A synchronous state machine over one port:

    start -> verified -> backed_up -> patched -> rebuilt
                                  \\-> simulated            (dry run)
                                  \\-> restore_attempted -> failed

Every step failure aborts the run. The only compensating action is a
single restore from the latest snapshot after a failed patch attempt.
"""

from __future__ import annotations

import logging
from pathlib import Path

from portpatch.backup import BackupManager
from portpatch.errors import (
    BackupFailed,
    CommandFailed,
    ExtractFailed,
    PatchApplicationFailed,
    PortPatchError,
    PrerequisiteMissing,
    RebuildFailed,
    RestoreFailed,
    cause_chain,
)
from portpatch.runner import CommandExecutor, CommandRunner, format_command
from portpatch.schemas.job import (
    CommandResult,
    JobConfig,
    Snapshot,
    WorkflowResult,
    WorkflowState,
)

_logger = logging.getLogger(__name__)


class PatchWorkflow:
    """Runs one backup-patch-rebuild job against a port.

    Collaborators are injected so tests can script command results and
    record backup calls without touching the ports tree.

    Args:
        config: The job to run. Not modified during the run.
        runner: Command executor; defaults to a real CommandRunner.
        backups: Snapshot manager; defaults to one rooted at config.backup_dir.
        logger: Logger for progress and failures.
    """

    def __init__(
        self,
        config: JobConfig,
        runner: CommandExecutor | None = None,
        backups: BackupManager | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._runner = runner or CommandRunner(timeout=config.command_timeout)
        self._backups = backups or BackupManager(config.backup_dir)
        self._log = logger or _logger
        self._result = WorkflowResult(port_name=config.port_name)
        self._snapshot: Snapshot | None = None

    @property
    def config(self) -> JobConfig:
        return self._config

    def run(self) -> WorkflowResult:
        """Execute the workflow and return its single terminal outcome.

        Flow:
        1. Verify port directory and patch file
        2. Prepare the backup root
        3. Extract, resolve WRKSRC, snapshot
        4. Apply the patch (restore from snapshot on failure)
        5. Rebuild (skipped in dry run)
        """
        cfg = self._config
        self._result = WorkflowResult(port_name=cfg.port_name, simulated=cfg.dry_run)
        self._snapshot = None
        self._log.info("Starting port patching for %s", cfg.port_name)

        try:
            self._verify_prerequisites()
            self._prepare_backup_dir()
            source_dir = self._backup_original()

            if cfg.dry_run:
                self._simulate_patch(source_dir)
                self._finish(WorkflowState.SIMULATED)
                return self._result

            self._apply_patch(source_dir)
            self._rebuild_port()
        except PortPatchError as e:
            return self._fail(e)

        self._finish(WorkflowState.REBUILT)
        return self._result

    # ── Steps ─────────────────────────────────────────────────────

    def _verify_prerequisites(self) -> None:
        cfg = self._config
        self._step("verify")
        if not cfg.port_dir.is_dir():
            raise PrerequisiteMissing(f"Port directory not found: {cfg.port_dir}")
        if not cfg.patch_file.is_file():
            raise PrerequisiteMissing(f"Patch file not found: {cfg.patch_file}")
        self._result.state = WorkflowState.VERIFIED
        self._log.debug("Prerequisites verified successfully")

    def _prepare_backup_dir(self) -> None:
        self._step("prepare_backup_dir")
        self._backups.ensure_backup_root()

    def _backup_original(self) -> Path:
        """Extract the port, resolve its WRKSRC, and snapshot it."""
        cfg = self._config
        port_dir = cfg.port_dir
        self._log.info("Backing up original source files...")

        self._step("extract")
        try:
            result = self._runner.execute(cfg.make_program, ["extract"], cwd=port_dir)
        except PortPatchError as e:
            raise ExtractFailed(f"make extract failed in {port_dir}") from e
        if result.status != 0:
            raise ExtractFailed(
                f"make extract failed in {port_dir} (exit {result.status})"
            ) from _command_failed(result, cfg.make_program, ["extract"])

        self._step("resolve_wrksrc")
        try:
            wrksrc = self._runner.execute_with_output(
                cfg.make_program, ["-V", "WRKSRC"], cwd=port_dir
            )
        except PortPatchError as e:
            raise ExtractFailed(f"Failed to get WRKSRC for {cfg.port_name}") from e
        if not wrksrc.strip():
            raise ExtractFailed(f"WRKSRC for {cfg.port_name} is empty")

        # An absolute WRKSRC replaces port_dir entirely
        source_dir = port_dir / wrksrc.strip()
        self._result.source_dir = source_dir

        self._step("snapshot")
        self._snapshot = self._backups.snapshot(source_dir, cfg.port_name)
        self._result.snapshot = self._snapshot
        self._result.state = WorkflowState.BACKED_UP
        return source_dir

    def _patch_command(self) -> tuple[str, list[str]]:
        cfg = self._config
        args = [
            f"-p{cfg.strip_level}",
            "-f" if cfg.force else "-N",
            "-i",
            str(cfg.patch_file.resolve()),
        ]
        return cfg.patch_program, args

    def _simulate_patch(self, source_dir: Path) -> None:
        program, args = self._patch_command()
        self._log.info(
            "[DRY RUN] would execute in %s: %s",
            source_dir, format_command(program, args),
        )
        self._log.info("[DRY RUN] would rebuild with: %s clean install",
                       self._config.make_program)

    def _apply_patch(self, source_dir: Path) -> None:
        if self._snapshot is None:
            raise BackupFailed("Refusing to patch without a snapshot of the sources")

        cfg = self._config
        program, args = self._patch_command()
        self._log.info("Applying patch %s", cfg.patch_file)

        self._step("patch")
        failure: PortPatchError
        try:
            result = self._runner.execute(program, args, cwd=source_dir)
        except PortPatchError as e:
            failure = e
        else:
            if result.status == 0:
                self._result.state = WorkflowState.PATCHED
                return
            failure = _command_failed(result, program, args)

        self._log.error(
            "Patch failed in %s: %s. Attempting restore...",
            source_dir, str(failure).splitlines()[0],
        )
        self._compensate(source_dir, failure)

    def _compensate(self, source_dir: Path, failure: PortPatchError) -> None:
        """Restore the latest snapshot after a failed patch, exactly once."""
        self._step("restore")
        self._result.state = WorkflowState.RESTORE_ATTEMPTED
        port = self._config.port_name
        reason = str(failure).splitlines()[0]

        try:
            snapshot = self._backups.latest(port)
            self._backups.restore(snapshot, source_dir)
        except PortPatchError as e:
            self._result.restored = False
            raise RestoreFailed(
                f"Patch of {port} failed ({reason}) and restoring {source_dir} "
                f"also failed; sources may be partially patched"
            ) from e

        self._result.restored = True
        self._log.info("Sources restored from %s", snapshot.path)
        raise PatchApplicationFailed(
            f"Patch application failed for {port}; sources restored from {snapshot.name}"
        ) from failure

    def _rebuild_port(self) -> None:
        cfg = self._config
        self._log.info("Rebuilding port with patch...")
        self._step("rebuild")
        try:
            result = self._runner.execute(
                cfg.make_program, ["clean", "install"], cwd=cfg.port_dir
            )
        except PortPatchError as e:
            raise RebuildFailed(f"make clean install failed in {cfg.port_dir}") from e
        if result.status != 0:
            raise RebuildFailed(
                f"make clean install failed in {cfg.port_dir} (exit {result.status})"
            ) from _command_failed(result, cfg.make_program, ["clean", "install"])

    # ── Bookkeeping ───────────────────────────────────────────────

    def _step(self, name: str) -> None:
        self._result.steps.append(name)
        self._log.debug("Step: %s", name)

    def _finish(self, state: WorkflowState) -> None:
        self._result.state = state
        self._result.success = True
        if state == WorkflowState.SIMULATED:
            self._log.info(
                "Dry run complete for %s; sources left unpatched", self._config.port_name
            )
        else:
            self._log.info("Successfully patched %s", self._config.port_name)

    def _fail(self, error: PortPatchError) -> WorkflowResult:
        self._result.state = WorkflowState.FAILED
        self._result.success = False
        self._result.error_kind = error.kind
        self._result.error = str(error)
        self._result.causes = cause_chain(error)
        self._log.error("Operation failed: %s", " <- ".join(self._result.causes))
        return self._result


def _command_failed(result: CommandResult, program: str, args: list[str]) -> CommandFailed:
    """Build a CommandFailed carrying the last lines of the command's output."""
    tail = "\n".join(result.output.strip().splitlines()[-20:])
    return CommandFailed(result.status, format_command(program, args), tail)
