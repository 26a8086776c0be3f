"""portpatch schema definitions.

Pydantic v2 models shared by the runner, backup manager, and workflow.
"""

from portpatch.schemas.job import (
    CommandResult,
    ErrorKind,
    JobConfig,
    Snapshot,
    WorkflowResult,
    WorkflowState,
)

__all__ = [
    "CommandResult",
    "ErrorKind",
    "JobConfig",
    "Snapshot",
    "WorkflowResult",
    "WorkflowState",
]
