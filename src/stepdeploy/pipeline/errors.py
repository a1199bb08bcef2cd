"""Error taxonomy for the deployment pipeline."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional, Sequence, Tuple

from ..channel.base import ChannelRejectionError, CommandResult, describe

if TYPE_CHECKING:
    from .models import RollbackReport, Step

ROLLBACK_ATTEMPTED = "attempted"
ROLLBACK_SKIPPED = "skipped"
ROLLBACK_NOT_APPLICABLE = "not-applicable"


class DeploymentError(RuntimeError):
    """Base class for pipeline errors."""

    pass


class ValidationError(DeploymentError, ValueError):
    """Malformed input parameters; raised before any command is issued."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"deployment: {message}")
        self.field = field


class StepExecutionError(DeploymentError):
    """A step's command ran and reported failure."""

    def __init__(
        self,
        step_id: str,
        message: str,
        result: Optional[CommandResult] = None,
    ) -> None:
        super().__init__(message)
        self.step_id = step_id
        self.result = result

    @classmethod
    def from_result(cls, step_id: str, result: CommandResult) -> "StepExecutionError":
        detail = result.stderr.splitlines()[-1] if result.stderr else "no error output"
        return cls(step_id, f"exit status {result.exit_status}: {detail}", result)


class CriticalStepFailure(DeploymentError):
    """A critical step failed; the run was aborted."""

    def __init__(
        self,
        step: "Step",
        cause: BaseException,
        rollback: str = ROLLBACK_SKIPPED,
        rollback_report: Optional["RollbackReport"] = None,
        completed_steps: Sequence["Step"] = (),
    ) -> None:
        self.step = step
        self.cause = cause
        self.rollback = rollback
        self.rollback_report = rollback_report
        self.completed_steps: Tuple["Step", ...] = tuple(completed_steps)
        super().__init__(
            f"deployment: critical step '{step.name}' failed: {describe(cause)} (rollback: {rollback})"
        )

    @property
    def step_name(self) -> str:
        return self.step.name

    @property
    def channel_rejected(self) -> bool:
        return isinstance(self.cause, ChannelRejectionError)


class RollbackActionError(DeploymentError):
    """One compensating action failed. Logged, never escalated."""

    def __init__(self, action: str, message: str) -> None:
        super().__init__(f"rollback action '{action}' failed: {message}")
        self.action = action


class StandardExecutionError(DeploymentError):
    """The single-command fallback path could not run."""

    pass


__all__ = [
    "ChannelRejectionError",
    "DeploymentError",
    "ValidationError",
    "StepExecutionError",
    "CriticalStepFailure",
    "RollbackActionError",
    "StandardExecutionError",
    "ROLLBACK_ATTEMPTED",
    "ROLLBACK_SKIPPED",
    "ROLLBACK_NOT_APPLICABLE",
]
