"""Deployment step pipeline.

- build_catalog: the fixed, ordered deployment plan
- StepOrchestrator: runs the plan step by step against a streaming channel
- RollbackController: best-effort compensating actions after a critical failure
- aggregate: reduces a finished run into a DeploymentResult
- DeploymentModule: validation, capability dispatch and the fallback path
"""

from .models import (
    StepStatus,
    Step,
    ProgressInfo,
    DeploymentParams,
    DeploymentResult,
    RollbackActionOutcome,
    RollbackReport,
)
from .errors import (
    DeploymentError,
    ValidationError,
    StepExecutionError,
    CriticalStepFailure,
    RollbackActionError,
    StandardExecutionError,
)
from .catalog import build_catalog
from .aggregator import aggregate
from .rollback import RollbackController
from .observers import (
    ProgressObserver,
    CallbackObserver,
    CompositeObserver,
    LoggingProgressObserver,
    RunLogObserver,
)
from .orchestrator import StepOrchestrator
from .module import DeploymentModule

__all__ = [
    "StepStatus",
    "Step",
    "ProgressInfo",
    "DeploymentParams",
    "DeploymentResult",
    "RollbackActionOutcome",
    "RollbackReport",
    "DeploymentError",
    "ValidationError",
    "StepExecutionError",
    "CriticalStepFailure",
    "RollbackActionError",
    "StandardExecutionError",
    "build_catalog",
    "aggregate",
    "RollbackController",
    "ProgressObserver",
    "CallbackObserver",
    "CompositeObserver",
    "LoggingProgressObserver",
    "RunLogObserver",
    "StepOrchestrator",
    "DeploymentModule",
]
