"""stepdeploy: a deployment step pipeline with progress events and rollback."""

from .channel import (
    CancelToken,
    ChannelRejectionError,
    ExecutionChannel,
    LocalChannel,
    SSHChannel,
    StreamingExecutionChannel,
    create_channel,
)
from .pipeline import (
    CriticalStepFailure,
    DeploymentModule,
    DeploymentParams,
    DeploymentResult,
    StepStatus,
    ValidationError,
    build_catalog,
)
from .workflow import DeploymentRequest, DeploymentWorkflow

__version__ = "0.1.0"

__all__ = [
    "CancelToken",
    "ChannelRejectionError",
    "ExecutionChannel",
    "LocalChannel",
    "SSHChannel",
    "StreamingExecutionChannel",
    "create_channel",
    "CriticalStepFailure",
    "DeploymentModule",
    "DeploymentParams",
    "DeploymentResult",
    "StepStatus",
    "ValidationError",
    "build_catalog",
    "DeploymentRequest",
    "DeploymentWorkflow",
]
