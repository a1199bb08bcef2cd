"""Deployment module: validation, capability dispatch and the fallback path."""

from __future__ import annotations

import logging
import shlex
from datetime import datetime
from typing import Any, Mapping, Optional

from ..channel.base import (
    CancelToken,
    ChannelRejectionError,
    ExecuteOptions,
    ExecutionChannel,
    describe,
)
from .catalog import app_dir, build_catalog
from .errors import ROLLBACK_NOT_APPLICABLE, StandardExecutionError, ValidationError
from .models import DeploymentParams, DeploymentResult
from .observers import ProgressObserver
from .orchestrator import StepOrchestrator
from .rollback import RollbackController

logger = logging.getLogger(__name__)


class DeploymentModule:
    """Deploy applications with step tracking and rollback capability."""

    name = "deployment"

    def __init__(
        self,
        step_timeout: int = 30,
        rollback_timeout: int = 10,
        standard_timeout: int = 60,
        defaults: Optional[DeploymentParams] = None,
    ) -> None:
        self.step_timeout = step_timeout
        self.rollback_timeout = rollback_timeout
        self.standard_timeout = standard_timeout
        self.defaults = defaults

    def validate(self, args: Mapping[str, Any]) -> None:
        """
        Check module arguments before anything is executed.

        Raises:
            ValidationError: app_name missing, empty or not a plain directory name,
                or deploy_path not absolute
        """
        app_name = args.get("app_name")
        if app_name is None or not str(app_name).strip():
            raise ValidationError("app_name", "app_name parameter is required")
        # app_name 作为 deploy_path 下的目录名使用
        if "/" in str(app_name) or str(app_name) in (".", ".."):
            raise ValidationError("app_name", "app_name must be a plain directory name")

        deploy_path = args.get("deploy_path")
        if deploy_path and not str(deploy_path).startswith("/"):
            raise ValidationError("deploy_path", "deploy_path must be absolute path")

    def resolve(self, args: Mapping[str, Any]) -> DeploymentParams:
        """Validate and turn loose arguments into DeploymentParams."""
        self.validate(args)
        params = DeploymentParams.from_args(args, self.defaults)
        if not params.deploy_path.startswith("/"):
            raise ValidationError("deploy_path", "deploy_path must be absolute path")
        return params

    def run(
        self,
        channel: ExecutionChannel,
        args: Mapping[str, Any],
        *,
        observer: Optional[ProgressObserver] = None,
        cancel: Optional[CancelToken] = None,
    ) -> DeploymentResult:
        """
        Run the deployment against an established channel.

        Streaming channels get the tracked step pipeline. Channels without
        streaming get one combined command (no per-step tracking, no rollback,
        no progress events) and a result flagged ``degraded``.

        Raises:
            ValidationError: bad arguments; no command was issued
            CriticalStepFailure: a critical step failed (tracked pipeline)
            StandardExecutionError: the fallback command could not be started
        """
        params = self.resolve(args)

        if channel.supports_streaming:
            return self._run_tracked(channel, params, observer, cancel)
        logger.warning("Channel has no streaming support, falling back to standard execution")
        return self._run_standard(channel, params)

    def _run_tracked(self, channel, params: DeploymentParams, observer, cancel) -> DeploymentResult:
        catalog = build_catalog(
            params.app_name, params.version, params.deploy_path, params.health_check
        )
        orchestrator = StepOrchestrator(
            channel,
            observer=observer,
            step_timeout=self.step_timeout,
            rollback_controller=RollbackController(channel, action_timeout=self.rollback_timeout),
        )
        return orchestrator.run(catalog, params, cancel=cancel)

    def _run_standard(self, channel: ExecutionChannel, params: DeploymentParams) -> DeploymentResult:
        target_dir = app_dir(params.deploy_path, params.app_name)
        label = shlex.quote(f"{params.app_name}:{params.version}")
        command = (
            f"echo Deploying {label} to {shlex.quote(params.deploy_path)} && "
            f"mkdir -p {shlex.quote(target_dir)} && "
            f"echo 'Deployment completed'"
        )

        try:
            result = channel.execute(command, ExecuteOptions(timeout=self.standard_timeout))
        except ChannelRejectionError as exc:
            raise StandardExecutionError(
                f"deployment: standard execution failed: {describe(exc)} (rollback: {ROLLBACK_NOT_APPLICABLE})"
            ) from exc

        end_time = datetime.now()
        if result.ok:
            message = f"Deployment of {params.app_name}:{params.version} completed (standard mode)"
        else:
            message = f"Deployment of {params.app_name}:{params.version} failed (standard mode)"

        return DeploymentResult(
            success=result.ok,
            changed=True,
            message=message,
            start_time=result.start_time,
            end_time=end_time,
            duration=end_time - result.start_time,
            degraded=True,
            data={
                "stdout": result.stdout,
                "stderr": result.stderr,
                "exit_code": result.exit_status,
                "app_name": params.app_name,
                "app_version": params.version,
                "deploy_path": params.deploy_path,
                "execution_mode": "standard",
            },
        )
