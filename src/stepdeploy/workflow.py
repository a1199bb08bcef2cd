"""High-level workflow: config + channel + observers + deployment module."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .channel import CancelToken, ExecutionChannel, create_channel
from .config import AppConfig, ConnectionConfig
from .paths import get_logs_dir
from .pipeline import (
    CompositeObserver,
    DeploymentModule,
    DeploymentParams,
    DeploymentResult,
    LoggingProgressObserver,
    ProgressObserver,
    RunLogObserver,
)
from .utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class DeploymentRequest:
    """User-provided deployment request captured from the CLI.

    Fields left as None fall back to the configured deployment defaults.
    """

    app_name: str
    version: Optional[str] = None
    deploy_path: Optional[str] = None
    health_check: Optional[bool] = None
    rollback_on_failure: Optional[bool] = None

    def to_args(self) -> Dict[str, Any]:
        args: Dict[str, Any] = {"app_name": self.app_name}
        for key in ("version", "deploy_path", "health_check", "rollback_on_failure"):
            value = getattr(self, key)
            if value is not None:
                args[key] = value
        return args


class DeploymentWorkflow:
    """Coordinates one deployment run against the configured target."""

    def __init__(
        self,
        config: AppConfig,
        *,
        channel_factory: Callable[[ConnectionConfig], ExecutionChannel] = create_channel,
        observers: Optional[List[ProgressObserver]] = None,
    ) -> None:
        self.config = config
        self.channel_factory = channel_factory
        self.extra_observers = list(observers or [])
        self.run_log: Optional[RunLogObserver] = None

    def build_module(self) -> DeploymentModule:
        deployment = self.config.deployment
        execution = self.config.execution
        return DeploymentModule(
            step_timeout=execution.step_timeout,
            rollback_timeout=execution.rollback_timeout,
            standard_timeout=execution.standard_timeout,
            defaults=DeploymentParams(
                app_name="",
                version=deployment.version,
                deploy_path=deployment.deploy_path,
                health_check=deployment.health_check,
                rollback_on_failure=deployment.rollback_on_failure,
            ),
        )

    def build_observer(self) -> CompositeObserver:
        observer = CompositeObserver([LoggingProgressObserver()])
        if self.config.logging.save_run_logs:
            self.run_log = RunLogObserver(get_logs_dir(self.config.logging.log_dir))
            observer.add(self.run_log)
        for extra in self.extra_observers:
            observer.add(extra)
        return observer

    def run(self, request: DeploymentRequest, cancel: Optional[CancelToken] = None) -> DeploymentResult:
        """Validate, connect, deploy, disconnect."""
        module = self.build_module()
        args = request.to_args()
        # 先校验参数，失败时不建立任何连接
        module.validate(args)

        logger.info("Preparing deployment of %s", request.app_name)
        channel = self.channel_factory(self.config.connection)
        with channel:
            mode = "streaming" if channel.supports_streaming else "standard"
            logger.info("🔗 Connected via %s channel (%s mode)", type(channel).__name__, mode)
            return module.run(channel, args, observer=self.build_observer(), cancel=cancel)
