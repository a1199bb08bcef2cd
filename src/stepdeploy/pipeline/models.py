"""Data models for the deployment pipeline."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

DEFAULT_VERSION = "latest"
DEFAULT_DEPLOY_PATH = "/opt/apps"
PROGRESS_STAGE = "deploying"


class StepStatus(str, Enum):
    """步骤执行状态"""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self in (StepStatus.COMPLETED, StepStatus.FAILED, StepStatus.SKIPPED)


@dataclass
class Step:
    """A planned unit of work.

    The catalog builder fills in the definition fields; the orchestrator owns
    ``status`` and the timing fields.
    """
    id: str
    name: str
    description: str
    command: str
    critical: bool = True
    metadata: Dict[str, Any] = field(default_factory=dict)

    # 执行状态（由 orchestrator 维护）
    status: StepStatus = StepStatus.PENDING
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration: Optional[timedelta] = None
    error: Optional[str] = None

    def mark_running(self, now: Optional[datetime] = None) -> None:
        self.status = StepStatus.RUNNING
        self.start_time = now or datetime.now()

    def finish(self, status: StepStatus, now: Optional[datetime] = None) -> None:
        """Set a terminal status and close the timing window."""
        self.status = status
        self.end_time = now or datetime.now()
        if self.start_time is None:
            self.start_time = self.end_time
        self.duration = self.end_time - self.start_time

    def snapshot(self) -> "Step":
        """Independent copy for progress reports."""
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "critical": self.critical,
            "status": self.status.value,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_seconds": self.duration.total_seconds() if self.duration is not None else None,
            "error": self.error,
            "metadata": dict(self.metadata),
        }


@dataclass
class ProgressInfo:
    """Point-in-time snapshot of run completion, emitted at step boundaries."""
    percentage: float
    message: str
    step_number: int                  # 1-based
    total_steps: int
    stage: str = PROGRESS_STAGE
    current_step: Optional[Step] = None          # 仅 step_start 事件
    completed_steps: Tuple[Step, ...] = ()       # 已结束步骤的快照
    timestamp: datetime = field(default_factory=datetime.now)

    @staticmethod
    def percent(done: int, total: int) -> float:
        if total <= 0:
            return 0.0
        return float(done) / float(total) * 100

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage,
            "percentage": round(self.percentage, 2),
            "message": self.message,
            "step_number": self.step_number,
            "total_steps": self.total_steps,
            "timestamp": self.timestamp.isoformat(),
        }


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    return bool(value)


def _as_str(value: Any, default: str) -> str:
    if value is None:
        return default
    return str(value)


@dataclass
class DeploymentParams:
    """Resolved deployment arguments."""
    app_name: str
    version: str = DEFAULT_VERSION
    deploy_path: str = DEFAULT_DEPLOY_PATH
    health_check: bool = True
    rollback_on_failure: bool = True

    @classmethod
    def from_args(
        cls,
        args: Mapping[str, Any],
        defaults: Optional["DeploymentParams"] = None,
    ) -> "DeploymentParams":
        """Read a loose argument map; missing or empty values fall back to defaults."""
        base = defaults or cls(app_name="")
        return cls(
            app_name=_as_str(args.get("app_name"), base.app_name),
            version=_as_str(args.get("version") or None, base.version),
            deploy_path=_as_str(args.get("deploy_path") or None, base.deploy_path),
            health_check=_as_bool(args.get("health_check"), base.health_check),
            rollback_on_failure=_as_bool(args.get("rollback_on_failure"), base.rollback_on_failure),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "app_name": self.app_name,
            "version": self.version,
            "deploy_path": self.deploy_path,
            "health_check": self.health_check,
            "rollback_on_failure": self.rollback_on_failure,
        }


@dataclass
class DeploymentResult:
    """Terminal artifact of a run. Built once, never mutated afterwards."""
    success: bool
    changed: bool
    message: str
    start_time: datetime
    end_time: datetime
    duration: timedelta
    data: Dict[str, Any] = field(default_factory=dict)
    module_name: str = "deployment"
    degraded: bool = False   # 非流式降级执行：无步骤跟踪、无回滚

    @property
    def steps(self) -> List[Step]:
        return list(self.data.get("steps", []))

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.data)
        if "steps" in data:
            data["steps"] = [s.to_dict() for s in data["steps"]]
        return {
            "success": self.success,
            "changed": self.changed,
            "message": self.message,
            "module_name": self.module_name,
            "degraded": self.degraded,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "duration_seconds": self.duration.total_seconds(),
            "data": data,
        }


@dataclass
class RollbackActionOutcome:
    """Outcome of one compensating action."""
    name: str
    command: str
    success: bool
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "command": self.command,
            "success": self.success,
            "error": self.error,
        }


@dataclass
class RollbackReport:
    """What the rollback controller did, action by action."""
    actions: List[RollbackActionOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return all(action.success for action in self.actions)

    @property
    def failed_actions(self) -> List[RollbackActionOutcome]:
        return [action for action in self.actions if not action.success]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "succeeded": self.succeeded,
            "actions": [action.to_dict() for action in self.actions],
        }
