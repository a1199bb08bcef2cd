"""Reduce a finished run into a single DeploymentResult."""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Sequence

from .models import DeploymentParams, DeploymentResult, Step, StepStatus


def count_failed_steps(steps: Sequence[Step]) -> int:
    """Steps that ended FAILED. SKIPPED steps are accepted failures and not counted."""
    return sum(1 for step in steps if step.status == StepStatus.FAILED)


def aggregate(
    catalog: Sequence[Step],
    completed_steps: Sequence[Step],
    *,
    params: Optional[DeploymentParams] = None,
    aborted: bool = False,
    now: Optional[datetime] = None,
) -> DeploymentResult:
    """
    Build the summary result of a run.

    Args:
        catalog: The full plan of this run
        completed_steps: Steps that reached a terminal status, in order
        params: Deployment parameters, used for the message and data fields
        aborted: The run stopped on a critical failure
        now: Aggregation time (defaults to the current time)
    """
    end_time = now or datetime.now()
    starts = [s.start_time for s in completed_steps if s.start_time is not None]
    start_time = starts[0] if starts else end_time
    duration = end_time - start_time

    if params is not None:
        label = f"{params.app_name}:{params.version}"
    else:
        meta = catalog[0].metadata if catalog else {}
        label = f"{meta.get('app_name', 'application')}:{meta.get('app_version', 'latest')}"

    if aborted:
        message = f"Deployment of {label} aborted"
    else:
        message = f"Deployment of {label} completed successfully"

    data = {
        "total_steps": len(catalog),
        "completed_steps": len(completed_steps),
        "failed_steps": count_failed_steps(completed_steps),
        "deployment_time": str(duration),
        "steps": list(completed_steps),
    }
    if params is not None:
        data.update(
            app_name=params.app_name,
            app_version=params.version,
            deploy_path=params.deploy_path,
        )

    return DeploymentResult(
        success=not aborted,
        changed=len(completed_steps) > 0,
        message=message,
        start_time=start_time,
        end_time=end_time,
        duration=duration,
        data=data,
    )
